"""Kernel write-side services."""
