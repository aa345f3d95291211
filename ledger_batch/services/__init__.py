"""Batch executor and job lock."""
