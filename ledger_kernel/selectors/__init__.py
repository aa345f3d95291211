"""Read-only ledger queries."""
