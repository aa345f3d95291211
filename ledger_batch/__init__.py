"""
ledger_batch -- scheduled and on-demand ledger jobs.

Jobs (backfill, backfill verification, nightly balance check, overdue
installments) run item by item, each item in its own SAVEPOINT, under a
per-job mutual-exclusion lock and a per-period idempotency key.
"""
