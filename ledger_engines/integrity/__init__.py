"""Integrity engine: mismatch ranking, balance findings, backfill coverage."""

from ledger_engines.integrity.checker import DEFAULT_MISMATCH_LIMIT, IntegrityChecker
from ledger_engines.integrity.types import (
    BackfillVerification,
    BalanceFinding,
    DrillDown,
    Mismatch,
    MismatchCandidate,
    MismatchType,
    ReferenceCoverage,
    UnbalancedReference,
)

__all__ = [
    "BackfillVerification",
    "BalanceFinding",
    "DEFAULT_MISMATCH_LIMIT",
    "DrillDown",
    "IntegrityChecker",
    "Mismatch",
    "MismatchCandidate",
    "MismatchType",
    "ReferenceCoverage",
    "UnbalancedReference",
]
