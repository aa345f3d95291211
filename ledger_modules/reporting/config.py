"""
Reporting Configuration Schema.

Controls statement presentation and the tolerance used for the
``is_balanced`` self-checks carried on every statement.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Self

from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.reporting.config")


@dataclass(frozen=True)
class ReportingConfig:
    """
    Configuration schema for the reporting module.

    ``balance_tolerance`` is the largest |debit - credit| (or
    |assets - liabilities - equity|) still reported as balanced.
    """

    # Entity name shown on reports
    entity_name: str = "Organization"

    # Rounding precision for amounts
    display_precision: int = 2

    # Whether accounts with no activity/zero balance appear in reports
    include_zero_balances: bool = False

    balance_tolerance: Decimal = Decimal("0.01")

    def __post_init__(self):
        if self.display_precision < 0:
            raise ValueError("display_precision cannot be negative")
        if not isinstance(self.balance_tolerance, Decimal):
            object.__setattr__(self, "balance_tolerance", Decimal(str(self.balance_tolerance)))
        if self.balance_tolerance < 0:
            raise ValueError("balance_tolerance cannot be negative")

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("reporting_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from dictionary."""
        logger.info(
            "reporting_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
