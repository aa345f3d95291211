"""
Ledger settings schema.

Typed, validated view of the YAML configuration.  Every consumer receives a
``LedgerSettings`` instance; nothing else reads the YAML files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Self

from ledger_kernel.domain.dtos import AccountRole, AccountType, ChartEntry
from ledger_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class Tolerances:
    """Absolute differences below which values are treated as equal."""

    organization_balance: Decimal = Decimal("0.01")
    document_total: Decimal = Decimal("0.05")
    running_balance: Decimal = Decimal("1.00")
    reference_balance: Decimal = Decimal("0.01")
    backfill_verification: Decimal = Decimal("1.00")

    def __post_init__(self):
        for name in (
            "organization_balance",
            "document_total",
            "running_balance",
            "reference_balance",
            "backfill_verification",
        ):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
            if getattr(self, name) < 0:
                raise ValueError(f"tolerance {name} cannot be negative")


@dataclass(frozen=True)
class LedgerSettings:
    """
    Runtime configuration for posting, integrity checks and jobs.

    ``chart`` maps each AccountRole to the account the posting rules use for
    it.  ``payment_method_roles`` maps a payment method to the role of the
    cash-side account it posts to.
    """

    chart: dict[AccountRole, ChartEntry] = field(default_factory=dict)
    payment_method_roles: dict[str, AccountRole] = field(default_factory=dict)
    tolerances: Tolerances = field(default_factory=Tolerances)
    mismatch_limit: int = 20
    auto_create_accounts: bool = True
    post_cost_of_goods_sold: bool = False
    opening_balance_cache_ttl_seconds: int = 120
    transaction_max_attempts: int = 3
    job_lock_ttl_seconds: int = 600

    def __post_init__(self):
        if self.mismatch_limit < 1:
            raise ValueError("mismatch_limit must be >= 1")
        if self.transaction_max_attempts < 1:
            raise ValueError("transaction_max_attempts must be >= 1")
        if self.opening_balance_cache_ttl_seconds < 0:
            raise ValueError("opening_balance_cache_ttl_seconds cannot be negative")
        if self.job_lock_ttl_seconds < 1:
            raise ValueError("job_lock_ttl_seconds must be >= 1")
        codes = [entry.code for entry in self.chart.values()]
        if len(codes) != len(set(codes)):
            raise ValueError("chart_of_accounts has duplicate codes")
        for method, role in self.payment_method_roles.items():
            if role not in self.chart:
                raise ValueError(f"payment method {method} maps to unmapped role {role.value}")

    def role_for_payment_method(self, method: str) -> AccountRole:
        try:
            return self.payment_method_roles[method]
        except KeyError:
            raise ValueError(f"Unknown payment method: {method}") from None

    @classmethod
    def with_defaults(cls) -> Self:
        """Settings from the packaged defaults.yaml."""
        from ledger_config.loader import load_raw_settings

        return cls.from_dict(load_raw_settings())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Build settings from a parsed YAML mapping.

        Raises:
            ValueError: on unknown roles/types or out-of-range values.
            KeyError: when a chart entry misses a required key.
        """
        data = dict(data)
        chart: dict[AccountRole, ChartEntry] = {}
        for raw in data.pop("chart_of_accounts", []):
            role = AccountRole(raw["role"])
            if role in chart:
                raise ValueError(f"chart_of_accounts maps role {role.value} twice")
            chart[role] = ChartEntry(
                role=role,
                code=str(raw["code"]),
                name=raw["name"],
                account_type=AccountType(raw["type"]),
            )

        method_roles = {
            str(method): AccountRole(role)
            for method, role in (data.pop("payment_method_roles", {}) or {}).items()
        }
        tolerances = Tolerances(
            **{k: Decimal(str(v)) for k, v in (data.pop("tolerances", {}) or {}).items()}
        )

        logger.info(
            "ledger_settings_loaded",
            extra={"chart_size": len(chart), "keys": sorted(data.keys())},
        )
        return cls(
            chart=chart,
            payment_method_roles=method_roles,
            tolerances=tolerances,
            **data,
        )
