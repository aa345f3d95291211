"""
ledger_config -- single entry point for ledger configuration.

Responsibility:
    ``get_settings()`` is the only way runtime code obtains configuration.
    It loads the packaged ``defaults.yaml`` and, when the
    ``LEDGER_CONFIG_PATH`` environment variable names a file, merges that
    file over the defaults.

Architecture position:
    Sits above ``ledger_kernel`` and below ``ledger_modules`` /
    ``ledger_services`` / ``ledger_batch``.  The kernel never imports this
    package; services receive the values they need through constructors.

Failure modes:
    - FileNotFoundError when LEDGER_CONFIG_PATH names a missing file.
    - ValueError on invalid values (see ``LedgerSettings.from_dict``).
"""

from __future__ import annotations

import os
from pathlib import Path

from ledger_config.loader import load_raw_settings
from ledger_config.schema import LedgerSettings, Tolerances
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"


def get_settings(config_path: Path | None = None) -> LedgerSettings:
    """Load and validate the active settings.

    Args:
        config_path: Override file.  Defaults to ``$LEDGER_CONFIG_PATH`` when set.
    """
    if config_path is None and os.environ.get(CONFIG_PATH_ENV):
        config_path = Path(os.environ[CONFIG_PATH_ENV])
    settings = LedgerSettings.from_dict(load_raw_settings(config_path))
    logger.info(
        "ledger_config_trace",
        extra={
            "override_path": str(config_path) if config_path else None,
            "auto_create_accounts": settings.auto_create_accounts,
            "post_cost_of_goods_sold": settings.post_cost_of_goods_sold,
        },
    )
    return settings


__all__ = ["CONFIG_PATH_ENV", "LedgerSettings", "Tolerances", "get_settings"]
