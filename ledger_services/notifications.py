"""
Notification collaborator.

Alerts (an organization out of balance, a failed nightly run) leave the
core through a ``Notifier``.  Callers register the send as a post-commit
hook, so an alert never fires for work that rolled back.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ledger_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget alert sink."""

    def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default notifier: one CRITICAL log record per alert."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.critical(event, extra={"alert": True, **payload})
