"""
Sales Module.

Customer invoices, their line items and the append-only invoice audit
trail.  Posting and rebooking of invoices live in ``posting`` and
``rebooking``.
"""

from ledger_modules.sales.models import AuditAction, InvoiceStatus, PaymentStatus

__all__ = ["AuditAction", "InvoiceStatus", "PaymentStatus"]
