"""
Typed exception hierarchy for the ledger kernel.

Every error the core can raise has its own class, a static ``code`` class
attribute (machine readable, API safe) and structured attributes carrying
the data a caller needs to react.  Callers catch by type and read fields;
they never parse messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError                  client-correctable input problem
    |   +-- DocumentCancelledError
    |   +-- HardDeleteForbiddenError
    |   +-- PaymentExceedsTotalError
    |   +-- EditBlockedByPaymentError
    |
    +-- InvariantError                   a journal line is not single-sided
    +-- BalanceError                     a posting does not net to zero
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- StockConsumedError
    |
    +-- CriticalAccountMissing           chart of accounts misconfigured
    +-- NotFoundError
    +-- OutOfBalance                     organization-level ledger finding
    |
    +-- ConcurrencyError
    |   +-- TransientConflictError
    |   +-- JobLockedError
    |
    +-- ImmutabilityViolationError
    |
    +-- BatchError
        +-- BatchJobNotFoundError
        +-- BatchAlreadyRunningError
        +-- BatchIdempotencyError
        +-- TaskNotRegisteredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input, bad quantity, bad range
                | DOCUMENT_CANCELLED          | Edit/cancel of a cancelled document
                | HARD_DELETE_FORBIDDEN       | Delete of a posted document
                | PAYMENT_EXCEEDS_TOTAL       | Paid amount above document balance
                | EDIT_BLOCKED_BY_PAYMENT     | Financial edit of a paid purchase
----------------|-----------------------------|-----------------------------------------
Ledger          | LINE_INVARIANT_VIOLATED     | Line has both or neither side set
                | UNBALANCED_POSTING          | Sum(debit) != Sum(credit)
                | CRITICAL_ACCOUNT_MISSING    | Required account absent (fatal)
                | ORGANIZATION_OUT_OF_BALANCE | Nightly check found a gap
----------------|-----------------------------|-----------------------------------------
Inventory       | INSUFFICIENT_STOCK          | Branch stock below requested quantity
                | STOCK_CONSUMED              | Purchased stock already sold/used
----------------|-----------------------------|-----------------------------------------
Lookup          | NOT_FOUND                   | Entity missing in the organization
----------------|-----------------------------|-----------------------------------------
Concurrency     | TRANSIENT_CONFLICT          | Retryable storage conflict
                | JOB_LOCKED                  | Another process holds the job token
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | In-place update of a journal line
----------------|-----------------------------|-----------------------------------------
Batch           | BATCH_JOB_NOT_FOUND         | Unknown job id
                | BATCH_ALREADY_RUNNING       | Job not in PENDING state
                | BATCH_IDEMPOTENCY_CONFLICT  | Idempotency key already used
                | TASK_NOT_REGISTERED         | Unknown task type

``client_correctable`` is True for errors a caller fixes by changing its
input (validation and inventory errors) and False for server-side failures.
"""

from __future__ import annotations

from decimal import Decimal


class LedgerKernelError(Exception):
    """Base exception for all ledger kernel errors."""

    code: str = "LEDGER_KERNEL_ERROR"
    client_correctable: bool = False


# Validation


class ValidationError(LedgerKernelError):
    """Input failed validation before any state was touched."""

    code: str = "VALIDATION_ERROR"
    client_correctable = True

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DocumentCancelledError(ValidationError):
    """A cancelled document is terminal."""

    code: str = "DOCUMENT_CANCELLED"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(
            f"{document_type} {document_id} is cancelled and cannot be changed"
        )


class HardDeleteForbiddenError(ValidationError):
    """Posted documents are never deleted; cancel them instead."""

    code: str = "HARD_DELETE_FORBIDDEN"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(
            f"{document_type} {document_id} cannot be deleted; cancel it instead"
        )


class PaymentExceedsTotalError(ValidationError):
    """Paid amount would exceed the document total."""

    code: str = "PAYMENT_EXCEEDS_TOTAL"

    def __init__(self, document_id: str, amount: Decimal, allowed: Decimal):
        self.document_id = document_id
        self.amount = amount
        self.allowed = allowed
        super().__init__(
            f"Payment {amount} exceeds the {allowed} still payable on {document_id}"
        )


class EditBlockedByPaymentError(ValidationError):
    """Financial changes to a document that already received payment."""

    code: str = "EDIT_BLOCKED_BY_PAYMENT"

    def __init__(self, document_type: str, document_id: str, paid_amount: Decimal):
        self.document_type = document_type
        self.document_id = document_id
        self.paid_amount = paid_amount
        super().__init__(
            f"{document_type} {document_id} has payments of {paid_amount}; "
            "financial changes are not allowed"
        )


# Ledger


class InvariantError(LedgerKernelError):
    """A journal line violates the single-sided debit/credit rule."""

    code: str = "LINE_INVARIANT_VIOLATED"

    def __init__(self, reason: str, debit: Decimal, credit: Decimal):
        self.reason = reason
        self.debit = debit
        self.credit = credit
        super().__init__(f"Invalid journal line ({reason}): debit={debit} credit={credit}")


class BalanceError(LedgerKernelError):
    """A posting set does not net to zero."""

    code: str = "UNBALANCED_POSTING"

    def __init__(self, debits: Decimal, credits: Decimal, reference_id: str | None = None):
        self.debits = debits
        self.credits = credits
        self.reference_id = reference_id
        super().__init__(
            f"Posting {reference_id or ''} is unbalanced: debits={debits} credits={credits}"
        )


class CriticalAccountMissing(LedgerKernelError):
    """A required chart-of-accounts entry is absent.

    Fatal misconfiguration: the operation aborts rather than skipping
    the posting.
    """

    code: str = "CRITICAL_ACCOUNT_MISSING"

    def __init__(self, organization_id: str, role: str, account_code: str | None = None):
        self.organization_id = organization_id
        self.role = role
        self.account_code = account_code
        super().__init__(
            f"Required account for role {role} "
            f"(code {account_code or 'unmapped'}) missing in organization {organization_id}"
        )


class OutOfBalance(LedgerKernelError):
    """An organization's all-time debits and credits disagree."""

    code: str = "ORGANIZATION_OUT_OF_BALANCE"

    def __init__(self, organization_id: str, debits: Decimal, credits: Decimal):
        self.organization_id = organization_id
        self.debits = debits
        self.credits = credits
        self.difference = debits - credits
        super().__init__(
            f"Organization {organization_id} out of balance by {self.difference}"
        )


class NotFoundError(LedgerKernelError):
    """Entity does not exist in the organization."""

    code: str = "NOT_FOUND"
    client_correctable = True

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Inventory


class InventoryError(LedgerKernelError):
    """Base exception for inventory safety errors."""

    code: str = "INVENTORY_ERROR"
    client_correctable = True


class InsufficientStockError(InventoryError):
    """Branch stock cannot cover the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, branch_id: str, available: Decimal, requested: Decimal):
        self.product_id = product_id
        self.branch_id = branch_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} at branch {branch_id}: "
            f"available={available} requested={requested}"
        )


class StockConsumedError(InventoryError):
    """Stock added by a document was already consumed; it cannot be reversed."""

    code: str = "STOCK_CONSUMED"

    def __init__(self, product_id: str, branch_id: str, available: Decimal, required: Decimal):
        self.product_id = product_id
        self.branch_id = branch_id
        self.available = available
        self.required = required
        super().__init__(
            f"Stock for product {product_id} at branch {branch_id} was already consumed: "
            f"available={available} required={required}"
        )


# Concurrency


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class TransientConflictError(ConcurrencyError):
    """Storage-level conflict that is safe to retry."""

    code: str = "TRANSIENT_CONFLICT"

    def __init__(self, message: str = "transient storage conflict"):
        super().__init__(message)


class JobLockedError(ConcurrencyError):
    """Another process holds the job's mutual-exclusion token."""

    code: str = "JOB_LOCKED"

    def __init__(self, job_name: str, holder: str | None = None):
        self.job_name = job_name
        self.holder = holder
        super().__init__(f"Job {job_name} is locked by {holder or 'another process'}")


# Immutability


class ImmutabilityViolationError(LedgerKernelError):
    """Attempted to modify a record that is append-only."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Batch


class BatchError(LedgerKernelError):
    """Base exception for batch processing errors."""

    code: str = "BATCH_ERROR"


class BatchJobNotFoundError(BatchError):
    """Batch job id does not exist."""

    code: str = "BATCH_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Batch job not found: {job_id}")


class BatchAlreadyRunningError(BatchError):
    """Job is not in a state that allows execution."""

    code: str = "BATCH_ALREADY_RUNNING"

    def __init__(self, job_name: str, job_id: str):
        self.job_name = job_name
        self.job_id = job_id
        super().__init__(f"Batch job {job_name} ({job_id}) is not pending")


class BatchIdempotencyError(BatchError):
    """Idempotency key already used by an earlier job."""

    code: str = "BATCH_IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_job_id: str):
        self.idempotency_key = idempotency_key
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Idempotency key {idempotency_key} already used by job {existing_job_id}"
        )


class TaskNotRegisteredError(BatchError):
    """Task type is not in the registry."""

    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: list[str] | tuple[str, ...] = ()):
        self.task_type = task_type
        self.available = list(available)
        super().__init__(
            f"Task type {task_type} is not registered (available: {', '.join(self.available)})"
        )
