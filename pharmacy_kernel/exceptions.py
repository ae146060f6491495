"""
Typed exception hierarchy for the pharmacy returns kernel.

Every error raised by the kernel, engines and services is a subclass of
``PharmacyKernelError``.  Each class carries a machine-readable ``code``
class attribute and keeps its context as structured attributes, so callers
catch by type and read fields instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PharmacyKernelError (base)
    |
    +-- ValidationError
    +-- NotFoundError
    +-- DependencyError
    +-- InsufficientStockError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |   +-- ConcurrentModificationError
    |
    +-- CommitError
    |   +-- PartialFailureError
    |
    +-- InvalidTransitionError
    |
    +-- ImmutabilityViolationError
    |
    +-- StoreError
        +-- StoreUnavailableError
        +-- AmbiguousWriteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                      | When Raised
--------------------------|-----------------------------------------------
VALIDATION_FAILED         | Bad quantity, short reason, bad exchange target
NOT_FOUND                 | Sale, line item or inventory item missing
DEPENDENCY_FAILED         | Display-name lookup failed (degraded, not fatal)
INSUFFICIENT_STOCK        | Stock would go below zero
CONFLICT                  | Identifier retries exhausted, or GST drifted
CONCURRENT_MODIFICATION   | Compare-and-set lost to another writer
PARTIAL_COMMIT            | Some items committed, others did not
INVALID_TRANSITION        | Return-flow action not allowed in this state
IMMUTABILITY_VIOLATION    | Update/delete of a ledger row
STORE_UNAVAILABLE         | Transient store failure, retries exhausted
AMBIGUOUS_WRITE           | Un-keyed write timed out, outcome unknown

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        result = await committer.commit(configuration, ...)
    except ValidationError as e:
        for err in e.errors:
            show_field_error(err.line_item_id, err.field, err.message)
    except PartialFailureError as e:
        notify(e.summary())        # committed/failed split, in money terms
        retry_only(e.failed)       # same idempotency key
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence
from uuid import UUID

if TYPE_CHECKING:
    from pharmacy_kernel.domain.dtos import CommittedItem, FailedItem


class PharmacyKernelError(Exception):
    """
    Base exception for all pharmacy kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "PHARMACY_KERNEL_ERROR"


# Validation


@dataclass(frozen=True)
class FieldError:
    """One field-level validation problem.

    ``line_item_id`` is None for problems with the selection as a whole.
    """

    line_item_id: UUID | None
    field: str
    message: str


class ValidationError(PharmacyKernelError):
    """Input failed validation. Raised before any store write."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, errors: Sequence[FieldError]):
        self.errors = tuple(errors)
        if len(self.errors) == 1:
            detail = self.errors[0].message
        else:
            detail = f"{len(self.errors)} problems"
        super().__init__(f"Validation failed: {detail}")

    @classmethod
    def single(
        cls, line_item_id: UUID | None, field: str, message: str,
    ) -> ValidationError:
        return cls([FieldError(line_item_id, field, message)])

    def messages_for(self, line_item_id: UUID | None) -> list[str]:
        """Messages for one line item (or for the selection when None)."""
        return [e.message for e in self.errors if e.line_item_id == line_item_id]


class NotFoundError(PharmacyKernelError):
    """Entity with the given id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class DependencyError(PharmacyKernelError):
    """
    A non-critical lookup failed.

    Never fatal on its own: callers degrade (placeholder name) and keep
    the error for reporting.
    """

    code: str = "DEPENDENCY_FAILED"

    def __init__(self, dependency: str, entity_id: str, reason: str):
        self.dependency = dependency
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{dependency} lookup failed for {entity_id}: {reason}")


class InsufficientStockError(PharmacyKernelError):
    """A stock decrement would take on-hand quantity below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, inventory_item_id: str, requested: int, available: int):
        self.inventory_item_id = inventory_item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for inventory item {inventory_item_id}: "
            f"requested {requested}, available {available}"
        )


# Concurrency


class ConcurrencyError(PharmacyKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """A uniqueness or consistency conflict that could not be resolved locally."""

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, key: str, reason: str):
        self.entity_type = entity_type
        self.key = key
        self.reason = reason
        super().__init__(f"Conflict on {entity_type} {key}: {reason}")


class ConcurrentModificationError(ConcurrencyError):
    """A compare-and-set update found a different value than expected."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self, entity_type: str, entity_id: str, expected: object, actual: object,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently: "
            f"expected {expected}, found {actual}"
        )


# Commit


class CommitError(PharmacyKernelError):
    """Base exception for commit errors."""

    code: str = "COMMIT_ERROR"


class PartialFailureError(CommitError):
    """
    Some configured items committed and others did not.

    ``committed`` and ``failed`` give the exact split.  Re-submitting the
    commit with the same idempotency key resumes only the failed items.
    """

    code: str = "PARTIAL_COMMIT"

    def __init__(
        self,
        idempotency_key: str,
        committed: Sequence[CommittedItem],
        failed: Sequence[FailedItem],
    ):
        self.idempotency_key = idempotency_key
        self.committed = tuple(committed)
        self.failed = tuple(failed)
        super().__init__(
            f"Commit {idempotency_key} incomplete: "
            f"{len(self.committed)} item(s) committed, {len(self.failed)} failed"
        )

    @property
    def committed_value(self) -> Decimal:
        """Net settlement of the committed items; positive means the customer pays."""
        return sum((item.value for item in self.committed), Decimal("0"))

    @property
    def committed_refund(self) -> Decimal:
        return sum((item.refund_amount for item in self.committed), Decimal("0"))

    @property
    def committed_charge(self) -> Decimal:
        return sum((item.additional_charge for item in self.committed), Decimal("0"))

    @property
    def failed_line_item_ids(self) -> tuple[UUID, ...]:
        return tuple(item.line_item_id for item in self.failed)

    def summary(self) -> str:
        """Operator-facing summary in quantities and money."""
        from pharmacy_kernel.domain.dtos import describe_settlement

        parts = [
            f"{len(self.committed)} item(s) processed, "
            f"{describe_settlement(self.committed_refund, self.committed_charge)}."
        ]
        if self.failed:
            failures = "; ".join(
                f"{item.name} x{item.quantity} ({item.reason})"
                for item in self.failed
            )
            parts.append(f"Not processed: {failures}.")
        return " ".join(parts)


# Return flow


class InvalidTransitionError(PharmacyKernelError):
    """The requested action is not allowed from the current flow state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, workflow: str, from_state: str, action: str):
        self.workflow = workflow
        self.from_state = from_state
        self.action = action
        super().__init__(
            f"Action '{action}' is not allowed in state '{from_state}' "
            f"of workflow {workflow}"
        )


# Immutability


class ImmutabilityViolationError(PharmacyKernelError):
    """Attempted to modify or delete an append-only ledger row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Store


class StoreError(PharmacyKernelError):
    """Base exception for persistent-store failures."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """The store could not be reached or the call kept failing."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")


class AmbiguousWriteError(StoreError):
    """
    A write without an operation key timed out.

    The write may or may not have been applied, so it is not resubmitted.
    """

    code: str = "AMBIGUOUS_WRITE"

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{operation} timed out after {timeout_seconds}s and carries no "
            "operation key; treat it as possibly applied"
        )
