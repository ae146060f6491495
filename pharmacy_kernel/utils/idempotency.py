"""
Operation key utilities.

A commit is identified by a caller-supplied idempotency key.  Each write
step of each item gets its own operation key derived from it, and the store
applies every operation key at most once.  Re-submitting a commit with the
same idempotency key therefore re-applies nothing that already landed.

An operation key may carry a plan tag: a short digest of what the item was
configured to do (disposition, quantity, replacement target).  Steps written
under one plan are never resumed under another.
"""

import hashlib
from typing import NamedTuple
from uuid import UUID

from pharmacy_kernel.domain.dtos import OperationStep

PLAN_TAG_LENGTH = 12


class OperationKey(NamedTuple):
    idempotency_key: str
    line_item_id: UUID
    step: OperationStep
    plan_tag: str | None = None


def plan_tag(
    disposition: str,
    quantity: int,
    replacement_inventory_item_id: UUID | str | None = None,
) -> str:
    """
    Digest of an item's plan.

    Example:
        >>> plan_tag("exchange", 2, item_id)
        "9c1e0f3b7a2d"
    """
    target = "" if replacement_inventory_item_id is None else str(replacement_inventory_item_id)
    payload = f"{disposition}|{quantity}|{target}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:PLAN_TAG_LENGTH]


def generate_operation_key(
    idempotency_key: str,
    line_item_id: UUID | str,
    step: OperationStep | str,
    tag: str | None = None,
) -> str:
    """
    Build the operation key for one write step.

    Format: idempotency_key:line_item_id:step[@plan_tag]

    Example:
        >>> generate_operation_key("RET-3f2a9c1d-7", item_id, OperationStep.RESTOCK)
        "RET-3f2a9c1d-7:550e8400-e29b-41d4-a716-446655440000:restock"
    """
    if not idempotency_key:
        raise ValueError("idempotency_key must be non-empty")
    step_value = step.value if isinstance(step, OperationStep) else step
    if tag is None:
        return f"{idempotency_key}:{line_item_id}:{step_value}"
    if not tag or ":" in tag or "@" in tag:
        raise ValueError(f"Invalid plan tag: {tag!r}")
    return f"{idempotency_key}:{line_item_id}:{step_value}@{tag}"


def operation_key_prefix(idempotency_key: str) -> str:
    """Prefix shared by every operation key of one commit."""
    return f"{idempotency_key}:"


def parse_operation_key(key: str) -> OperationKey:
    """
    Split an operation key into its parts.

    The idempotency key itself may contain colons; the last two segments
    never do.

    Raises:
        ValueError: If the key format is invalid.
    """
    parts = key.rsplit(":", 2)
    if len(parts) != 3 or not parts[0]:
        raise ValueError(f"Invalid operation key format: {key}")
    step_value, _, tag = parts[2].partition("@")
    if "@" in parts[2] and not tag:
        raise ValueError(f"Invalid operation key format: {key}")
    return OperationKey(parts[0], UUID(parts[1]), OperationStep(step_value), tag or None)
