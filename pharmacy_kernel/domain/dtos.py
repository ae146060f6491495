"""
Domain DTOs for the returns kernel.

Frozen dataclasses passed between the store, the engines and the services.
ORM models convert to these with ``to_dto()``; nothing above the store layer
ever sees an ORM object.

Money is ``Decimal`` throughout and is never rounded here except by the
explicit display helpers at the bottom of the module.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID


class Disposition(str, Enum):
    """What happens to a returned quantity."""

    RETURN_TO_STOCK = "return_to_stock"
    DISPOSE = "dispose"
    EXCHANGE = "exchange"

    @property
    def restocks(self) -> bool:
        """True when the returned units go back on the shelf."""
        return self is not Disposition.DISPOSE


class ReservationStatus(str, Enum):
    """Outcome of reserving a scoped sequence value."""

    RESERVED = "reserved"
    CONFLICT = "conflict"


class OperationStep(str, Enum):
    """Individually keyed write steps of a committed item."""

    RECORD = "record"
    LINK = "link"
    RETURNED_QUANTITY = "returned_quantity"
    RESTOCK = "restock"
    REPLACEMENT_DEDUCT = "replacement_deduct"


@dataclass(frozen=True)
class Sale:
    """A completed sale. ``gst_percentage`` is fixed at sale creation."""

    id: UUID
    sale_number: str
    gst_percentage: Decimal

    def __post_init__(self) -> None:
        if not Decimal("0") <= self.gst_percentage <= Decimal("100"):
            raise ValueError(
                f"gst_percentage must be between 0 and 100, got {self.gst_percentage}"
            )


@dataclass(frozen=True)
class SaleLineItem:
    """One medicine sold within a sale."""

    id: UUID
    sale_id: UUID
    inventory_item_id: UUID
    quantity_sold: int
    unit_price: Decimal
    returned_quantity: int = 0
    line_number: int = 0

    def __post_init__(self) -> None:
        if self.quantity_sold < 0:
            raise ValueError(f"quantity_sold cannot be negative: {self.quantity_sold}")
        if not 0 <= self.returned_quantity <= self.quantity_sold:
            raise ValueError(
                f"returned_quantity {self.returned_quantity} outside "
                f"[0, {self.quantity_sold}] for line item {self.id}"
            )

    @property
    def remaining_returnable(self) -> int:
        return self.quantity_sold - self.returned_quantity


@dataclass(frozen=True)
class InventoryItem:
    """Stock record."""

    id: UUID
    name: str
    on_hand_quantity: int
    unit_cost: Decimal

    def __post_init__(self) -> None:
        if self.on_hand_quantity < 0:
            raise ValueError(
                f"on_hand_quantity cannot be negative for {self.id}: {self.on_hand_quantity}"
            )

    @property
    def in_stock(self) -> bool:
        return self.on_hand_quantity > 0


@dataclass(frozen=True)
class ReturnRecord:
    """Append-only ledger entry for a committed return or disposal."""

    id: UUID
    sale_id: UUID
    line_item_id: UUID
    quantity: int
    disposition: Disposition
    reason: str
    recorded_at: datetime
    actor_id: UUID
    value: Decimal
    document_number: str
    operation_key: str


@dataclass(frozen=True)
class ReplacementLink:
    """Append-only link between a returned line item and its replacement.

    ``net_price_delta`` is replacement total minus original total, GST
    inclusive. Positive means the customer pays more.
    """

    id: UUID
    sale_id: UUID
    line_item_id: UUID
    replacement_inventory_item_id: UUID
    quantity: int
    net_price_delta: Decimal
    reason: str
    recorded_at: datetime
    actor_id: UUID
    document_number: str
    operation_key: str


@dataclass(frozen=True)
class AppliedOperation:
    """Marker that one keyed write step has been applied."""

    operation_key: str
    step: OperationStep
    line_item_id: UUID
    applied_at: datetime
    result_ref: str | None = None

    @property
    def plan_tag(self) -> str | None:
        """Plan digest carried by the operation key, if any."""
        _, _, tag = self.operation_key.rpartition(":")[2].partition("@")
        return tag or None


@dataclass(frozen=True)
class CommittedItem:
    """One configured item whose writes all landed.

    ``value`` is the item's settlement: positive when the customer pays,
    negative when the customer is refunded.
    """

    line_item_id: UUID
    name: str
    quantity: int
    disposition: Disposition
    value: Decimal
    ledger_id: UUID

    @property
    def refund_amount(self) -> Decimal:
        return -self.value if self.value < 0 else Decimal("0")

    @property
    def additional_charge(self) -> Decimal:
        return self.value if self.value > 0 else Decimal("0")


@dataclass(frozen=True)
class FailedItem:
    """One configured item that did not fully commit.

    ``completed_steps`` lists the write steps that did land, so a retry with
    the same idempotency key resumes after them.
    """

    line_item_id: UUID
    name: str
    quantity: int
    disposition: Disposition
    reason: str
    error_code: str
    completed_steps: tuple[OperationStep, ...] = ()


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

DISPLAY_QUANTUM = Decimal("0.01")


def round_for_display(amount: Decimal) -> Decimal:
    """Round to two places, half up. Presentation only."""
    return amount.quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    return f"{round_for_display(amount):.2f}"


def describe_settlement(refund: Decimal, charge: Decimal) -> str:
    """Operator wording for money owed each way, e.g. ``refund 118.00``."""
    parts = []
    if refund > 0:
        parts.append(f"refund {format_amount(refund)}")
    if charge > 0:
        parts.append(f"additional charge {format_amount(charge)}")
    if refund > 0 and charge > 0:
        net = charge - refund
        if net > 0:
            parts.append(f"net {format_amount(net)} customer pays")
        elif net < 0:
            parts.append(f"net {format_amount(-net)} customer receives")
        else:
            parts.append("net 0.00")
    return ", ".join(parts) or "no payment due"
