"""
ReplacementMatcher -- applies one exchange.

Write order (each step keyed, skipped when already applied):

    1. replacement_deduct   conditional -quantity on the replacement item
    2. link                 ReplacementLink with the signed net delta
    3. returned_quantity    compare-and-set on the original line item
    4. restock              +quantity on the original item

The decrement runs first and is decided by the store against persisted
stock at write time.  When it fails with InsufficientStockError nothing
has been written for the item, so neither inventory row moves.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from pharmacy_engines.value_calculator import ExchangeValuation, ValueCalculator
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import OperationStep, ReplacementLink
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_services.commit_steps import ItemProgress, advance_returned_quantity

logger = get_logger("services.replacement_matcher")


@dataclass(frozen=True)
class ExchangeRequest:
    """Everything needed to apply one exchange."""

    sale_id: UUID
    line_item_id: UUID
    original_inventory_item_id: UUID
    replacement_inventory_item_id: UUID
    quantity: int
    original_unit_price: Decimal
    replacement_unit_price: Decimal
    gst_percentage: Decimal
    reason: str
    actor_id: UUID
    document_number: str

    def __post_init__(self) -> None:
        if self.original_inventory_item_id == self.replacement_inventory_item_id:
            raise ValueError("replacement must differ from the original inventory item")
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive, got {self.quantity}")


@dataclass(frozen=True)
class ExchangeOutcome:
    link_id: UUID
    valuation: ExchangeValuation

    @property
    def net(self) -> Decimal:
        return self.valuation.net


class ReplacementMatcher:
    """Executes exchanges against the store."""

    def __init__(
        self,
        store: ReturnsStore,
        clock: Clock | None = None,
        calculator: ValueCalculator | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._calculator = calculator or ValueCalculator()

    def value(self, request: ExchangeRequest) -> ExchangeValuation:
        return self._calculator.exchange(
            request.original_unit_price,
            request.replacement_unit_price,
            request.quantity,
            request.gst_percentage,
        )

    async def apply(self, request: ExchangeRequest, progress: ItemProgress) -> ExchangeOutcome:
        """
        Apply the exchange, resuming after any steps in ``progress``.

        Raises:
            InsufficientStockError: replacement stock below ``quantity``.
            ValidationError / ConcurrentModificationError: the line item's
                returned counter could not be advanced.
            StoreError: the store failed; steps in ``progress`` landed.
        """
        valuation = self.value(request)

        step = OperationStep.REPLACEMENT_DEDUCT
        if not progress.is_done(step):
            await self._store.adjust_inventory_quantity(
                request.replacement_inventory_item_id,
                -request.quantity,
                operation_key=progress.key(step),
            )
            progress.mark(step)

        step = OperationStep.LINK
        link_id = progress.result_ref(step)
        if link_id is None:
            link = ReplacementLink(
                id=uuid.uuid4(),
                sale_id=request.sale_id,
                line_item_id=request.line_item_id,
                replacement_inventory_item_id=request.replacement_inventory_item_id,
                quantity=request.quantity,
                net_price_delta=valuation.net,
                reason=request.reason,
                recorded_at=self._clock.now_utc(),
                actor_id=request.actor_id,
                document_number=request.document_number,
                operation_key=progress.key(step),
            )
            link_id = await self._store.insert_replacement_link(link)
            progress.mark(step)

        step = OperationStep.RETURNED_QUANTITY
        if not progress.is_done(step):
            await advance_returned_quantity(
                self._store,
                request.line_item_id,
                request.quantity,
                operation_key=progress.key(step),
            )
            progress.mark(step)

        step = OperationStep.RESTOCK
        if not progress.is_done(step):
            await self._store.adjust_inventory_quantity(
                request.original_inventory_item_id,
                request.quantity,
                operation_key=progress.key(step),
            )
            progress.mark(step)

        logger.info(
            "exchange_applied",
            extra={
                "line_item_id": str(request.line_item_id),
                "replacement_inventory_item_id": str(request.replacement_inventory_item_id),
                "quantity": request.quantity,
                "net_price_delta": str(valuation.net),
                "link_id": str(link_id),
            },
        )
        return ExchangeOutcome(link_id=link_id, valuation=valuation)
