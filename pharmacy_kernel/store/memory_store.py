"""
In-memory ReturnsStore.

Same contract as SqlReturnsStore, held in dicts.  Used by the test suite and
by local tooling that has no database.

Every coroutine yields to the event loop once on entry and then runs its
body without awaiting, so each operation is atomic with respect to other
tasks on the loop while concurrent callers still interleave between
operations the way they would against a real store.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import (
    AppliedOperation,
    InventoryItem,
    ReplacementLink,
    ReservationStatus,
    ReturnRecord,
    Sale,
    SaleLineItem,
)
from pharmacy_kernel.exceptions import (
    ConcurrentModificationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.utils.idempotency import parse_operation_key

logger = get_logger("store.memory")


class InMemoryReturnsStore:
    """Dict-backed store with the same atomicity and idempotency rules."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._sales: dict[UUID, Sale] = {}
        self._line_items: dict[UUID, SaleLineItem] = {}
        self._inventory: dict[UUID, InventoryItem] = {}
        self._return_records: dict[UUID, ReturnRecord] = {}
        self._replacement_links: dict[UUID, ReplacementLink] = {}
        self._applied: dict[str, AppliedOperation] = {}
        self._sequences: dict[tuple[str, int], str] = {}
        self._identifiers: set[str] = set()

    # ------------------------------------------------------------------
    # Seeding and inspection (synchronous)
    # ------------------------------------------------------------------

    def add_sale(self, sale: Sale, line_items: Iterable[SaleLineItem] = ()) -> None:
        self._sales[sale.id] = sale
        for item in line_items:
            if item.sale_id != sale.id:
                raise ValueError(f"line item {item.id} belongs to sale {item.sale_id}")
            self._line_items[item.id] = item

    def add_inventory_item(self, item: InventoryItem) -> None:
        self._inventory[item.id] = item

    def set_on_hand(self, inventory_item_id: UUID, quantity: int) -> None:
        """Overwrite stock, as an unrelated sale or stock count would."""
        self._inventory[inventory_item_id] = replace(
            self._require_inventory(inventory_item_id), on_hand_quantity=quantity,
        )

    def set_gst_percentage(self, sale_id: UUID, gst_percentage: Decimal) -> None:
        self._sales[sale_id] = replace(self._require_sale(sale_id), gst_percentage=gst_percentage)

    def inventory_snapshot(self, inventory_item_id: UUID) -> InventoryItem:
        return self._require_inventory(inventory_item_id)

    def line_item_snapshot(self, line_item_id: UUID) -> SaleLineItem:
        return self._require_line_item(line_item_id)

    @property
    def return_records(self) -> tuple[ReturnRecord, ...]:
        return tuple(self._return_records.values())

    @property
    def replacement_links(self) -> tuple[ReplacementLink, ...]:
        return tuple(self._replacement_links.values())

    @property
    def applied_operations(self) -> tuple[AppliedOperation, ...]:
        return tuple(self._applied.values())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_sale(self, sale_id: UUID) -> Sale:
        await asyncio.sleep(0)
        return self._require_sale(sale_id)

    async def get_sale_gst_percentage(self, sale_id: UUID) -> Decimal:
        await asyncio.sleep(0)
        return self._require_sale(sale_id).gst_percentage

    async def get_sale_line_items(self, sale_id: UUID) -> list[SaleLineItem]:
        await asyncio.sleep(0)
        items = [li for li in self._line_items.values() if li.sale_id == sale_id]
        return sorted(items, key=lambda li: (li.line_number, str(li.id)))

    async def get_line_item(self, line_item_id: UUID) -> SaleLineItem:
        await asyncio.sleep(0)
        return self._require_line_item(line_item_id)

    async def get_inventory_item(self, inventory_item_id: UUID) -> InventoryItem:
        await asyncio.sleep(0)
        return self._require_inventory(inventory_item_id)

    async def list_inventory_items(self, *, in_stock_only: bool = False) -> list[InventoryItem]:
        await asyncio.sleep(0)
        items = [
            item for item in self._inventory.values()
            if not in_stock_only or item.on_hand_quantity > 0
        ]
        return sorted(items, key=lambda item: (item.name, str(item.id)))

    async def list_applied_operations(self, prefix: str) -> list[AppliedOperation]:
        await asyncio.sleep(0)
        return [op for key, op in self._applied.items() if key.startswith(prefix)]

    async def list_return_records(self, sale_id: UUID) -> list[ReturnRecord]:
        await asyncio.sleep(0)
        return [r for r in self._return_records.values() if r.sale_id == sale_id]

    async def list_replacement_links(self, sale_id: UUID) -> list[ReplacementLink]:
        await asyncio.sleep(0)
        return [link for link in self._replacement_links.values() if link.sale_id == sale_id]

    async def find_max_sequence_for_scope(self, scope_key: str) -> int | None:
        await asyncio.sleep(0)
        values = [value for (scope, value) in self._sequences if scope == scope_key]
        return max(values) if values else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def adjust_inventory_quantity(
        self,
        inventory_item_id: UUID,
        delta: int,
        *,
        operation_key: str | None = None,
    ) -> InventoryItem:
        await asyncio.sleep(0)
        if self._is_replay(operation_key):
            return self._require_inventory(inventory_item_id)

        item = self._require_inventory(inventory_item_id)
        new_quantity = item.on_hand_quantity + delta
        if new_quantity < 0:
            raise InsufficientStockError(str(inventory_item_id), -delta, item.on_hand_quantity)
        updated = replace(item, on_hand_quantity=new_quantity)
        self._inventory[inventory_item_id] = updated
        self._mark_applied(operation_key)
        return updated

    async def insert_return_record(self, record: ReturnRecord) -> UUID:
        await asyncio.sleep(0)
        if self._is_replay(record.operation_key):
            return UUID(self._applied[record.operation_key].result_ref)
        self._require_line_item(record.line_item_id)
        self._return_records[record.id] = record
        self._mark_applied(record.operation_key, result_ref=str(record.id))
        return record.id

    async def insert_replacement_link(self, link: ReplacementLink) -> UUID:
        await asyncio.sleep(0)
        if self._is_replay(link.operation_key):
            return UUID(self._applied[link.operation_key].result_ref)
        self._require_line_item(link.line_item_id)
        self._replacement_links[link.id] = link
        self._mark_applied(link.operation_key, result_ref=str(link.id))
        return link.id

    async def update_line_item_returned_quantity(
        self,
        line_item_id: UUID,
        new_value: int,
        *,
        expected_value: int,
        operation_key: str | None = None,
    ) -> SaleLineItem:
        await asyncio.sleep(0)
        if self._is_replay(operation_key):
            return self._require_line_item(line_item_id)

        current = self._require_line_item(line_item_id)
        if current.returned_quantity != expected_value:
            raise ConcurrentModificationError(
                "sale_line_item", str(line_item_id), expected_value, current.returned_quantity,
            )
        if not 0 <= new_value <= current.quantity_sold:
            raise ValidationError.single(
                line_item_id,
                "quantity",
                f"returned quantity {new_value} outside 0..{current.quantity_sold}",
            )
        updated = replace(current, returned_quantity=new_value)
        self._line_items[line_item_id] = updated
        self._mark_applied(operation_key)
        return updated

    async def reserve_sequence_value(
        self, scope_key: str, value: int, identifier: str,
    ) -> ReservationStatus:
        await asyncio.sleep(0)
        if (scope_key, value) in self._sequences or identifier in self._identifiers:
            return ReservationStatus.CONFLICT
        self._sequences[(scope_key, value)] = identifier
        self._identifiers.add(identifier)
        return ReservationStatus.RESERVED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_sale(self, sale_id: UUID) -> Sale:
        try:
            return self._sales[sale_id]
        except KeyError:
            raise NotFoundError("sale", str(sale_id)) from None

    def _require_line_item(self, line_item_id: UUID) -> SaleLineItem:
        try:
            return self._line_items[line_item_id]
        except KeyError:
            raise NotFoundError("sale_line_item", str(line_item_id)) from None

    def _require_inventory(self, inventory_item_id: UUID) -> InventoryItem:
        try:
            return self._inventory[inventory_item_id]
        except KeyError:
            raise NotFoundError("inventory_item", str(inventory_item_id)) from None

    def _is_replay(self, operation_key: str | None) -> bool:
        if operation_key is None:
            return False
        # Malformed keys are rejected before anything is written
        parse_operation_key(operation_key)
        if operation_key not in self._applied:
            return False
        logger.info("operation_replayed", extra={"operation_key": operation_key})
        return True

    def _mark_applied(self, operation_key: str | None, result_ref: str | None = None) -> None:
        if operation_key is None:
            return
        parsed = parse_operation_key(operation_key)
        self._applied[operation_key] = AppliedOperation(
            operation_key=operation_key,
            step=parsed.step,
            line_item_id=parsed.line_item_id,
            applied_at=self._clock.now_utc(),
            result_ref=result_ref,
        )
