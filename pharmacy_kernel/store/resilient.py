"""
ResilientStore: a ReturnsStore wrapper that routes every call through a
StoreCallPolicy.

Retry safety per operation:
    reads                               always retried
    adjust_inventory_quantity           retried only with an operation_key
    update_line_item_returned_quantity  retried only with an operation_key
    insert_return_record / _link        always keyed, always retried
    reserve_sequence_value              retried; a replay of a reservation
                                        that did land answers CONFLICT and
                                        the allocator moves to the next value
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pharmacy_kernel.domain.dtos import (
    AppliedOperation,
    InventoryItem,
    ReplacementLink,
    ReservationStatus,
    ReturnRecord,
    Sale,
    SaleLineItem,
)
from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_kernel.store.call_policy import StoreCallPolicy


class ResilientStore:
    """Applies timeout/retry policy around an inner ReturnsStore."""

    def __init__(self, inner: ReturnsStore, policy: StoreCallPolicy | None = None):
        self._inner = inner
        self._policy = policy or StoreCallPolicy()

    @property
    def inner(self) -> ReturnsStore:
        return self._inner

    @property
    def policy(self) -> StoreCallPolicy:
        return self._policy

    async def get_sale(self, sale_id: UUID) -> Sale:
        return await self._policy.call(
            "get_sale", lambda: self._inner.get_sale(sale_id), retry_safe=True,
        )

    async def get_sale_gst_percentage(self, sale_id: UUID) -> Decimal:
        return await self._policy.call(
            "get_sale_gst_percentage",
            lambda: self._inner.get_sale_gst_percentage(sale_id),
            retry_safe=True,
        )

    async def get_sale_line_items(self, sale_id: UUID) -> list[SaleLineItem]:
        return await self._policy.call(
            "get_sale_line_items",
            lambda: self._inner.get_sale_line_items(sale_id),
            retry_safe=True,
        )

    async def get_line_item(self, line_item_id: UUID) -> SaleLineItem:
        return await self._policy.call(
            "get_line_item", lambda: self._inner.get_line_item(line_item_id), retry_safe=True,
        )

    async def get_inventory_item(self, inventory_item_id: UUID) -> InventoryItem:
        return await self._policy.call(
            "get_inventory_item",
            lambda: self._inner.get_inventory_item(inventory_item_id),
            retry_safe=True,
        )

    async def list_inventory_items(self, *, in_stock_only: bool = False) -> list[InventoryItem]:
        return await self._policy.call(
            "list_inventory_items",
            lambda: self._inner.list_inventory_items(in_stock_only=in_stock_only),
            retry_safe=True,
        )

    async def list_applied_operations(self, prefix: str) -> list[AppliedOperation]:
        return await self._policy.call(
            "list_applied_operations",
            lambda: self._inner.list_applied_operations(prefix),
            retry_safe=True,
        )

    async def list_return_records(self, sale_id: UUID) -> list[ReturnRecord]:
        return await self._policy.call(
            "list_return_records",
            lambda: self._inner.list_return_records(sale_id),
            retry_safe=True,
        )

    async def list_replacement_links(self, sale_id: UUID) -> list[ReplacementLink]:
        return await self._policy.call(
            "list_replacement_links",
            lambda: self._inner.list_replacement_links(sale_id),
            retry_safe=True,
        )

    async def find_max_sequence_for_scope(self, scope_key: str) -> int | None:
        return await self._policy.call(
            "find_max_sequence_for_scope",
            lambda: self._inner.find_max_sequence_for_scope(scope_key),
            retry_safe=True,
        )

    async def adjust_inventory_quantity(
        self,
        inventory_item_id: UUID,
        delta: int,
        *,
        operation_key: str | None = None,
    ) -> InventoryItem:
        return await self._policy.call(
            "adjust_inventory_quantity",
            lambda: self._inner.adjust_inventory_quantity(
                inventory_item_id, delta, operation_key=operation_key,
            ),
            retry_safe=operation_key is not None,
        )

    async def insert_return_record(self, record: ReturnRecord) -> UUID:
        return await self._policy.call(
            "insert_return_record",
            lambda: self._inner.insert_return_record(record),
            retry_safe=True,
        )

    async def insert_replacement_link(self, link: ReplacementLink) -> UUID:
        return await self._policy.call(
            "insert_replacement_link",
            lambda: self._inner.insert_replacement_link(link),
            retry_safe=True,
        )

    async def update_line_item_returned_quantity(
        self,
        line_item_id: UUID,
        new_value: int,
        *,
        expected_value: int,
        operation_key: str | None = None,
    ) -> SaleLineItem:
        return await self._policy.call(
            "update_line_item_returned_quantity",
            lambda: self._inner.update_line_item_returned_quantity(
                line_item_id,
                new_value,
                expected_value=expected_value,
                operation_key=operation_key,
            ),
            retry_safe=operation_key is not None,
        )

    async def reserve_sequence_value(
        self, scope_key: str, value: int, identifier: str,
    ) -> ReservationStatus:
        return await self._policy.call(
            "reserve_sequence_value",
            lambda: self._inner.reserve_sequence_value(scope_key, value, identifier),
            retry_safe=True,
        )
