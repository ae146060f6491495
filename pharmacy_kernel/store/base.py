"""
Returns store protocol.

Contract:
    Every method is a coroutine.  Implementations must honour these rules:

    * ``adjust_inventory_quantity`` applies a delta atomically at the store
      (no read-modify-write in application code) and rejects a result below
      zero with InsufficientStockError, leaving the row unchanged.
    * ``update_line_item_returned_quantity`` is a compare-and-set: it writes
      ``new_value`` only if the current value equals ``expected_value`` and
      ``new_value`` stays within [0, quantity_sold].
    * Every write that carries an ``operation_key`` is applied at most once.
      Replaying a key returns the current state (or the id created the first
      time) without writing again.
    * ``reserve_sequence_value`` answers CONFLICT, never raises, when the
      (scope_key, value) pair is already taken.

Architecture: pharmacy_kernel/store.  Engines and services depend on this
protocol only, never on an implementation.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable
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


@runtime_checkable
class ReturnsStore(Protocol):
    """Persistent store consumed by the returns engine."""

    async def get_sale(self, sale_id: UUID) -> Sale:
        """Raises NotFoundError if the sale does not exist."""
        ...

    async def get_sale_gst_percentage(self, sale_id: UUID) -> Decimal:
        """GST percentage fixed on the sale. Raises NotFoundError."""
        ...

    async def get_sale_line_items(self, sale_id: UUID) -> list[SaleLineItem]:
        """Line items of the sale in line order (empty if none)."""
        ...

    async def get_line_item(self, line_item_id: UUID) -> SaleLineItem:
        """Raises NotFoundError."""
        ...

    async def get_inventory_item(self, inventory_item_id: UUID) -> InventoryItem:
        """Raises NotFoundError."""
        ...

    async def list_inventory_items(self, *, in_stock_only: bool = False) -> list[InventoryItem]:
        """Inventory ordered by name."""
        ...

    async def adjust_inventory_quantity(
        self,
        inventory_item_id: UUID,
        delta: int,
        *,
        operation_key: str | None = None,
    ) -> InventoryItem:
        """Atomically add ``delta`` to on-hand quantity; returns the new state."""
        ...

    async def insert_return_record(self, record: ReturnRecord) -> UUID:
        """Append a ledger record keyed by ``record.operation_key``."""
        ...

    async def insert_replacement_link(self, link: ReplacementLink) -> UUID:
        """Append a replacement link keyed by ``link.operation_key``."""
        ...

    async def update_line_item_returned_quantity(
        self,
        line_item_id: UUID,
        new_value: int,
        *,
        expected_value: int,
        operation_key: str | None = None,
    ) -> SaleLineItem:
        """Compare-and-set the returned-quantity counter."""
        ...

    async def list_applied_operations(self, prefix: str) -> list[AppliedOperation]:
        """Applied operations whose key starts with ``prefix``."""
        ...

    async def list_return_records(self, sale_id: UUID) -> list[ReturnRecord]:
        ...

    async def list_replacement_links(self, sale_id: UUID) -> list[ReplacementLink]:
        ...

    async def find_max_sequence_for_scope(self, scope_key: str) -> int | None:
        """Highest reserved value in the scope, or None."""
        ...

    async def reserve_sequence_value(
        self, scope_key: str, value: int, identifier: str,
    ) -> ReservationStatus:
        """Reserve ``value`` in the scope under ``identifier``."""
        ...
