"""
ReturnSelectionCatalog -- the returnable line items of one sale.

Responsibility:
    ``load(sale_id)`` fetches the sale and its line items, resolves each
    item's display name and keeps only items with something left to
    return.  Also lists in-stock inventory an exchange can draw from.

Failure modes:
    - NotFoundError: the sale does not exist.  Propagates.
    - DependencyError: a display-name lookup failed.  Logged and kept on
      the catalog; the item stays in the catalog under a placeholder name
      so returnable stock is never hidden.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from pharmacy_kernel.domain.dtos import InventoryItem, Sale, SaleLineItem
from pharmacy_kernel.exceptions import (
    DependencyError,
    NotFoundError,
    StoreUnavailableError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.store.base import ReturnsStore

logger = get_logger("services.return_catalog")

DEFAULT_UNKNOWN_ITEM_NAME = "Unknown Item"


@dataclass(frozen=True)
class CatalogItem:
    """A returnable line item with its resolved display name."""

    line_item: SaleLineItem
    name: str
    name_resolved: bool = True

    @property
    def id(self) -> UUID:
        return self.line_item.id

    @property
    def inventory_item_id(self) -> UUID:
        return self.line_item.inventory_item_id

    @property
    def unit_price(self) -> Decimal:
        return self.line_item.unit_price

    @property
    def quantity_sold(self) -> int:
        return self.line_item.quantity_sold

    @property
    def returned_quantity(self) -> int:
        return self.line_item.returned_quantity

    @property
    def remaining_returnable(self) -> int:
        return self.line_item.remaining_returnable


@dataclass(frozen=True)
class LoadedCatalog:
    """Snapshot of a sale's returnable items at load time."""

    sale: Sale
    items: tuple[CatalogItem, ...]
    dependency_errors: tuple[DependencyError, ...] = ()
    excluded_count: int = 0

    @property
    def sale_id(self) -> UUID:
        return self.sale.id

    @property
    def gst_percentage(self) -> Decimal:
        return self.sale.gst_percentage

    @property
    def is_degraded(self) -> bool:
        return bool(self.dependency_errors)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def __contains__(self, line_item_id: object) -> bool:
        return any(item.id == line_item_id for item in self.items)

    def get(self, line_item_id: UUID) -> CatalogItem:
        for item in self.items:
            if item.id == line_item_id:
                return item
        raise NotFoundError("returnable_line_item", str(line_item_id))

    def search(self, term: str) -> tuple[CatalogItem, ...]:
        """Case-insensitive substring match on the display name."""
        needle = term.strip().lower()
        if not needle:
            return self.items
        return tuple(item for item in self.items if needle in item.name.lower())


class ReturnSelectionCatalog:
    """Loads returnable line items and exchange candidates from the store."""

    def __init__(
        self,
        store: ReturnsStore,
        *,
        unknown_item_name: str = DEFAULT_UNKNOWN_ITEM_NAME,
    ):
        self._store = store
        self._unknown_item_name = unknown_item_name

    async def load(self, sale_id: UUID) -> LoadedCatalog:
        """
        Load the returnable items of ``sale_id``.

        Items with ``remaining_returnable <= 0`` are excluded.

        Raises:
            NotFoundError: if the sale does not exist.
        """
        sale = await self._store.get_sale(sale_id)
        line_items = await self._store.get_sale_line_items(sale_id)

        items: list[CatalogItem] = []
        errors: list[DependencyError] = []
        excluded = 0
        for line_item in line_items:
            if line_item.remaining_returnable <= 0:
                excluded += 1
                continue
            name, error = await self._resolve_name(line_item)
            if error is not None:
                errors.append(error)
            items.append(CatalogItem(line_item=line_item, name=name, name_resolved=error is None))

        logger.info(
            "return_catalog_loaded",
            extra={
                "sale_id": str(sale_id),
                "returnable_items": len(items),
                "excluded_items": excluded,
                "dependency_errors": len(errors),
            },
        )
        return LoadedCatalog(
            sale=sale,
            items=tuple(items),
            dependency_errors=tuple(errors),
            excluded_count=excluded,
        )

    async def list_replacement_candidates(
        self, *, exclude_inventory_item_id: UUID | None = None,
    ) -> list[InventoryItem]:
        """In-stock inventory, ordered by name."""
        items = await self._store.list_inventory_items(in_stock_only=True)
        return [item for item in items if item.id != exclude_inventory_item_id]

    async def get_replacement_target(self, inventory_item_id: UUID) -> InventoryItem:
        """Current state of a prospective replacement item.

        Raises:
            NotFoundError: if the inventory item does not exist.
        """
        return await self._store.get_inventory_item(inventory_item_id)

    async def _resolve_name(
        self, line_item: SaleLineItem,
    ) -> tuple[str, DependencyError | None]:
        try:
            inventory_item = await self._store.get_inventory_item(line_item.inventory_item_id)
        except (NotFoundError, StoreUnavailableError) as exc:
            error = DependencyError("inventory_item_name", str(line_item.inventory_item_id), str(exc))
            logger.warning(
                "item_name_resolution_failed",
                extra={
                    "line_item_id": str(line_item.id),
                    "inventory_item_id": str(line_item.inventory_item_id),
                    "error_code": exc.code,
                },
            )
            return self._unknown_item_name, error
        return inventory_item.name, None
