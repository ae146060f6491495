"""
ReturnHistoryService -- what has been returned against a sale.

Merges the sale's ledger records and replacement links into one list,
newest first, with medicine names resolved.  Name lookups degrade to the
placeholder name the way the selection catalog does.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pharmacy_engines.return_metrics import ReturnMetrics, calculate_return_metrics
from pharmacy_kernel.domain.dtos import Disposition
from pharmacy_kernel.exceptions import NotFoundError, StoreUnavailableError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_services.return_catalog import DEFAULT_UNKNOWN_ITEM_NAME

logger = get_logger("services.return_history")


@dataclass(frozen=True)
class ReturnHistoryEntry:
    """
    One committed movement.

    ``value`` is the GST-inclusive value for returns and disposals and the
    signed net price delta for exchanges.
    """

    ledger_id: UUID
    line_item_id: UUID
    name: str
    disposition: Disposition
    quantity: int
    value: Decimal
    reason: str
    recorded_at: datetime
    actor_id: UUID
    document_number: str
    replacement_name: str | None = None


class ReturnHistoryService:
    def __init__(self, store: ReturnsStore, *, unknown_item_name: str = DEFAULT_UNKNOWN_ITEM_NAME):
        self._store = store
        self._unknown_item_name = unknown_item_name

    async def history(self, sale_id: UUID) -> list[ReturnHistoryEntry]:
        """Raises NotFoundError if the sale does not exist."""
        await self._store.get_sale(sale_id)
        line_items = {li.id: li for li in await self._store.get_sale_line_items(sale_id)}
        names: dict[UUID, str] = {}

        entries: list[ReturnHistoryEntry] = []
        for record in await self._store.list_return_records(sale_id):
            line_item = line_items.get(record.line_item_id)
            entries.append(
                ReturnHistoryEntry(
                    ledger_id=record.id,
                    line_item_id=record.line_item_id,
                    name=await self._name(line_item.inventory_item_id if line_item else None, names),
                    disposition=record.disposition,
                    quantity=record.quantity,
                    value=record.value,
                    reason=record.reason,
                    recorded_at=record.recorded_at,
                    actor_id=record.actor_id,
                    document_number=record.document_number,
                )
            )
        for link in await self._store.list_replacement_links(sale_id):
            line_item = line_items.get(link.line_item_id)
            entries.append(
                ReturnHistoryEntry(
                    ledger_id=link.id,
                    line_item_id=link.line_item_id,
                    name=await self._name(line_item.inventory_item_id if line_item else None, names),
                    disposition=Disposition.EXCHANGE,
                    quantity=link.quantity,
                    value=link.net_price_delta,
                    reason=link.reason,
                    recorded_at=link.recorded_at,
                    actor_id=link.actor_id,
                    document_number=link.document_number,
                    replacement_name=await self._name(link.replacement_inventory_item_id, names),
                )
            )

        entries.sort(key=lambda e: (e.recorded_at, str(e.ledger_id)), reverse=True)
        return entries

    async def metrics(self, sale_id: UUID) -> ReturnMetrics:
        return calculate_return_metrics(await self.history(sale_id))

    async def _name(self, inventory_item_id: UUID | None, cache: dict[UUID, str]) -> str:
        if inventory_item_id is None:
            return self._unknown_item_name
        if inventory_item_id not in cache:
            try:
                cache[inventory_item_id] = (
                    await self._store.get_inventory_item(inventory_item_id)
                ).name
            except (NotFoundError, StoreUnavailableError) as exc:
                logger.warning(
                    "history_name_resolution_failed",
                    extra={"inventory_item_id": str(inventory_item_id), "error_code": exc.code},
                )
                cache[inventory_item_id] = self._unknown_item_name
        return cache[inventory_item_id]
