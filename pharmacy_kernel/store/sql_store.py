"""
Module: pharmacy_kernel.store.sql_store
Responsibility: ReturnsStore backed by SQLAlchemy asyncio.
Architecture position: Kernel > Store.  Depends on db/ and models/.

Invariants enforced:
    - Each store call runs in its own short transaction.
    - Stock changes are a single conditional UPDATE
      (``on_hand = on_hand + :delta WHERE on_hand + :delta >= 0``); the
      application never writes a quantity computed from an earlier read.
    - Returned-quantity changes are compare-and-set on the expected value.
    - A keyed write and its applied_operations marker commit together.  A
      replay finds the marker and writes nothing; a concurrent replay loses
      on the UNIQUE operation_key and is answered from the winner's row.

Failure modes:
    - NotFoundError for missing sale / line item / inventory item.
    - InsufficientStockError when a delta would go below zero.
    - ConcurrentModificationError when the compare-and-set loses.
    - StoreUnavailableError for OperationalError / InterfaceError
      (lost connection, lock timeout, SQLite "database is locked").
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pharmacy_kernel.db.engine import get_session_factory
from pharmacy_kernel.db.immutability import register_immutability_listeners
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
    StoreUnavailableError,
    ValidationError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models import (
    AppliedOperationModel,
    InventoryItemModel,
    ReplacementLinkModel,
    ReturnRecordModel,
    SaleLineItemModel,
    SaleModel,
    ScopedSequenceModel,
)
from pharmacy_kernel.utils.idempotency import parse_operation_key

logger = get_logger("store.sql")

_INVENTORY_COLUMNS = (
    InventoryItemModel.id,
    InventoryItemModel.name,
    InventoryItemModel.on_hand_quantity,
    InventoryItemModel.unit_cost,
)

_LINE_ITEM_COLUMNS = (
    SaleLineItemModel.id,
    SaleLineItemModel.sale_id,
    SaleLineItemModel.inventory_item_id,
    SaleLineItemModel.quantity_sold,
    SaleLineItemModel.unit_price,
    SaleLineItemModel.returned_quantity,
    SaleLineItemModel.line_number,
)


class SqlReturnsStore:
    """ReturnsStore over an ``async_sessionmaker``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        register_immutability_listeners()

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError) as exc:
            logger.warning(
                "store_call_failed",
                extra={"operation": operation, "error": str(exc.orig or exc)},
            )
            raise StoreUnavailableError(operation, str(exc.orig or exc)) from exc

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    async def add_sale(self, sale: Sale, line_items: Iterable[SaleLineItem] = ()) -> None:
        async with self._transaction("add_sale") as session:
            session.add(SaleModel.from_dto(sale))
            await session.flush()
            session.add_all(SaleLineItemModel.from_dto(item) for item in line_items)

    async def add_inventory_item(self, item: InventoryItem) -> None:
        async with self._transaction("add_inventory_item") as session:
            session.add(InventoryItemModel.from_dto(item))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_sale(self, sale_id: UUID) -> Sale:
        async with self._transaction("get_sale") as session:
            return (await self._load_sale(session, sale_id)).to_dto()

    async def get_sale_gst_percentage(self, sale_id: UUID) -> Decimal:
        async with self._transaction("get_sale_gst_percentage") as session:
            return (await self._load_sale(session, sale_id)).gst_percentage

    async def get_sale_line_items(self, sale_id: UUID) -> list[SaleLineItem]:
        async with self._transaction("get_sale_line_items") as session:
            result = await session.scalars(
                select(SaleLineItemModel)
                .where(SaleLineItemModel.sale_id == sale_id)
                .order_by(SaleLineItemModel.line_number, SaleLineItemModel.id)
            )
            return [model.to_dto() for model in result]

    async def get_line_item(self, line_item_id: UUID) -> SaleLineItem:
        async with self._transaction("get_line_item") as session:
            return (await self._load_line_item(session, line_item_id)).to_dto()

    async def get_inventory_item(self, inventory_item_id: UUID) -> InventoryItem:
        async with self._transaction("get_inventory_item") as session:
            return (await self._load_inventory(session, inventory_item_id)).to_dto()

    async def list_inventory_items(self, *, in_stock_only: bool = False) -> list[InventoryItem]:
        stmt = select(InventoryItemModel).order_by(InventoryItemModel.name, InventoryItemModel.id)
        if in_stock_only:
            stmt = stmt.where(InventoryItemModel.on_hand_quantity > 0)
        async with self._transaction("list_inventory_items") as session:
            return [model.to_dto() for model in await session.scalars(stmt)]

    async def list_applied_operations(self, prefix: str) -> list[AppliedOperation]:
        async with self._transaction("list_applied_operations") as session:
            result = await session.scalars(
                select(AppliedOperationModel)
                .where(AppliedOperationModel.operation_key.startswith(prefix, autoescape=True))
                .order_by(AppliedOperationModel.applied_at, AppliedOperationModel.operation_key)
            )
            return [model.to_dto() for model in result]

    async def list_return_records(self, sale_id: UUID) -> list[ReturnRecord]:
        async with self._transaction("list_return_records") as session:
            result = await session.scalars(
                select(ReturnRecordModel)
                .where(ReturnRecordModel.sale_id == sale_id)
                .order_by(ReturnRecordModel.recorded_at, ReturnRecordModel.id)
            )
            return [model.to_dto() for model in result]

    async def list_replacement_links(self, sale_id: UUID) -> list[ReplacementLink]:
        async with self._transaction("list_replacement_links") as session:
            result = await session.scalars(
                select(ReplacementLinkModel)
                .where(ReplacementLinkModel.sale_id == sale_id)
                .order_by(ReplacementLinkModel.recorded_at, ReplacementLinkModel.id)
            )
            return [model.to_dto() for model in result]

    async def find_max_sequence_for_scope(self, scope_key: str) -> int | None:
        async with self._transaction("find_max_sequence_for_scope") as session:
            return await session.scalar(
                select(func.max(ScopedSequenceModel.value))
                .where(ScopedSequenceModel.scope_key == scope_key)
            )

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
        try:
            async with self._transaction("adjust_inventory_quantity") as session:
                if await self._is_replay(session, operation_key):
                    return (await self._load_inventory(session, inventory_item_id)).to_dto()

                on_hand = InventoryItemModel.on_hand_quantity
                stmt = (
                    update(InventoryItemModel)
                    .where(InventoryItemModel.id == inventory_item_id, on_hand + delta >= 0)
                    .values(on_hand_quantity=on_hand + delta)
                    .returning(*_INVENTORY_COLUMNS)
                    .execution_options(synchronize_session=False)
                )
                row = (await session.execute(stmt)).one_or_none()
                if row is None:
                    current = await self._load_inventory(session, inventory_item_id)
                    raise InsufficientStockError(
                        str(inventory_item_id), -delta, current.on_hand_quantity,
                    )
                await self._mark_applied(session, operation_key)
                return InventoryItem(
                    id=row.id,
                    name=row.name,
                    on_hand_quantity=row.on_hand_quantity,
                    unit_cost=row.unit_cost,
                )
        except IntegrityError:
            if operation_key is None:
                raise
            logger.info("operation_replay_race", extra={"operation_key": operation_key})
            return await self.get_inventory_item(inventory_item_id)

    async def insert_return_record(self, record: ReturnRecord) -> UUID:
        try:
            async with self._transaction("insert_return_record") as session:
                existing = await self._find_applied(session, record.operation_key)
                if existing is not None:
                    return UUID(existing.result_ref)
                session.add(ReturnRecordModel.from_dto(record))
                await self._mark_applied(session, record.operation_key, result_ref=str(record.id))
                return record.id
        except IntegrityError:
            ref = await self._applied_result_ref(record.operation_key)
            if ref is None:
                raise
            return UUID(ref)

    async def insert_replacement_link(self, link: ReplacementLink) -> UUID:
        try:
            async with self._transaction("insert_replacement_link") as session:
                existing = await self._find_applied(session, link.operation_key)
                if existing is not None:
                    return UUID(existing.result_ref)
                session.add(ReplacementLinkModel.from_dto(link))
                await self._mark_applied(session, link.operation_key, result_ref=str(link.id))
                return link.id
        except IntegrityError:
            ref = await self._applied_result_ref(link.operation_key)
            if ref is None:
                raise
            return UUID(ref)

    async def update_line_item_returned_quantity(
        self,
        line_item_id: UUID,
        new_value: int,
        *,
        expected_value: int,
        operation_key: str | None = None,
    ) -> SaleLineItem:
        try:
            async with self._transaction("update_line_item_returned_quantity") as session:
                if await self._is_replay(session, operation_key):
                    return (await self._load_line_item(session, line_item_id)).to_dto()

                stmt = (
                    update(SaleLineItemModel)
                    .where(
                        SaleLineItemModel.id == line_item_id,
                        SaleLineItemModel.returned_quantity == expected_value,
                        SaleLineItemModel.quantity_sold >= new_value,
                    )
                    .values(returned_quantity=new_value)
                    .returning(*_LINE_ITEM_COLUMNS)
                    .execution_options(synchronize_session=False)
                )
                row = None if new_value < 0 else (await session.execute(stmt)).one_or_none()
                if row is None:
                    current = await self._load_line_item(session, line_item_id)
                    if current.returned_quantity != expected_value:
                        raise ConcurrentModificationError(
                            "sale_line_item",
                            str(line_item_id),
                            expected_value,
                            current.returned_quantity,
                        )
                    raise ValidationError.single(
                        line_item_id,
                        "quantity",
                        f"returned quantity {new_value} outside 0..{current.quantity_sold}",
                    )
                await self._mark_applied(session, operation_key)
                return SaleLineItem(
                    id=row.id,
                    sale_id=row.sale_id,
                    inventory_item_id=row.inventory_item_id,
                    quantity_sold=row.quantity_sold,
                    unit_price=row.unit_price,
                    returned_quantity=row.returned_quantity,
                    line_number=row.line_number,
                )
        except IntegrityError:
            if operation_key is None:
                raise
            logger.info("operation_replay_race", extra={"operation_key": operation_key})
            return await self.get_line_item(line_item_id)

    async def reserve_sequence_value(
        self, scope_key: str, value: int, identifier: str,
    ) -> ReservationStatus:
        try:
            async with self._transaction("reserve_sequence_value") as session:
                session.add(
                    ScopedSequenceModel(
                        scope_key=scope_key,
                        value=value,
                        identifier=identifier,
                        reserved_at=self._clock.now_utc(),
                    )
                )
                await session.flush()
        except IntegrityError:
            logger.debug(
                "sequence_reservation_conflict",
                extra={"scope_key": scope_key, "value": value},
            )
            return ReservationStatus.CONFLICT
        return ReservationStatus.RESERVED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_sale(self, session: AsyncSession, sale_id: UUID) -> SaleModel:
        model = await session.get(SaleModel, sale_id)
        if model is None:
            raise NotFoundError("sale", str(sale_id))
        return model

    async def _load_line_item(self, session: AsyncSession, line_item_id: UUID) -> SaleLineItemModel:
        model = await session.get(SaleLineItemModel, line_item_id)
        if model is None:
            raise NotFoundError("sale_line_item", str(line_item_id))
        return model

    async def _load_inventory(
        self, session: AsyncSession, inventory_item_id: UUID,
    ) -> InventoryItemModel:
        model = await session.get(InventoryItemModel, inventory_item_id)
        if model is None:
            raise NotFoundError("inventory_item", str(inventory_item_id))
        return model

    async def _find_applied(
        self, session: AsyncSession, operation_key: str,
    ) -> AppliedOperationModel | None:
        return await session.scalar(
            select(AppliedOperationModel)
            .where(AppliedOperationModel.operation_key == operation_key)
        )

    async def _is_replay(self, session: AsyncSession, operation_key: str | None) -> bool:
        if operation_key is None:
            return False
        # Malformed keys are rejected before anything is written
        parse_operation_key(operation_key)
        if await self._find_applied(session, operation_key) is None:
            return False
        logger.info("operation_replayed", extra={"operation_key": operation_key})
        return True

    async def _mark_applied(
        self,
        session: AsyncSession,
        operation_key: str | None,
        result_ref: str | None = None,
    ) -> None:
        if operation_key is None:
            return
        parsed = parse_operation_key(operation_key)
        session.add(
            AppliedOperationModel(
                operation_key=operation_key,
                step=parsed.step.value,
                line_item_id=parsed.line_item_id,
                applied_at=self._clock.now_utc(),
                result_ref=result_ref,
            )
        )
        await session.flush()

    async def _applied_result_ref(self, operation_key: str) -> str | None:
        async with self._transaction("find_applied_operation") as session:
            existing = await self._find_applied(session, operation_key)
            return existing.result_ref if existing is not None else None
