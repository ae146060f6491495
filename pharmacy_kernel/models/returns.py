"""
Module: pharmacy_kernel.models.returns
Responsibility: Append-only ledger of committed returns and replacements,
    plus the applied-operation table that makes every keyed write step
    idempotent.
Architecture position: Kernel > Models.  Inherits Base (no updated_at:
    these rows are never updated).

Invariants enforced:
    - operation_key is UNIQUE on every table here; a replayed write step
      collides instead of applying twice.
    - Rows are immutable after INSERT (ORM listeners in db/immutability.py).

Audit relevance:
    Every inventory quantity change made by the engine is accounted for by
    exactly one ReturnRecordModel or ReplacementLinkModel row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import Base
from pharmacy_kernel.domain.dtos import (
    AppliedOperation,
    Disposition,
    OperationStep,
    ReplacementLink,
    ReturnRecord,
)


class ReturnRecordModel(Base):
    """Ledger entry for a returned or disposed quantity."""

    __tablename__ = "return_records"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_return_records_quantity_positive"),
        Index("idx_return_records_sale", "sale_id", "recorded_at"),
        Index("idx_return_records_line_item", "line_item_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(ForeignKey("sales.id"))
    line_item_id: Mapped[UUID] = mapped_column(ForeignKey("sale_line_items.id"))
    quantity: Mapped[int] = mapped_column(Integer)
    disposition: Mapped[str] = mapped_column(String(30))
    reason: Mapped[str] = mapped_column(Text)
    recorded_at: Mapped[datetime] = mapped_column()
    actor_id: Mapped[UUID] = mapped_column()
    # GST-inclusive, unrounded
    value: Mapped[Decimal] = mapped_column()
    document_number: Mapped[str] = mapped_column(String(100))
    operation_key: Mapped[str] = mapped_column(String(255), unique=True)

    def to_dto(self) -> ReturnRecord:
        return ReturnRecord(
            id=self.id,
            sale_id=self.sale_id,
            line_item_id=self.line_item_id,
            quantity=self.quantity,
            disposition=Disposition(self.disposition),
            reason=self.reason,
            recorded_at=self.recorded_at,
            actor_id=self.actor_id,
            value=self.value,
            document_number=self.document_number,
            operation_key=self.operation_key,
        )

    @classmethod
    def from_dto(cls, dto: ReturnRecord) -> "ReturnRecordModel":
        return cls(
            id=dto.id,
            sale_id=dto.sale_id,
            line_item_id=dto.line_item_id,
            quantity=dto.quantity,
            disposition=dto.disposition.value,
            reason=dto.reason,
            recorded_at=dto.recorded_at,
            actor_id=dto.actor_id,
            value=dto.value,
            document_number=dto.document_number,
            operation_key=dto.operation_key,
        )

    def __repr__(self) -> str:
        return (
            f"<ReturnRecordModel {self.document_number} {self.disposition} "
            f"x{self.quantity}>"
        )


class ReplacementLinkModel(Base):
    """Links a returned line item to the inventory item given in exchange."""

    __tablename__ = "replacement_links"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_replacement_links_quantity_positive"),
        Index("idx_replacement_links_sale", "sale_id", "recorded_at"),
        Index("idx_replacement_links_line_item", "line_item_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(ForeignKey("sales.id"))
    line_item_id: Mapped[UUID] = mapped_column(ForeignKey("sale_line_items.id"))
    replacement_inventory_item_id: Mapped[UUID] = mapped_column()
    quantity: Mapped[int] = mapped_column(Integer)
    # replacement total - original total, GST-inclusive, unrounded
    net_price_delta: Mapped[Decimal] = mapped_column()
    reason: Mapped[str] = mapped_column(Text)
    recorded_at: Mapped[datetime] = mapped_column()
    actor_id: Mapped[UUID] = mapped_column()
    document_number: Mapped[str] = mapped_column(String(100))
    operation_key: Mapped[str] = mapped_column(String(255), unique=True)

    def to_dto(self) -> ReplacementLink:
        return ReplacementLink(
            id=self.id,
            sale_id=self.sale_id,
            line_item_id=self.line_item_id,
            replacement_inventory_item_id=self.replacement_inventory_item_id,
            quantity=self.quantity,
            net_price_delta=self.net_price_delta,
            reason=self.reason,
            recorded_at=self.recorded_at,
            actor_id=self.actor_id,
            document_number=self.document_number,
            operation_key=self.operation_key,
        )

    @classmethod
    def from_dto(cls, dto: ReplacementLink) -> "ReplacementLinkModel":
        return cls(
            id=dto.id,
            sale_id=dto.sale_id,
            line_item_id=dto.line_item_id,
            replacement_inventory_item_id=dto.replacement_inventory_item_id,
            quantity=dto.quantity,
            net_price_delta=dto.net_price_delta,
            reason=dto.reason,
            recorded_at=dto.recorded_at,
            actor_id=dto.actor_id,
            document_number=dto.document_number,
            operation_key=dto.operation_key,
        )

    def __repr__(self) -> str:
        return (
            f"<ReplacementLinkModel {self.document_number} x{self.quantity} "
            f"net={self.net_price_delta}>"
        )


class AppliedOperationModel(Base):
    """One row per applied write step, keyed by operation key."""

    __tablename__ = "applied_operations"

    operation_key: Mapped[str] = mapped_column(String(255), unique=True)
    step: Mapped[str] = mapped_column(String(30))
    line_item_id: Mapped[UUID] = mapped_column()
    applied_at: Mapped[datetime] = mapped_column()
    # Id of the row the step created, when it created one
    result_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def to_dto(self) -> AppliedOperation:
        return AppliedOperation(
            operation_key=self.operation_key,
            step=OperationStep(self.step),
            line_item_id=self.line_item_id,
            applied_at=self.applied_at,
            result_ref=self.result_ref,
        )

    def __repr__(self) -> str:
        return f"<AppliedOperationModel {self.operation_key}>"
