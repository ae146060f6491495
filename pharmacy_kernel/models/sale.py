"""
Module: pharmacy_kernel.models.sale
Responsibility: ORM models for completed sales and their line items.
Architecture position: Kernel > Models.  Inherits TrackedBase.

Invariants enforced:
    - 0 <= gst_percentage <= 100 (CHECK constraint).
    - 0 <= returned_quantity <= quantity_sold (CHECK constraint).  The store
      only ever advances returned_quantity with a compare-and-set UPDATE, so
      the CHECK is the last line of defence, not the first.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import TrackedBase
from pharmacy_kernel.domain.dtos import Sale, SaleLineItem


class SaleModel(TrackedBase):
    """A completed sale (bill)."""

    __tablename__ = "sales"

    __table_args__ = (
        CheckConstraint(
            "gst_percentage >= 0 AND gst_percentage <= 100",
            name="ck_sales_gst_percentage_range",
        ),
    )

    sale_number: Mapped[str] = mapped_column(String(50), unique=True)
    gst_percentage: Mapped[Decimal] = mapped_column()

    def to_dto(self) -> Sale:
        return Sale(
            id=self.id,
            sale_number=self.sale_number,
            gst_percentage=self.gst_percentage,
        )

    @classmethod
    def from_dto(cls, dto: Sale) -> "SaleModel":
        return cls(
            id=dto.id,
            sale_number=dto.sale_number,
            gst_percentage=dto.gst_percentage,
        )

    def __repr__(self) -> str:
        return f"<SaleModel {self.sale_number} gst={self.gst_percentage}%>"


class SaleLineItemModel(TrackedBase):
    """One medicine sold within a sale."""

    __tablename__ = "sale_line_items"

    __table_args__ = (
        CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity_sold",
            name="ck_sale_line_items_returned_quantity_range",
        ),
        Index("idx_sale_line_items_sale", "sale_id", "line_number"),
    )

    sale_id: Mapped[UUID] = mapped_column(ForeignKey("sales.id"))
    # Inventory items are referenced without FK; stock may be archived
    # independently of historical sales.
    inventory_item_id: Mapped[UUID] = mapped_column()
    line_number: Mapped[int] = mapped_column(Integer, default=0)
    quantity_sold: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column()
    returned_quantity: Mapped[int] = mapped_column(Integer, default=0)

    def to_dto(self) -> SaleLineItem:
        return SaleLineItem(
            id=self.id,
            sale_id=self.sale_id,
            inventory_item_id=self.inventory_item_id,
            quantity_sold=self.quantity_sold,
            unit_price=self.unit_price,
            returned_quantity=self.returned_quantity,
            line_number=self.line_number,
        )

    @classmethod
    def from_dto(cls, dto: SaleLineItem) -> "SaleLineItemModel":
        return cls(
            id=dto.id,
            sale_id=dto.sale_id,
            inventory_item_id=dto.inventory_item_id,
            line_number=dto.line_number,
            quantity_sold=dto.quantity_sold,
            unit_price=dto.unit_price,
            returned_quantity=dto.returned_quantity,
        )

    def __repr__(self) -> str:
        return (
            f"<SaleLineItemModel {self.id} sold={self.quantity_sold} "
            f"returned={self.returned_quantity}>"
        )
