"""
Module: pharmacy_kernel.models.inventory
Responsibility: ORM model for stock records.

Invariants enforced:
    - on_hand_quantity >= 0 (CHECK constraint).  Quantity changes go through
      a single conditional delta UPDATE in the store; application code never
      writes a quantity it computed from an earlier read.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import TrackedBase
from pharmacy_kernel.domain.dtos import InventoryItem


class InventoryItemModel(TrackedBase):
    """A stock-keeping record for one medicine."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint(
            "on_hand_quantity >= 0",
            name="ck_inventory_items_on_hand_non_negative",
        ),
        Index("idx_inventory_items_name", "name"),
    )

    name: Mapped[str] = mapped_column(String(255))
    on_hand_quantity: Mapped[int] = mapped_column(Integer, default=0)
    unit_cost: Mapped[Decimal] = mapped_column()

    def to_dto(self) -> InventoryItem:
        return InventoryItem(
            id=self.id,
            name=self.name,
            on_hand_quantity=self.on_hand_quantity,
            unit_cost=self.unit_cost,
        )

    @classmethod
    def from_dto(cls, dto: InventoryItem) -> "InventoryItemModel":
        return cls(
            id=dto.id,
            name=dto.name,
            on_hand_quantity=dto.on_hand_quantity,
            unit_cost=dto.unit_cost,
        )

    def __repr__(self) -> str:
        return f"<InventoryItemModel {self.name} on_hand={self.on_hand_quantity}>"
