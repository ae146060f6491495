"""
Module: pharmacy_kernel.models.sequence
Responsibility: Reserved values of user-scoped identifier sequences.

Invariants enforced:
    - UNIQUE (scope_key, value): two sessions that compute the same next
      value cannot both reserve it; the loser gets a conflict and retries.
    - UNIQUE identifier: formatted identifiers are globally unique.
"""

from datetime import datetime

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import Base


class ScopedSequenceModel(Base):
    """A reserved (scope_key, value) pair and the identifier minted from it."""

    __tablename__ = "scoped_sequence_values"

    __table_args__ = (
        UniqueConstraint("scope_key", "value", name="uq_scoped_sequence_scope_value"),
    )

    scope_key: Mapped[str] = mapped_column(String(255))
    value: Mapped[int] = mapped_column(Integer)
    identifier: Mapped[str] = mapped_column(String(100), unique=True)
    reserved_at: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        return f"<ScopedSequenceModel {self.identifier}>"
