"""
Return metrics - totals over a sale's return history.

Counts units and values per outcome: restocked, disposed, exchanged.
Pure, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from pharmacy_kernel.domain.dtos import Disposition


class ReturnMovement(Protocol):
    """Anything with the three fields metrics need."""

    disposition: Disposition
    quantity: int
    value: Decimal


@dataclass(frozen=True)
class ReturnMetrics:
    restocked_entries: int = 0
    restocked_units: int = 0
    restocked_value: Decimal = Decimal("0")
    disposed_entries: int = 0
    disposed_units: int = 0
    disposed_value: Decimal = Decimal("0")
    exchanged_entries: int = 0
    exchanged_units: int = 0
    exchange_net_value: Decimal = Decimal("0")

    @property
    def total_entries(self) -> int:
        return self.restocked_entries + self.disposed_entries + self.exchanged_entries

    @property
    def total_units(self) -> int:
        return self.restocked_units + self.disposed_units + self.exchanged_units

    @property
    def refunded_value(self) -> Decimal:
        """Value of returned (restocked or disposed) units."""
        return self.restocked_value + self.disposed_value


def calculate_return_metrics(movements: Iterable[ReturnMovement]) -> ReturnMetrics:
    counts = {d: [0, 0, Decimal("0")] for d in Disposition}
    for movement in movements:
        bucket = counts[Disposition(movement.disposition)]
        bucket[0] += 1
        bucket[1] += movement.quantity
        bucket[2] += movement.value

    restocked = counts[Disposition.RETURN_TO_STOCK]
    disposed = counts[Disposition.DISPOSE]
    exchanged = counts[Disposition.EXCHANGE]
    return ReturnMetrics(
        restocked_entries=restocked[0],
        restocked_units=restocked[1],
        restocked_value=restocked[2],
        disposed_entries=disposed[0],
        disposed_units=disposed[1],
        disposed_value=disposed[2],
        exchanged_entries=exchanged[0],
        exchanged_units=exchanged[1],
        exchange_net_value=exchanged[2],
    )
