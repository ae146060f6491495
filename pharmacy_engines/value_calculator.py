"""
Value Calculator - GST-inclusive values for returns and exchanges.

Pure functions with no I/O.  The sale's GST percentage is passed in; it is
never looked up or recomputed here.

No intermediate rounding: subtotal, GST and total keep full Decimal
precision so repeated calls and aggregates never accumulate rounding error.
Use ``round_for_display`` at presentation time only.

Usage:
    from decimal import Decimal
    from pharmacy_engines.value_calculator import ValueCalculator

    calc = ValueCalculator()
    calc.breakdown(Decimal("50"), 3, Decimal("18")).total
    # Decimal('177')

    calc.exchange(Decimal("50"), Decimal("80"), 2, Decimal("18")).net
    # Decimal('70.8')  -> additional charge
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from pharmacy_kernel.domain.dtos import Disposition, round_for_display

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")

__all__ = [
    "ExchangeValuation",
    "ValueBreakdown",
    "ValueCalculator",
    "round_for_display",
]


def _to_decimal(value: Decimal | int | str, field: str) -> Decimal:
    # bool is an int subclass; float would carry binary rounding error
    if isinstance(value, (bool, float)):
        raise TypeError(f"{field} must be Decimal, int or str, got {type(value).__name__}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            raise ValueError(f"{field} is not a number: {value!r}") from None
    raise TypeError(f"{field} must be Decimal, int or str, got {type(value).__name__}")


@dataclass(frozen=True)
class ValueBreakdown:
    """Subtotal, GST and total for one priced quantity."""

    unit_price: Decimal
    quantity: int
    gst_percentage: Decimal
    subtotal: Decimal
    gst_amount: Decimal
    total: Decimal

    def rounded(self) -> dict[str, Decimal]:
        """Two-place amounts for display."""
        return {
            "subtotal": round_for_display(self.subtotal),
            "gst_amount": round_for_display(self.gst_amount),
            "total": round_for_display(self.total),
        }


@dataclass(frozen=True)
class ExchangeValuation:
    """Original and replacement breakdowns for the same quantity.

    ``net`` > 0 is an additional charge to the customer, ``net`` < 0 a refund.
    """

    original: ValueBreakdown
    replacement: ValueBreakdown

    @property
    def net(self) -> Decimal:
        return self.replacement.total - self.original.total

    @property
    def is_additional_charge(self) -> bool:
        return self.net > _ZERO

    @property
    def is_refund(self) -> bool:
        return self.net < _ZERO

    @property
    def additional_charge(self) -> Decimal:
        return self.net if self.net > _ZERO else _ZERO

    @property
    def refund_amount(self) -> Decimal:
        return -self.net if self.net < _ZERO else _ZERO

    @property
    def gst_delta(self) -> Decimal:
        return self.replacement.gst_amount - self.original.gst_amount


class ValueCalculator:
    """Stateless calculator for return and exchange values."""

    def breakdown(
        self,
        unit_price: Decimal | int | str,
        quantity: int,
        gst_percentage: Decimal | int | str,
    ) -> ValueBreakdown:
        """
        subtotal = unit_price x quantity
        gst_amount = subtotal x gst_percentage / 100
        total = subtotal + gst_amount

        Raises:
            TypeError: float or bool inputs, non-integer quantity.
            ValueError: negative price or quantity, GST outside 0..100.
        """
        price = _to_decimal(unit_price, "unit_price")
        gst = _to_decimal(gst_percentage, "gst_percentage")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise TypeError(f"quantity must be an int, got {type(quantity).__name__}")
        if quantity < 0:
            raise ValueError(f"quantity cannot be negative: {quantity}")
        if price < _ZERO:
            raise ValueError(f"unit_price cannot be negative: {price}")
        if not _ZERO <= gst <= _HUNDRED:
            raise ValueError(f"gst_percentage must be between 0 and 100, got {gst}")

        subtotal = price * quantity
        gst_amount = subtotal * gst / _HUNDRED
        return ValueBreakdown(
            unit_price=price,
            quantity=quantity,
            gst_percentage=gst,
            subtotal=subtotal,
            gst_amount=gst_amount,
            total=subtotal + gst_amount,
        )

    def exchange(
        self,
        original_unit_price: Decimal | int | str,
        replacement_unit_price: Decimal | int | str,
        quantity: int,
        gst_percentage: Decimal | int | str,
    ) -> ExchangeValuation:
        """Value an exchange of ``quantity`` units at the sale's GST rate."""
        return ExchangeValuation(
            original=self.breakdown(original_unit_price, quantity, gst_percentage),
            replacement=self.breakdown(replacement_unit_price, quantity, gst_percentage),
        )

    def item_value(
        self,
        disposition: Disposition,
        original: ValueBreakdown,
        exchange: ExchangeValuation | None = None,
    ) -> Decimal:
        """
        Settlement an item contributes to commit and preview totals.

        One sign convention for every disposition: positive is money the
        customer pays, negative money refunded to them.  Returns and
        disposals refund the GST-inclusive value of the returned quantity;
        exchanges settle the net.
        """
        if disposition is Disposition.EXCHANGE:
            if exchange is None:
                raise ValueError("exchange valuation required for an exchange item")
            return exchange.net
        return -original.total

    def aggregate(self, values: list[Decimal]) -> Decimal:
        """Sum without rounding."""
        return sum(values, _ZERO)
