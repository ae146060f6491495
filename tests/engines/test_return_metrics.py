"""Tests for return metrics over committed movements."""

from dataclasses import dataclass
from decimal import Decimal

from pharmacy_engines.return_metrics import ReturnMetrics, calculate_return_metrics
from pharmacy_kernel.domain.dtos import Disposition


@dataclass(frozen=True)
class _Movement:
    disposition: Disposition
    quantity: int
    value: Decimal


class TestCalculateReturnMetrics:
    def test_empty_history(self):
        metrics = calculate_return_metrics([])

        assert metrics == ReturnMetrics()
        assert metrics.total_entries == 0
        assert metrics.refunded_value == Decimal("0")

    def test_counts_per_disposition(self):
        movements = [
            _Movement(Disposition.RETURN_TO_STOCK, 3, Decimal("177")),
            _Movement(Disposition.RETURN_TO_STOCK, 1, Decimal("59")),
            _Movement(Disposition.DISPOSE, 2, Decimal("70.8")),
            _Movement(Disposition.EXCHANGE, 2, Decimal("70.8")),
            _Movement(Disposition.EXCHANGE, 1, Decimal("-35.4")),
        ]

        metrics = calculate_return_metrics(movements)

        assert metrics.restocked_entries == 2
        assert metrics.restocked_units == 4
        assert metrics.restocked_value == Decimal("236")
        assert metrics.disposed_entries == 1
        assert metrics.disposed_units == 2
        assert metrics.disposed_value == Decimal("70.8")
        assert metrics.exchanged_entries == 2
        assert metrics.exchanged_units == 3
        assert metrics.exchange_net_value == Decimal("35.4")
        assert metrics.total_entries == 5
        assert metrics.total_units == 9
        assert metrics.refunded_value == Decimal("306.8")

    def test_accepts_plain_string_dispositions(self):
        metrics = calculate_return_metrics([_Movement("dispose", 1, Decimal("10"))])

        assert metrics.disposed_entries == 1
