"""
pharmacy_engines -- pure calculation engines for the returns flow.

No I/O, no store access.  Inputs are DTOs and Decimals; outputs are frozen
dataclasses.
"""

from pharmacy_engines.return_metrics import ReturnMetrics, calculate_return_metrics
from pharmacy_engines.value_calculator import (
    ExchangeValuation,
    ValueBreakdown,
    ValueCalculator,
    round_for_display,
)

__all__ = [
    "ExchangeValuation",
    "ReturnMetrics",
    "ValueBreakdown",
    "ValueCalculator",
    "calculate_return_metrics",
    "round_for_display",
]
