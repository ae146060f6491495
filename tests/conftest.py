"""
Pytest fixtures for the pharmacy returns test suite.

Provides:
- Structured logging configured for the suite, plus log capture
- A seeded in-memory store with one sale (GST 18%) and its inventory
- FlakyStore, a fault-injecting wrapper for store failure tests
- A factory of fresh seeded stores for property tests

Async code is driven with ``asyncio.run`` from synchronous tests.
"""

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from pharmacy_kernel.domain.clock import DeterministicClock
from pharmacy_kernel.domain.dtos import InventoryItem, Sale, SaleLineItem
from pharmacy_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pharmacy_kernel.store.memory_store import InMemoryReturnsStore

# Operator used by all test commits
TEST_ACTOR_ID = UUID("3f2a9c1d-0000-4000-8000-000000000001")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, handler=logging.NullHandler())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pharmacy_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "return_commit_succeeded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pharmacy_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Seed data
# =============================================================================


@dataclass(frozen=True)
class SeedData:
    """One sale at 18% GST and the inventory around it.

    Line items:
        paracetamol_line  sold 10 @ 50.00, nothing returned
        amoxicillin_line  sold 4 @ 120.00, all 4 returned (exhausted)
        cetirizine_line   sold 5 @ 30.00, 2 returned

    Inventory (on hand / unit cost):
        paracetamol 20 / 50.00, amoxicillin 15 / 120.00, cetirizine 8 / 30.00,
        ibuprofen 10 / 80.00, insulin 0 / 400.00 (out of stock)
    """

    store: InMemoryReturnsStore
    clock: DeterministicClock
    sale: Sale
    paracetamol_line: SaleLineItem
    amoxicillin_line: SaleLineItem
    cetirizine_line: SaleLineItem
    paracetamol: InventoryItem
    amoxicillin: InventoryItem
    cetirizine: InventoryItem
    ibuprofen: InventoryItem
    insulin: InventoryItem

    def run(self, coro):
        return asyncio.run(coro)


def _seed(clock: DeterministicClock) -> SeedData:
    store = InMemoryReturnsStore(clock=clock)

    paracetamol = InventoryItem(uuid4(), "Paracetamol 500mg", 20, Decimal("50.00"))
    amoxicillin = InventoryItem(uuid4(), "Amoxicillin 250mg", 15, Decimal("120.00"))
    cetirizine = InventoryItem(uuid4(), "Cetirizine 10mg", 8, Decimal("30.00"))
    ibuprofen = InventoryItem(uuid4(), "Ibuprofen 400mg", 10, Decimal("80.00"))
    insulin = InventoryItem(uuid4(), "Insulin Glargine", 0, Decimal("400.00"))
    for item in (paracetamol, amoxicillin, cetirizine, ibuprofen, insulin):
        store.add_inventory_item(item)

    sale = Sale(uuid4(), "B-1001", Decimal("18"))
    paracetamol_line = SaleLineItem(
        uuid4(), sale.id, paracetamol.id, 10, Decimal("50.00"), returned_quantity=0, line_number=1,
    )
    amoxicillin_line = SaleLineItem(
        uuid4(), sale.id, amoxicillin.id, 4, Decimal("120.00"), returned_quantity=4, line_number=2,
    )
    cetirizine_line = SaleLineItem(
        uuid4(), sale.id, cetirizine.id, 5, Decimal("30.00"), returned_quantity=2, line_number=3,
    )
    store.add_sale(sale, [paracetamol_line, amoxicillin_line, cetirizine_line])

    return SeedData(
        store=store,
        clock=clock,
        sale=sale,
        paracetamol_line=paracetamol_line,
        amoxicillin_line=amoxicillin_line,
        cetirizine_line=cetirizine_line,
        paracetamol=paracetamol,
        amoxicillin=amoxicillin,
        cetirizine=cetirizine,
        ibuprofen=ibuprofen,
        insulin=insulin,
    )


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def seeded(deterministic_clock):
    """In-memory store holding sale B-1001 and its inventory."""
    return _seed(deterministic_clock)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Fault injection
# =============================================================================


class FlakyStore:
    """
    Wraps a store and injects failures into named coroutine methods.

    ``fail_before`` raises before the inner call (nothing written);
    ``fail_after`` raises after it (the write landed, the response was lost).
    Each queued error is used once.
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls: dict[str, int] = defaultdict(int)
        self._before: dict[str, list[BaseException]] = defaultdict(list)
        self._after: dict[str, list[BaseException]] = defaultdict(list)

    def fail_before(self, method: str, *errors: BaseException) -> None:
        self._before[method].extend(errors)

    def fail_after(self, method: str, *errors: BaseException) -> None:
        self._after[method].extend(errors)

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def _call(*args, **kwargs):
            self.calls[name] += 1
            if self._before[name]:
                raise self._before[name].pop(0)
            result = await attr(*args, **kwargs)
            if self._after[name]:
                raise self._after[name].pop(0)
            return result

        return _call


@pytest.fixture
def flaky_store(seeded):
    """FlakyStore around the seeded in-memory store."""
    return FlakyStore(seeded.store)


@pytest.fixture
def seed_factory():
    """
    Build independent seeded stores, each wrapped in a FlakyStore.

    For property tests, where one test function runs many examples and each
    example needs untouched stock.
    """

    def _build() -> tuple[SeedData, FlakyStore]:
        seed = _seed(DeterministicClock())
        return seed, FlakyStore(seed.store)

    return _build
