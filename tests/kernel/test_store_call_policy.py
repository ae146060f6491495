"""
Store call policy and ResilientStore tests.

Tests cover:
- Backoff schedule
- Retry of reads and keyed writes on StoreUnavailableError / timeout
- Keyless writes: timeout -> AmbiguousWriteError, never resubmitted
- Exhausted budget -> StoreUnavailableError
"""

import asyncio

import pytest

from pharmacy_kernel.exceptions import AmbiguousWriteError, StoreUnavailableError
from pharmacy_kernel.store.call_policy import StoreCallPolicy
from pharmacy_kernel.store.resilient import ResilientStore
from pharmacy_kernel.utils.idempotency import generate_operation_key

FAST = StoreCallPolicy(timeout_seconds=0.05, max_attempts=3, backoff_seconds=0)


class _Scripted:
    """Zero-arg coroutine factory that fails according to a script."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if outcome == "hang":
            await asyncio.sleep(1)
        if isinstance(outcome, BaseException):
            raise outcome
        return "ok"


class TestPolicyValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"timeout_seconds": 0},
            {"max_attempts": 0},
            {"backoff_seconds": -1},
            {"backoff_multiplier": 0.5},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            StoreCallPolicy(**kwargs)

    def test_exponential_backoff(self):
        policy = StoreCallPolicy(backoff_seconds=0.1, backoff_multiplier=2.0)

        assert policy.delay_before(2) == pytest.approx(0.1)
        assert policy.delay_before(3) == pytest.approx(0.2)
        assert policy.delay_before(4) == pytest.approx(0.4)


class TestCall:
    def test_success_first_try(self):
        fn = _Scripted()

        assert asyncio.run(FAST.call("get_sale", fn, retry_safe=True)) == "ok"
        assert fn.calls == 1

    def test_unavailable_retried(self, captured_logs):
        fn = _Scripted(StoreUnavailableError("get_sale", "reset"))

        assert asyncio.run(FAST.call("get_sale", fn, retry_safe=True)) == "ok"
        assert fn.calls == 2
        assert any(r["message"] == "store_call_retry" for r in captured_logs())

    def test_timeout_retried_when_safe(self):
        fn = _Scripted("hang")

        assert asyncio.run(FAST.call("get_sale", fn, retry_safe=True)) == "ok"
        assert fn.calls == 2

    def test_keyless_write_timeout_is_ambiguous(self, captured_logs):
        fn = _Scripted("hang")

        with pytest.raises(AmbiguousWriteError) as exc_info:
            asyncio.run(FAST.call("adjust_inventory_quantity", fn, retry_safe=False))

        assert fn.calls == 1
        assert exc_info.value.operation == "adjust_inventory_quantity"
        assert any(r["message"] == "store_write_ambiguous" for r in captured_logs())

    def test_keyless_write_unavailable_not_retried(self):
        fn = _Scripted(StoreUnavailableError("adjust_inventory_quantity", "reset"))

        with pytest.raises(StoreUnavailableError):
            asyncio.run(FAST.call("adjust_inventory_quantity", fn, retry_safe=False))

        assert fn.calls == 1

    def test_exhausted(self):
        error = StoreUnavailableError("get_sale", "reset")
        fn = _Scripted(error, error, error)

        with pytest.raises(StoreUnavailableError, match="gave up after 3") as exc_info:
            asyncio.run(FAST.call("get_sale", fn, retry_safe=True))

        assert fn.calls == 3
        assert exc_info.value.__cause__ is error

    def test_other_errors_propagate_unretried(self):
        fn = _Scripted(KeyError("boom"))

        with pytest.raises(KeyError):
            asyncio.run(FAST.call("get_sale", fn, retry_safe=True))

        assert fn.calls == 1


class TestResilientStore:
    def test_reads_pass_through(self, seeded):
        store = ResilientStore(seeded.store, FAST)

        sale = asyncio.run(store.get_sale(seeded.sale.id))

        assert sale == seeded.sale
        assert store.inner is seeded.store
        assert store.policy is FAST

    def test_keyed_adjust_retried_and_applied_once(self, seeded, flaky_store):
        flaky_store.fail_after(
            "adjust_inventory_quantity", StoreUnavailableError("adjust_inventory_quantity", "reset"),
        )
        store = ResilientStore(flaky_store, FAST)
        key = generate_operation_key("RET-x-1", seeded.paracetamol_line.id, "restock")

        item = asyncio.run(store.adjust_inventory_quantity(seeded.paracetamol.id, 2, operation_key=key))

        assert item.on_hand_quantity == 22
        assert flaky_store.calls["adjust_inventory_quantity"] == 2

    def test_keyless_adjust_not_resubmitted(self, seeded, flaky_store):
        flaky_store.fail_after(
            "adjust_inventory_quantity", StoreUnavailableError("adjust_inventory_quantity", "reset"),
        )
        store = ResilientStore(flaky_store, FAST)

        with pytest.raises(StoreUnavailableError):
            asyncio.run(store.adjust_inventory_quantity(seeded.paracetamol.id, 2))

        assert flaky_store.calls["adjust_inventory_quantity"] == 1
        assert seeded.store.inventory_snapshot(seeded.paracetamol.id).on_hand_quantity == 22
