"""
Property-based tests for sequences of commits against one sale.

Hypothesis draws a run of commits, each configuring the two returnable
line items with random quantities, dispositions and exchange targets, and
queues one injected store failure before or after a random write.  A
partial failure is retried under the same idempotency key until it
succeeds.

Properties checked after every commit:
- 0 <= returned_quantity <= quantity_sold on every line item
- returned_quantity grows by exactly the quantities in the ledger
- each item's stock moved by exactly the ledger quantities: records and
  links restock the original item, links deduct the replacement
- one ledger row per applied record/link step, whatever was retried
- the settlement equals additional charge minus refund
- replaying the last commit under its key moves nothing
"""

import asyncio
from collections import Counter, defaultdict
from dataclasses import dataclass

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from pharmacy_kernel.domain.dtos import Disposition, OperationStep
from pharmacy_kernel.exceptions import (
    InsufficientStockError,
    PartialFailureError,
    StoreUnavailableError,
    ValidationError,
)
from pharmacy_services.reconciliation_committer import ReconciliationCommitter
from pharmacy_services.return_catalog import ReturnSelectionCatalog
from pharmacy_services.return_configuration import ReturnConfigurationSet

LINES = ("paracetamol_line", "cetirizine_line")
INVENTORY = ("paracetamol", "amoxicillin", "cetirizine", "ibuprofen", "insulin")
WRITE_METHODS = (
    "insert_return_record",
    "insert_replacement_link",
    "update_line_item_returned_quantity",
    "adjust_inventory_quantity",
)

# Unconsumed faults carry into later commits, one per commit at most
MAX_ATTEMPTS = 8


@dataclass(frozen=True)
class ItemChoice:
    quantity: int
    disposition: Disposition
    target: str


@dataclass(frozen=True)
class CommitRound:
    items: dict
    fault: tuple[str, bool] | None


@composite
def item_choices(draw):
    return ItemChoice(
        quantity=draw(st.integers(min_value=1, max_value=6)),
        disposition=draw(st.sampled_from(list(Disposition))),
        target=draw(st.sampled_from(INVENTORY)),
    )


@composite
def commit_rounds(draw):
    items = {line: draw(st.one_of(st.none(), item_choices())) for line in LINES}
    fault = draw(
        st.one_of(st.none(), st.tuples(st.sampled_from(WRITE_METHODS), st.booleans()))
    )
    return CommitRound(items=items, fault=fault)


async def _configure(seed, choices: dict) -> ReturnConfigurationSet | None:
    catalog_service = ReturnSelectionCatalog(seed.store)
    configuration = ReturnConfigurationSet(await catalog_service.load(seed.sale.id))
    for line_name, choice in choices.items():
        line = getattr(seed, line_name)
        if choice is None or line.id not in configuration.catalog:
            continue
        target = None
        if choice.disposition is Disposition.EXCHANGE:
            target = await catalog_service.get_replacement_target(getattr(seed, choice.target).id)
        try:
            configuration.configure(line.id, choice.quantity, choice.disposition, "fuzz", target)
        except ValidationError:
            # Same-item or out-of-stock exchange target
            continue
    return configuration if configuration.selected else None


async def _commit_until_done(committer, configuration, key, actor_id):
    for _ in range(MAX_ATTEMPTS):
        try:
            return await committer.commit(configuration, idempotency_key=key, actor_id=actor_id)
        except PartialFailureError:
            continue
    pytest.fail(f"{key} still partial after {MAX_ATTEMPTS} attempts")


def _assert_ledger_balanced(seed) -> None:
    store = seed.store
    lines = {getattr(seed, name).id: getattr(seed, name) for name in LINES}
    ledger_returned: dict = defaultdict(int)
    movement: dict = defaultdict(int)

    for record in store.return_records:
        ledger_returned[record.line_item_id] += record.quantity
        if record.disposition is Disposition.RETURN_TO_STOCK:
            movement[lines[record.line_item_id].inventory_item_id] += record.quantity
    for link in store.replacement_links:
        ledger_returned[link.line_item_id] += link.quantity
        movement[lines[link.line_item_id].inventory_item_id] += link.quantity
        movement[link.replacement_inventory_item_id] -= link.quantity

    for line_id, seeded_line in lines.items():
        current = store.line_item_snapshot(line_id)
        assert 0 <= current.returned_quantity <= current.quantity_sold
        assert current.returned_quantity == seeded_line.returned_quantity + ledger_returned[line_id]

    for name in INVENTORY:
        seeded_item = getattr(seed, name)
        assert store.inventory_snapshot(seeded_item.id).on_hand_quantity == (
            seeded_item.on_hand_quantity + movement[seeded_item.id]
        )

    steps = Counter(op.step for op in store.applied_operations)
    assert steps[OperationStep.RECORD] == len(store.return_records)
    assert steps[OperationStep.LINK] == len(store.replacement_links)


def _stock(seed) -> dict:
    return {
        name: seed.store.inventory_snapshot(getattr(seed, name).id).on_hand_quantity
        for name in INVENTORY
    }


class TestCommitSequenceFuzzing:
    """Random commit sequences with injected write failures and retries."""

    @given(rounds=st.lists(commit_rounds(), min_size=1, max_size=4))
    @settings(
        max_examples=60,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_stock_and_counters_follow_the_ledger(self, seed_factory, actor_id, rounds):
        seed, flaky = seed_factory()
        committer = ReconciliationCommitter(flaky, seed.clock)

        async def _main():
            last = None
            for index, commit_round in enumerate(rounds, start=1):
                configuration = await _configure(seed, commit_round.items)
                if configuration is None:
                    continue
                if commit_round.fault is not None:
                    method, after = commit_round.fault
                    inject = flaky.fail_after if after else flaky.fail_before
                    inject(method, StoreUnavailableError(method, "connection reset"))

                key = f"RET-fuzz-{index}"
                try:
                    result = await _commit_until_done(committer, configuration, key, actor_id)
                except InsufficientStockError:
                    # Combined exchange demand over stock; rejected before any write
                    _assert_ledger_balanced(seed)
                    continue

                assert result.total_value == result.additional_charge_total - result.refund_total
                _assert_ledger_balanced(seed)
                last = (configuration, key)
            return last

        last = asyncio.run(_main())

        if last is not None:
            configuration, key = last
            before = _stock(seed)
            records = len(seed.store.return_records)
            replay = ReconciliationCommitter(seed.store, seed.clock)
            asyncio.run(replay.commit(configuration, idempotency_key=key, actor_id=actor_id))
            assert _stock(seed) == before
            assert len(seed.store.return_records) == records
            _assert_ledger_balanced(seed)
