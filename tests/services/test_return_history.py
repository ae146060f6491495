"""Tests for ReturnHistoryService: merged history, names, metrics."""

from decimal import Decimal
from uuid import uuid4

import pytest

from pharmacy_kernel.domain.dtos import Disposition
from pharmacy_kernel.exceptions import NotFoundError, StoreUnavailableError
from pharmacy_services.reconciliation_committer import ReconciliationCommitter
from pharmacy_services.return_catalog import ReturnSelectionCatalog
from pharmacy_services.return_configuration import ReturnConfigurationSet
from pharmacy_services.return_history import ReturnHistoryService


@pytest.fixture
def committed(seeded, actor_id):
    """Two commits: a return, then (60s later) a disposal and an exchange."""
    committer = ReconciliationCommitter(seeded.store, seeded.clock)
    catalog_service = ReturnSelectionCatalog(seeded.store)

    first = ReturnConfigurationSet(seeded.run(catalog_service.load(seeded.sale.id)))
    first.configure(seeded.paracetamol_line.id, 3, Disposition.RETURN_TO_STOCK, "unopened")
    seeded.run(committer.commit(first, idempotency_key="RET-3f2a9c1d-1", actor_id=actor_id))

    seeded.clock.advance(60)
    second = ReturnConfigurationSet(seeded.run(catalog_service.load(seeded.sale.id)))
    second.configure(seeded.cetirizine_line.id, 1, Disposition.DISPOSE, "expired")
    second.configure(seeded.paracetamol_line.id, 2, Disposition.EXCHANGE, "swap", seeded.ibuprofen)
    seeded.run(committer.commit(second, idempotency_key="RET-3f2a9c1d-2", actor_id=actor_id))
    return seeded


class TestHistory:
    def test_newest_first_with_names(self, committed):
        entries = committed.run(ReturnHistoryService(committed.store).history(committed.sale.id))

        assert len(entries) == 3
        assert entries[-1].disposition is Disposition.RETURN_TO_STOCK
        assert entries[-1].document_number == "RET-3f2a9c1d-1"
        assert entries[-1].name == "Paracetamol 500mg"
        newest = {e.disposition: e for e in entries[:2]}
        assert newest[Disposition.DISPOSE].name == "Cetirizine 10mg"
        assert newest[Disposition.EXCHANGE].replacement_name == "Ibuprofen 400mg"
        assert newest[Disposition.EXCHANGE].value == Decimal("70.8")

    def test_missing_sale(self, seeded):
        with pytest.raises(NotFoundError):
            seeded.run(ReturnHistoryService(seeded.store).history(uuid4()))

    def test_empty_history(self, seeded):
        assert seeded.run(ReturnHistoryService(seeded.store).history(seeded.sale.id)) == []

    def test_failed_name_lookup_degrades(self, committed, flaky_store):
        flaky_store.fail_before(
            "get_inventory_item", StoreUnavailableError("get_inventory_item", "timeout"),
        )

        entries = committed.run(
            ReturnHistoryService(flaky_store, unknown_item_name="Unlisted").history(committed.sale.id)
        )

        names = {(e.disposition, e.name) for e in entries}
        assert (Disposition.RETURN_TO_STOCK, "Unlisted") in names
        assert (Disposition.EXCHANGE, "Unlisted") in names
        assert (Disposition.DISPOSE, "Cetirizine 10mg") in names


class TestMetrics:
    def test_totals_per_disposition(self, committed):
        metrics = committed.run(ReturnHistoryService(committed.store).metrics(committed.sale.id))

        assert metrics.restocked_units == 3
        assert metrics.restocked_value == Decimal("177")
        assert metrics.disposed_units == 1
        assert metrics.disposed_value == Decimal("35.4")
        assert metrics.exchanged_units == 2
        assert metrics.exchange_net_value == Decimal("70.8")
        assert metrics.total_entries == 3
