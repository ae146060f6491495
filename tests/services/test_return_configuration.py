"""
Tests for ReturnConfigurationSet.

Covers:
- Selection defaults, deselect, select all
- Quantity boundaries: 0 rejected, max accepted, max + 1 clamped with notice
- Exchange target rules
- Readiness and field errors
"""

from dataclasses import replace

import pytest

from pharmacy_kernel.domain.dtos import Disposition
from pharmacy_kernel.exceptions import InsufficientStockError, ValidationError
from pharmacy_services.reconciliation_committer import ReconciliationCommitter
from pharmacy_services.return_catalog import ReturnSelectionCatalog
from pharmacy_services.return_configuration import ReturnConfigurationSet


@pytest.fixture
def catalog(seeded):
    return seeded.run(ReturnSelectionCatalog(seeded.store).load(seeded.sale.id))


@pytest.fixture
def configuration(catalog):
    return ReturnConfigurationSet(catalog, reason_min_length=3)


class TestSelection:
    def test_select_creates_default_draft(self, seeded, configuration):
        config = configuration.select(seeded.paracetamol_line.id)

        assert config.quantity == 1
        assert config.disposition is Disposition.RETURN_TO_STOCK
        assert config.reason == ""
        assert config.replacement_target is None
        assert seeded.paracetamol_line.id in configuration

    def test_reselect_keeps_configuration(self, seeded, configuration):
        configuration.configure(seeded.paracetamol_line.id, 4, Disposition.DISPOSE, "expired")

        config = configuration.select(seeded.paracetamol_line.id)

        assert config.quantity == 4
        assert config.disposition is Disposition.DISPOSE

    def test_select_exhausted_item_rejected(self, seeded, configuration):
        with pytest.raises(ValidationError) as exc_info:
            configuration.select(seeded.amoxicillin_line.id)

        assert exc_info.value.errors[0].field == "line_item_id"

    def test_deselect(self, seeded, configuration):
        configuration.select(seeded.paracetamol_line.id)

        assert configuration.deselect(seeded.paracetamol_line.id) is True
        assert configuration.deselect(seeded.paracetamol_line.id) is False
        assert len(configuration) == 0

    def test_select_all(self, seeded, configuration):
        configuration.select_all()

        assert len(configuration) == 2
        assert seeded.cetirizine_line.id in configuration

    def test_clear(self, configuration):
        configuration.select_all()
        configuration.clear()

        assert len(configuration) == 0


class TestQuantity:
    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_rejected(self, seeded, configuration, quantity):
        with pytest.raises(ValidationError) as exc_info:
            configuration.configure(seeded.paracetamol_line.id, quantity, Disposition.RETURN_TO_STOCK)

        assert exc_info.value.messages_for(seeded.paracetamol_line.id) == ["Quantity must be at least 1"]
        assert seeded.paracetamol_line.id not in configuration

    @pytest.mark.parametrize("quantity", [True, 1.5, "2"])
    def test_non_integer_rejected(self, seeded, configuration, quantity):
        with pytest.raises(ValidationError):
            configuration.configure(seeded.paracetamol_line.id, quantity, Disposition.RETURN_TO_STOCK)

    def test_maximum_accepted(self, seeded, configuration):
        result = configuration.configure(seeded.cetirizine_line.id, 3, Disposition.RETURN_TO_STOCK)

        assert result.quantity == 3
        assert not result.clamped

    def test_above_maximum_clamped_with_notice(self, seeded, configuration, captured_logs):
        result = configuration.configure(seeded.cetirizine_line.id, 4, Disposition.RETURN_TO_STOCK)

        assert result.quantity == 3
        assert result.clamped
        assert result.clamp.requested == 4
        assert result.clamp.applied == 3
        assert "only 3 can be returned" in result.clamp.message
        assert any(r["message"] == "return_quantity_clamped" for r in captured_logs())

    def test_configure_auto_selects(self, seeded, configuration):
        configuration.configure(seeded.paracetamol_line.id, 2, "dispose", "damaged")

        assert configuration.get(seeded.paracetamol_line.id).disposition is Disposition.DISPOSE

    def test_unknown_disposition_rejected(self, seeded, configuration):
        with pytest.raises(ValidationError) as exc_info:
            configuration.configure(seeded.paracetamol_line.id, 1, "refund")

        assert exc_info.value.errors[0].field == "disposition"


class TestExchangeTarget:
    def test_valid_target(self, seeded, configuration):
        result = configuration.configure(
            seeded.paracetamol_line.id, 2, Disposition.EXCHANGE, "wrong strength", seeded.ibuprofen,
        )

        assert result.configuration.replacement_target == seeded.ibuprofen
        assert result.configuration.is_exchange

    def test_missing_target_rejected(self, seeded, configuration):
        with pytest.raises(ValidationError, match="needs a replacement"):
            configuration.configure(seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap")

    def test_same_item_rejected(self, seeded, configuration):
        with pytest.raises(ValidationError, match="different item"):
            configuration.configure(
                seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap", seeded.paracetamol,
            )

    def test_out_of_stock_target_rejected(self, seeded, configuration):
        with pytest.raises(ValidationError, match="out of stock"):
            configuration.configure(
                seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap", seeded.insulin,
            )

    def test_target_with_return_rejected(self, seeded, configuration):
        with pytest.raises(ValidationError, match="Only exchanges"):
            configuration.configure(
                seeded.paracetamol_line.id, 1, Disposition.RETURN_TO_STOCK, "swap", seeded.ibuprofen,
            )

    def test_switching_away_from_exchange_drops_target(self, seeded, configuration):
        configuration.configure(
            seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap", seeded.ibuprofen,
        )
        configuration.configure(seeded.paracetamol_line.id, 1, Disposition.DISPOSE, "broken seal")

        assert configuration.get(seeded.paracetamol_line.id).replacement_target is None

    def test_failed_configure_leaves_previous_configuration(self, seeded, configuration):
        configuration.configure(seeded.paracetamol_line.id, 2, Disposition.DISPOSE, "expired")

        with pytest.raises(ValidationError):
            configuration.configure(
                seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap",
                replace(seeded.ibuprofen, on_hand_quantity=0),
            )

        config = configuration.get(seeded.paracetamol_line.id)
        assert config.quantity == 2
        assert config.disposition is Disposition.DISPOSE

    def test_stale_snapshot_accepted_then_caught_at_commit(self, seeded, configuration, actor_id):
        """Configure checks the snapshot; the commit checks persisted stock."""
        seeded.store.set_on_hand(seeded.ibuprofen.id, 0)
        configuration.configure(
            seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap", seeded.ibuprofen,
        )
        fresh = seeded.run(
            ReturnSelectionCatalog(seeded.store).get_replacement_target(seeded.ibuprofen.id)
        )

        with pytest.raises(InsufficientStockError):
            seeded.run(
                ReconciliationCommitter(seeded.store, seeded.clock).commit(
                    configuration, idempotency_key="RET-3f2a9c1d-1", actor_id=actor_id,
                )
            )

        assert not fresh.in_stock
        with pytest.raises(ValidationError, match="out of stock"):
            configuration.configure(
                seeded.paracetamol_line.id, 1, Disposition.EXCHANGE, "swap", fresh,
            )
        assert seeded.store.applied_operations == ()


class TestReadiness:
    def test_empty_selection_not_ready(self, configuration):
        errors = configuration.validation_errors()

        assert not configuration.is_ready()
        assert errors[0].line_item_id is None
        assert errors[0].field == "selection"

    def test_short_reason_not_ready(self, seeded, configuration):
        configuration.configure(seeded.paracetamol_line.id, 1, Disposition.RETURN_TO_STOCK, "ok")

        with pytest.raises(ValidationError) as exc_info:
            configuration.ensure_ready()

        assert exc_info.value.errors[0].field == "reason"

    def test_whitespace_reason_not_ready(self, seeded, configuration):
        configuration.configure(seeded.paracetamol_line.id, 1, Disposition.RETURN_TO_STOCK, "     ")

        assert not configuration.is_ready()

    def test_every_item_reported(self, seeded, configuration):
        configuration.select_all()

        errors = configuration.validation_errors()

        assert {e.line_item_id for e in errors} == {
            seeded.paracetamol_line.id,
            seeded.cetirizine_line.id,
        }

    def test_ready(self, seeded, configuration):
        configuration.configure(seeded.paracetamol_line.id, 3, Disposition.RETURN_TO_STOCK, "unopened")

        assert configuration.is_ready()
        configuration.ensure_ready()

    def test_min_length_must_be_positive(self, catalog):
        with pytest.raises(ValueError):
            ReturnConfigurationSet(catalog, reason_min_length=0)
