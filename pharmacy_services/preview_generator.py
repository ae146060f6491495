"""
PreviewGenerator -- what a confirmed return would do, before it does it.

Responsibility:
    Turns a ready ReturnConfigurationSet into per-item values and totals
    using the sale's fixed GST percentage.  Performs no writes; repeated
    calls over the same configuration produce equal results.

Preview/commit equivalence:
    The committer values every item through the same ``value_item`` call,
    so the preview's ``total_value`` is exactly the committed total when
    nothing changed in between.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from pharmacy_engines.value_calculator import ExchangeValuation, ValueBreakdown, ValueCalculator
from pharmacy_kernel.domain.dtos import Disposition, round_for_display
from pharmacy_kernel.logging_config import get_logger
from pharmacy_services.return_catalog import CatalogItem
from pharmacy_services.return_configuration import ItemConfiguration, ReturnConfigurationSet

logger = get_logger("services.preview")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ItemValuation:
    """Values of one configured item at the sale's GST rate."""

    original: ValueBreakdown
    exchange: ExchangeValuation | None
    value: Decimal


def value_item(
    calculator: ValueCalculator,
    catalog_item: CatalogItem,
    config: ItemConfiguration,
    gst_percentage: Decimal,
) -> ItemValuation:
    """Value one configured item; exchanges are priced at the target's snapshot cost."""
    original = calculator.breakdown(catalog_item.unit_price, config.quantity, gst_percentage)
    exchange = None
    if config.is_exchange:
        exchange = calculator.exchange(
            catalog_item.unit_price,
            config.replacement_target.unit_cost,
            config.quantity,
            gst_percentage,
        )
    return ItemValuation(
        original=original,
        exchange=exchange,
        value=calculator.item_value(config.disposition, original, exchange),
    )


@dataclass(frozen=True)
class PreviewLine:
    line_item_id: UUID
    name: str
    quantity: int
    disposition: Disposition
    reason: str
    original: ValueBreakdown
    exchange: ExchangeValuation | None
    replacement_name: str | None
    value: Decimal

    @property
    def display_value(self) -> Decimal:
        return round_for_display(self.value)


@dataclass(frozen=True)
class PreviewResult:
    """
    Read-only summary of a configured return.

    Every value is a settlement: positive when the customer pays, negative
    when the customer is refunded.  ``total_value`` is the signed sum of the
    line values, so it equals ``net_settlement``.  ``refund_total`` and
    ``additional_charge_total`` split the same lines by sign.
    """

    sale_id: UUID
    sale_number: str
    document_label: str
    gst_percentage: Decimal
    lines: tuple[PreviewLine, ...]
    total_value: Decimal
    refund_total: Decimal
    additional_charge_total: Decimal

    @property
    def item_count(self) -> int:
        return len(self.lines)

    @property
    def net_settlement(self) -> Decimal:
        """Positive: the customer pays. Negative: the customer is refunded."""
        return self.additional_charge_total - self.refund_total

    def display_totals(self) -> dict[str, Decimal]:
        return {
            "total_value": round_for_display(self.total_value),
            "refund_total": round_for_display(self.refund_total),
            "additional_charge_total": round_for_display(self.additional_charge_total),
            "net_settlement": round_for_display(self.net_settlement),
        }


class PreviewGenerator:
    """Builds PreviewResults from ready configuration sets."""

    def __init__(self, calculator: ValueCalculator | None = None):
        self._calculator = calculator or ValueCalculator()

    def generate(self, configuration: ReturnConfigurationSet) -> PreviewResult:
        """
        Raises:
            ValidationError: the configuration is not ready.
        """
        configuration.ensure_ready()
        catalog = configuration.catalog
        gst = catalog.gst_percentage

        lines: list[PreviewLine] = []
        refund_total = _ZERO
        charge_total = _ZERO
        for config in configuration.selected:
            catalog_item = catalog.get(config.line_item_id)
            valuation = value_item(self._calculator, catalog_item, config, gst)
            if valuation.value < _ZERO:
                refund_total -= valuation.value
            else:
                charge_total += valuation.value
            lines.append(
                PreviewLine(
                    line_item_id=config.line_item_id,
                    name=catalog_item.name,
                    quantity=config.quantity,
                    disposition=config.disposition,
                    reason=config.reason,
                    original=valuation.original,
                    exchange=valuation.exchange,
                    replacement_name=(
                        config.replacement_target.name if config.is_exchange else None
                    ),
                    value=valuation.value,
                )
            )

        all_exchanges = all(line.disposition is Disposition.EXCHANGE for line in lines)
        label_prefix = "REPLACE" if all_exchanges else "RETURN"
        result = PreviewResult(
            sale_id=catalog.sale_id,
            sale_number=catalog.sale.sale_number,
            document_label=f"{label_prefix}-{catalog.sale.sale_number}",
            gst_percentage=gst,
            lines=tuple(lines),
            total_value=self._calculator.aggregate([line.value for line in lines]),
            refund_total=refund_total,
            additional_charge_total=charge_total,
        )
        logger.debug(
            "return_preview_generated",
            extra={
                "sale_id": str(catalog.sale_id),
                "items": result.item_count,
                "total_value": str(result.total_value),
            },
        )
        return result
