"""
ReturnConfigurationSet -- per-item return choices for one session.

Responsibility:
    Transient, in-memory mapping from selected line item to quantity,
    disposition, reason and (for exchanges) replacement target.  Never
    persisted; only its committed projection (ledger records and links)
    reaches the store.

Invariants enforced:
    - Quantities are positive integers no larger than the item's
      remaining-returnable count.  Larger requests are clamped and the
      clamp is reported back to the caller.
    - An exchange has a replacement target that differs from the original
      inventory item and had stock when it was chosen.
    - The set is ready only when at least one item is selected and every
      selected item is valid, including the minimum reason length.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID

from pharmacy_kernel.domain.dtos import Disposition, InventoryItem
from pharmacy_kernel.exceptions import FieldError, ValidationError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_services.return_catalog import CatalogItem, LoadedCatalog

logger = get_logger("services.return_configuration")


@dataclass(frozen=True)
class ItemConfiguration:
    """The operator's choice for one selected line item.

    ``replacement_target`` is the inventory snapshot taken when the target
    was chosen; its ``unit_cost`` prices the exchange.
    """

    line_item_id: UUID
    quantity: int = 1
    disposition: Disposition = Disposition.RETURN_TO_STOCK
    reason: str = ""
    replacement_target: InventoryItem | None = None

    @property
    def is_exchange(self) -> bool:
        return self.disposition is Disposition.EXCHANGE


@dataclass(frozen=True)
class QuantityClamp:
    """Notice that a requested quantity was reduced to the maximum."""

    line_item_id: UUID
    requested: int
    applied: int

    @property
    def message(self) -> str:
        return (
            f"Requested {self.requested} but only {self.applied} can be returned; "
            f"quantity set to {self.applied}"
        )


@dataclass(frozen=True)
class ConfigureResult:
    configuration: ItemConfiguration
    clamp: QuantityClamp | None = None

    @property
    def clamped(self) -> bool:
        return self.clamp is not None

    @property
    def quantity(self) -> int:
        return self.configuration.quantity


class ReturnConfigurationSet:
    """Selections and per-item configuration over a loaded catalog."""

    def __init__(self, catalog: LoadedCatalog, *, reason_min_length: int = 1):
        if reason_min_length < 1:
            raise ValueError("reason_min_length must be at least 1")
        self._catalog = catalog
        self._reason_min_length = reason_min_length
        self._items: dict[UUID, ItemConfiguration] = {}

    @property
    def catalog(self) -> LoadedCatalog:
        return self._catalog

    @property
    def reason_min_length(self) -> int:
        return self._reason_min_length

    @property
    def selected(self) -> tuple[ItemConfiguration, ...]:
        return tuple(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, line_item_id: object) -> bool:
        return line_item_id in self._items

    def get(self, line_item_id: UUID) -> ItemConfiguration | None:
        return self._items.get(line_item_id)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, line_item_id: UUID) -> ItemConfiguration:
        """
        Select a line item with default configuration (1 unit, return to
        stock, no reason).  Selecting an already selected item keeps its
        configuration.

        Raises:
            ValidationError: the item is not returnable in this catalog.
        """
        self._catalog_item(line_item_id)
        existing = self._items.get(line_item_id)
        if existing is not None:
            return existing
        config = ItemConfiguration(line_item_id=line_item_id)
        self._items[line_item_id] = config
        return config

    def deselect(self, line_item_id: UUID) -> bool:
        """Drop a selection. Returns False if it was not selected."""
        return self._items.pop(line_item_id, None) is not None

    def select_all(self, line_item_ids: list[UUID] | None = None) -> tuple[ItemConfiguration, ...]:
        """Select every catalog item, or the given subset."""
        ids = line_item_ids if line_item_ids is not None else [i.id for i in self._catalog.items]
        return tuple(self.select(line_item_id) for line_item_id in ids)

    def clear(self) -> None:
        self._items.clear()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(
        self,
        line_item_id: UUID,
        quantity: int,
        disposition: Disposition | str,
        reason: str = "",
        replacement_target: InventoryItem | None = None,
    ) -> ConfigureResult:
        """
        Configure a line item, selecting it if needed.

        An exchange target's stock is checked against the snapshot passed in,
        which may be stale; ``ReturnSelectionCatalog.get_replacement_target``
        gives a fresh read.  The commit re-validates against persisted stock.

        Raises:
            ValidationError: non-positive or non-integer quantity, unknown
                disposition, missing or invalid exchange target.  Nothing
                is changed when it is raised.
        """
        catalog_item = self._catalog_item(line_item_id)
        resolved = self._validate_disposition(line_item_id, disposition)

        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError.single(line_item_id, "quantity", "Quantity must be a whole number")
        if quantity <= 0:
            raise ValidationError.single(line_item_id, "quantity", "Quantity must be at least 1")

        self._validate_target(catalog_item, resolved, replacement_target)

        clamp = None
        applied = quantity
        maximum = catalog_item.remaining_returnable
        if quantity > maximum:
            applied = maximum
            clamp = QuantityClamp(line_item_id=line_item_id, requested=quantity, applied=applied)
            logger.info(
                "return_quantity_clamped",
                extra={"line_item_id": str(line_item_id), "requested": quantity, "applied": applied},
            )

        base = self._items.get(line_item_id) or ItemConfiguration(line_item_id=line_item_id)
        config = replace(
            base,
            quantity=applied,
            disposition=resolved,
            reason=reason,
            replacement_target=replacement_target if resolved is Disposition.EXCHANGE else None,
        )
        self._items[line_item_id] = config
        return ConfigureResult(configuration=config, clamp=clamp)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def validation_errors(self) -> tuple[FieldError, ...]:
        """Every problem that keeps the set from being ready."""
        if not self._items:
            return (FieldError(None, "selection", "Select at least one item to return"),)
        errors: list[FieldError] = []
        for config in self._items.values():
            catalog_item = self._catalog.get(config.line_item_id)
            if len(config.reason.strip()) < self._reason_min_length:
                errors.append(
                    FieldError(
                        config.line_item_id,
                        "reason",
                        f"Reason for {catalog_item.name} must be at least "
                        f"{self._reason_min_length} character(s)",
                    )
                )
            if config.quantity > catalog_item.remaining_returnable:
                errors.append(
                    FieldError(
                        config.line_item_id,
                        "quantity",
                        f"Only {catalog_item.remaining_returnable} of {catalog_item.name} can be returned",
                    )
                )
            if config.is_exchange and config.replacement_target is None:
                errors.append(
                    FieldError(config.line_item_id, "replacement_target", "Choose a replacement item")
                )
        return tuple(errors)

    def is_ready(self) -> bool:
        return not self.validation_errors()

    def ensure_ready(self) -> None:
        """Raises ValidationError carrying every field error."""
        errors = self.validation_errors()
        if errors:
            raise ValidationError(errors)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _catalog_item(self, line_item_id: UUID) -> CatalogItem:
        if line_item_id not in self._catalog:
            raise ValidationError.single(
                line_item_id, "line_item_id", "Item has nothing left to return in this sale",
            )
        return self._catalog.get(line_item_id)

    def _validate_disposition(self, line_item_id: UUID, disposition: Disposition | str) -> Disposition:
        try:
            return Disposition(disposition)
        except ValueError:
            raise ValidationError.single(
                line_item_id, "disposition", f"Unknown disposition: {disposition!r}",
            ) from None

    def _validate_target(
        self,
        catalog_item: CatalogItem,
        disposition: Disposition,
        target: InventoryItem | None,
    ) -> None:
        line_item_id = catalog_item.id
        if disposition is not Disposition.EXCHANGE:
            if target is not None:
                raise ValidationError.single(
                    line_item_id, "replacement_target", "Only exchanges take a replacement item",
                )
            return
        if target is None:
            raise ValidationError.single(
                line_item_id, "replacement_target", "An exchange needs a replacement item",
            )
        if target.id == catalog_item.inventory_item_id:
            raise ValidationError.single(
                line_item_id, "replacement_target", "Replacement must be a different item",
            )
        # Early feedback from the caller's snapshot only.  The binding check is
        # the committer's re-read of persisted stock and the store's
        # conditional decrement at write time.
        if target.on_hand_quantity <= 0:
            raise ValidationError.single(
                line_item_id, "replacement_target", f"{target.name} is out of stock",
            )
