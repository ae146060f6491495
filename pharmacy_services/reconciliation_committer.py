"""
ReconciliationCommitter -- turns a confirmed configuration into ledger
records and inventory movements.

Responsibility:
    Re-validates the configuration against persisted state, then applies
    each item's keyed writes.  Returns and disposals are applied first and
    exchanges last.

Architecture position:
    Services.  Depends on the ReturnsStore protocol, the value calculator
    and the replacement matcher.

Invariants enforced:
    - Nothing is written unless every item without earlier progress passes
      re-validation (remaining-returnable and replacement stock).
    - The sale's GST is re-read and must equal the value the configuration
      was priced with.
    - Returns and disposals write the ledger record before any counter or
      stock movement.  Exchanges deduct the replacement stock first, so a
      shortfall leaves nothing written for the item, and then write the
      replacement link before the returned counter and the restock.
    - Every write carries an operation key, so a retry under the same
      idempotency key resumes where the last attempt stopped and
      re-applies nothing.
    - Operation keys carry the item's plan tag.  A retry that changes or
      drops an item whose steps already landed is rejected with
      ConflictError before anything is written.

Failure modes:
    - ValidationError / InsufficientStockError / ConflictError before any
      write: nothing changed (ConflictError also covers a resumed item
      whose plan changed).
    - PartialFailureError: some items committed, others did not; the error
      carries the exact split.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from pharmacy_engines.value_calculator import ValueCalculator
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import (
    AppliedOperation,
    CommittedItem,
    Disposition,
    FailedItem,
    OperationStep,
    ReturnRecord,
    describe_settlement,
)
from pharmacy_kernel.exceptions import (
    ConflictError,
    FieldError,
    InsufficientStockError,
    PartialFailureError,
    PharmacyKernelError,
    ValidationError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_kernel.utils.idempotency import operation_key_prefix, plan_tag
from pharmacy_services.commit_steps import ItemProgress, advance_returned_quantity
from pharmacy_services.preview_generator import ItemValuation, value_item
from pharmacy_services.replacement_matcher import ExchangeRequest, ReplacementMatcher
from pharmacy_services.return_catalog import CatalogItem
from pharmacy_services.return_configuration import ItemConfiguration, ReturnConfigurationSet

logger = get_logger("services.reconciliation_committer")


@dataclass(frozen=True)
class CommitResult:
    """
    A fully committed return.

    ``total_value`` is the net settlement: positive when the customer pays,
    negative when the customer is refunded.
    """

    idempotency_key: str
    total_value: Decimal
    items: tuple[CommittedItem, ...]
    refund_total: Decimal = Decimal("0")
    additional_charge_total: Decimal = Decimal("0")

    @property
    def items_committed(self) -> int:
        return len(self.items)

    @property
    def ledger_ids(self) -> tuple[UUID, ...]:
        return tuple(item.ledger_id for item in self.items)

    def summary(self) -> str:
        return (
            f"{self.items_committed} item(s) processed under {self.idempotency_key}, "
            f"{describe_settlement(self.refund_total, self.additional_charge_total)}."
        )


@dataclass(frozen=True)
class _ItemPlan:
    catalog_item: CatalogItem
    config: ItemConfiguration
    valuation: ItemValuation

    @property
    def line_item_id(self) -> UUID:
        return self.config.line_item_id

    @property
    def tag(self) -> str:
        target = self.config.replacement_target.id if self.config.is_exchange else None
        return plan_tag(self.config.disposition.value, self.config.quantity, target)


class ReconciliationCommitter:
    """Commits configured returns, disposals and exchanges."""

    def __init__(
        self,
        store: ReturnsStore,
        clock: Clock | None = None,
        calculator: ValueCalculator | None = None,
        matcher: ReplacementMatcher | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._calculator = calculator or ValueCalculator()
        self._matcher = matcher or ReplacementMatcher(store, self._clock, self._calculator)

    async def commit(
        self,
        configuration: ReturnConfigurationSet,
        *,
        idempotency_key: str,
        actor_id: UUID,
    ) -> CommitResult:
        """
        Commit every configured item under ``idempotency_key``.

        Raises:
            ValidationError: not ready, or remaining-returnable dropped.
            InsufficientStockError: an exchange target lacks stock.
            ConflictError: the sale's GST changed since pricing.
            PartialFailureError: some items failed mid-write.
        """
        if not idempotency_key:
            raise ValueError("idempotency_key must be non-empty")
        catalog = configuration.catalog
        sale_id = catalog.sale_id

        with LogContext.bind(sale_id=sale_id, idempotency_key=idempotency_key, actor_id=actor_id):
            configuration.ensure_ready()

            gst = await self._store.get_sale_gst_percentage(sale_id)
            if gst != catalog.gst_percentage:
                raise ConflictError(
                    "sale_gst",
                    str(sale_id),
                    f"GST changed from {catalog.gst_percentage} to {gst} since the preview",
                )

            prior = await self._prior_operations(idempotency_key)
            plans = self._plan(configuration, gst)
            self._check_resumable(plans, prior)
            await self._revalidate([p for p in plans if p.line_item_id not in prior])

            logger.info(
                "return_commit_started",
                extra={"items": len(plans), "resumed_items": len(prior)},
            )

            committed: list[CommittedItem] = []
            failed: list[FailedItem] = []
            for plan in plans:
                progress = ItemProgress(
                    idempotency_key,
                    plan.line_item_id,
                    prior.get(plan.line_item_id, ()),
                    tag=plan.tag,
                )
                try:
                    committed.append(
                        await self._apply(plan, progress, sale_id, gst, idempotency_key, actor_id)
                    )
                except PharmacyKernelError as exc:
                    failed.append(self._failed_item(plan, progress, exc))
                    logger.warning(
                        "return_item_failed",
                        extra={
                            "line_item_id": str(plan.line_item_id),
                            "error_code": exc.code,
                            "completed_steps": [s.value for s in progress.completed_steps],
                        },
                    )

            if failed:
                error = PartialFailureError(idempotency_key, committed, failed)
                logger.error(
                    "return_commit_partial_failure",
                    extra={
                        "committed": len(committed),
                        "failed": len(failed),
                        "committed_value": str(error.committed_value),
                    },
                )
                raise error

            result = CommitResult(
                idempotency_key=idempotency_key,
                total_value=self._calculator.aggregate([item.value for item in committed]),
                items=tuple(committed),
                refund_total=self._calculator.aggregate([i.refund_amount for i in committed]),
                additional_charge_total=self._calculator.aggregate(
                    [i.additional_charge for i in committed]
                ),
            )
            logger.info(
                "return_commit_succeeded",
                extra={
                    "items": result.items_committed,
                    "total_value": str(result.total_value),
                    "refund_total": str(result.refund_total),
                    "additional_charge_total": str(result.additional_charge_total),
                },
            )
            return result

    # ------------------------------------------------------------------
    # Planning and validation
    # ------------------------------------------------------------------

    def _plan(self, configuration: ReturnConfigurationSet, gst: Decimal) -> list[_ItemPlan]:
        catalog = configuration.catalog
        plans = []
        for config in configuration.selected:
            catalog_item = catalog.get(config.line_item_id)
            plans.append(
                _ItemPlan(
                    catalog_item=catalog_item,
                    config=config,
                    valuation=value_item(self._calculator, catalog_item, config, gst),
                )
            )
        # Exchanges last; stable within each group
        return sorted(plans, key=lambda p: p.config.is_exchange)

    async def _prior_operations(self, idempotency_key: str) -> dict[UUID, list[AppliedOperation]]:
        applied = await self._store.list_applied_operations(operation_key_prefix(idempotency_key))
        by_item: dict[UUID, list[AppliedOperation]] = defaultdict(list)
        for op in applied:
            by_item[op.line_item_id].append(op)
        return dict(by_item)

    def _check_resumable(
        self, plans: list[_ItemPlan], prior: dict[UUID, list[AppliedOperation]],
    ) -> None:
        """
        Landed steps may only be resumed under the plan that wrote them.

        Raises:
            ConflictError: an item with landed steps was dropped from the
                configuration, or its disposition, quantity or replacement
                target changed since the earlier attempt.
        """
        tags = {plan.line_item_id: plan.tag for plan in plans}
        for line_item_id, ops in prior.items():
            if line_item_id not in tags:
                raise ConflictError(
                    "return_item",
                    str(line_item_id),
                    "steps already landed under this document number; "
                    "the item cannot be removed from the return",
                )
            landed = {op.plan_tag for op in ops}
            if landed != {tags[line_item_id]}:
                logger.warning(
                    "return_item_plan_changed",
                    extra={
                        "line_item_id": str(line_item_id),
                        "landed_steps": [op.step.value for op in ops],
                    },
                )
                raise ConflictError(
                    "return_item",
                    str(line_item_id),
                    "steps already landed under a different quantity, disposition "
                    "or replacement; the item must be retried as first configured",
                )

    async def _revalidate(self, plans: list[_ItemPlan]) -> None:
        errors: list[FieldError] = []
        for plan in plans:
            line_item = await self._store.get_line_item(plan.line_item_id)
            if line_item.remaining_returnable < plan.config.quantity:
                errors.append(
                    FieldError(
                        plan.line_item_id,
                        "quantity",
                        f"Only {line_item.remaining_returnable} of {plan.catalog_item.name} "
                        f"can still be returned; {plan.config.quantity} requested",
                    )
                )
        if errors:
            raise ValidationError(errors)

        demand: dict[UUID, int] = defaultdict(int)
        for plan in plans:
            if plan.config.is_exchange:
                demand[plan.config.replacement_target.id] += plan.config.quantity
        for inventory_item_id, quantity in demand.items():
            target = await self._store.get_inventory_item(inventory_item_id)
            if target.on_hand_quantity < quantity:
                raise InsufficientStockError(
                    str(inventory_item_id), quantity, target.on_hand_quantity,
                )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _apply(
        self,
        plan: _ItemPlan,
        progress: ItemProgress,
        sale_id: UUID,
        gst: Decimal,
        idempotency_key: str,
        actor_id: UUID,
    ) -> CommittedItem:
        config = plan.config
        if config.is_exchange:
            outcome = await self._matcher.apply(
                ExchangeRequest(
                    sale_id=sale_id,
                    line_item_id=plan.line_item_id,
                    original_inventory_item_id=plan.catalog_item.inventory_item_id,
                    replacement_inventory_item_id=config.replacement_target.id,
                    quantity=config.quantity,
                    original_unit_price=plan.catalog_item.unit_price,
                    replacement_unit_price=config.replacement_target.unit_cost,
                    gst_percentage=gst,
                    reason=config.reason,
                    actor_id=actor_id,
                    document_number=idempotency_key,
                ),
                progress,
            )
            ledger_id = outcome.link_id
        else:
            ledger_id = await self._apply_return(plan, progress, sale_id, idempotency_key, actor_id)

        logger.info(
            "return_item_committed",
            extra={
                "line_item_id": str(plan.line_item_id),
                "disposition": config.disposition.value,
                "quantity": config.quantity,
                "value": str(plan.valuation.value),
                "resumed": progress.resumed,
            },
        )
        return CommittedItem(
            line_item_id=plan.line_item_id,
            name=plan.catalog_item.name,
            quantity=config.quantity,
            disposition=config.disposition,
            value=plan.valuation.value,
            ledger_id=ledger_id,
        )

    async def _apply_return(
        self,
        plan: _ItemPlan,
        progress: ItemProgress,
        sale_id: UUID,
        idempotency_key: str,
        actor_id: UUID,
    ) -> UUID:
        config = plan.config

        step = OperationStep.RECORD
        ledger_id = progress.result_ref(step)
        if ledger_id is None:
            record = ReturnRecord(
                id=uuid.uuid4(),
                sale_id=sale_id,
                line_item_id=plan.line_item_id,
                quantity=config.quantity,
                disposition=config.disposition,
                reason=config.reason,
                recorded_at=self._clock.now_utc(),
                actor_id=actor_id,
                value=plan.valuation.original.total,
                document_number=idempotency_key,
                operation_key=progress.key(step),
            )
            ledger_id = await self._store.insert_return_record(record)
            progress.mark(step)

        step = OperationStep.RETURNED_QUANTITY
        if not progress.is_done(step):
            await advance_returned_quantity(
                self._store, plan.line_item_id, config.quantity, operation_key=progress.key(step),
            )
            progress.mark(step)

        step = OperationStep.RESTOCK
        if config.disposition is Disposition.RETURN_TO_STOCK and not progress.is_done(step):
            await self._store.adjust_inventory_quantity(
                plan.catalog_item.inventory_item_id,
                config.quantity,
                operation_key=progress.key(step),
            )
            progress.mark(step)

        return ledger_id

    def _failed_item(
        self, plan: _ItemPlan, progress: ItemProgress, exc: PharmacyKernelError,
    ) -> FailedItem:
        return FailedItem(
            line_item_id=plan.line_item_id,
            name=plan.catalog_item.name,
            quantity=plan.config.quantity,
            disposition=plan.config.disposition,
            reason=_failure_reason(exc),
            error_code=exc.code,
            completed_steps=progress.completed_steps,
        )


def _failure_reason(exc: PharmacyKernelError) -> str:
    if isinstance(exc, InsufficientStockError):
        return f"only {exc.available} in stock, {exc.requested} needed"
    if isinstance(exc, ValidationError):
        return "; ".join(e.message for e in exc.errors)
    return str(exc)
