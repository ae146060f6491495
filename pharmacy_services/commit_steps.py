"""
Keyed write steps shared by the committer and the replacement matcher.

``ItemProgress`` tracks which operation keys of one item already landed
(from an earlier attempt under the same idempotency key, or during this
one) so a resumed commit runs only the missing steps.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from pharmacy_kernel.domain.dtos import AppliedOperation, OperationStep, SaleLineItem
from pharmacy_kernel.exceptions import ConcurrentModificationError, ValidationError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_kernel.utils.idempotency import generate_operation_key

logger = get_logger("services.commit_steps")


class ItemProgress:
    """Applied and newly completed steps for one line item of one commit."""

    def __init__(
        self,
        idempotency_key: str,
        line_item_id: UUID,
        prior: Iterable[AppliedOperation] = (),
        *,
        tag: str | None = None,
    ):
        self.idempotency_key = idempotency_key
        self.line_item_id = line_item_id
        self.tag = tag
        self._prior = {op.step: op for op in prior}
        self._completed: list[OperationStep] = []

    @property
    def resumed(self) -> bool:
        """True when an earlier attempt already applied some steps."""
        return bool(self._prior)

    @property
    def completed_steps(self) -> tuple[OperationStep, ...]:
        done = [step for step in OperationStep if step in self._prior]
        return tuple(done) + tuple(s for s in self._completed if s not in self._prior)

    def key(self, step: OperationStep) -> str:
        return generate_operation_key(self.idempotency_key, self.line_item_id, step, self.tag)

    def is_done(self, step: OperationStep) -> bool:
        return step in self._prior or step in self._completed

    def result_ref(self, step: OperationStep) -> UUID | None:
        op = self._prior.get(step)
        if op is None or op.result_ref is None:
            return None
        return UUID(op.result_ref)

    def mark(self, step: OperationStep) -> None:
        self._completed.append(step)


async def advance_returned_quantity(
    store: ReturnsStore,
    line_item_id: UUID,
    quantity: int,
    *,
    operation_key: str,
    max_attempts: int = 3,
) -> SaleLineItem:
    """
    Add ``quantity`` to the line item's returned counter by compare-and-set.

    A lost race re-reads the counter and tries again, bounded by
    ``max_attempts``; the bound on ``quantity_sold`` is checked on every
    read.

    Raises:
        ValidationError: fewer than ``quantity`` units remain returnable.
        ConcurrentModificationError: every attempt lost its race.
    """
    last_error: ConcurrentModificationError | None = None
    for attempt in range(1, max_attempts + 1):
        current = await store.get_line_item(line_item_id)
        if current.remaining_returnable < quantity:
            raise ValidationError.single(
                line_item_id,
                "quantity",
                f"Only {current.remaining_returnable} unit(s) remain returnable",
            )
        try:
            return await store.update_line_item_returned_quantity(
                line_item_id,
                current.returned_quantity + quantity,
                expected_value=current.returned_quantity,
                operation_key=operation_key,
            )
        except ConcurrentModificationError as exc:
            last_error = exc
            logger.warning(
                "returned_quantity_cas_retry",
                extra={
                    "line_item_id": str(line_item_id),
                    "attempt": attempt,
                    "expected": exc.expected,
                    "actual": exc.actual,
                },
            )
    raise last_error
