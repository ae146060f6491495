"""
ReturnSession -- the operator's return flow as an explicit state machine.

States and actions (RETURN_WORKFLOW):

    select    --configure-->  configure     guard: has_selection
    configure --preview-->    preview       guard: configuration_ready
    preview   --refresh-->    preview
    preview   --confirm-->    confirm
    confirm   --commit-->     committed     writes ledger
    configure/preview/confirm --back--> previous state
    any non-terminal state --cancel--> cancelled

Nothing is written before ``commit``; cancelling at any earlier point
leaves the store untouched.  The document number is allocated on the
first ``confirm`` and reused as the commit idempotency key for every
retry within the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union
from uuid import UUID

from pharmacy_kernel.domain.dtos import Disposition, InventoryItem
from pharmacy_kernel.domain.workflow import Guard, Transition, Workflow
from pharmacy_kernel.exceptions import (
    InvalidTransitionError,
    PartialFailureError,
    PharmacyKernelError,
    ValidationError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.services.sequence_service import SequenceAllocator
from pharmacy_services.preview_generator import PreviewGenerator, PreviewResult
from pharmacy_services.reconciliation_committer import CommitResult, ReconciliationCommitter
from pharmacy_services.return_catalog import LoadedCatalog, ReturnSelectionCatalog
from pharmacy_services.return_configuration import ConfigureResult, ReturnConfigurationSet

logger = get_logger("services.return_session")


class ReturnState(str, Enum):
    SELECT = "select"
    CONFIGURE = "configure"
    PREVIEW = "preview"
    CONFIRM = "confirm"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


HAS_SELECTION = Guard("has_selection", "At least one line item is selected")
CONFIGURATION_READY = Guard("configuration_ready", "Every selected item is validly configured")

_S = ReturnState

RETURN_WORKFLOW = Workflow(
    name="return_flow",
    description="Select, configure, preview, confirm and commit a sale return",
    initial_state=_S.SELECT.value,
    states=tuple(s.value for s in ReturnState),
    transitions=(
        Transition(_S.SELECT.value, _S.CONFIGURE.value, action="configure", guard=HAS_SELECTION),
        Transition(_S.CONFIGURE.value, _S.SELECT.value, action="back"),
        Transition(_S.CONFIGURE.value, _S.PREVIEW.value, action="preview", guard=CONFIGURATION_READY),
        Transition(_S.PREVIEW.value, _S.PREVIEW.value, action="refresh", guard=CONFIGURATION_READY),
        Transition(_S.PREVIEW.value, _S.CONFIGURE.value, action="back"),
        Transition(_S.PREVIEW.value, _S.CONFIRM.value, action="confirm"),
        Transition(_S.CONFIRM.value, _S.PREVIEW.value, action="back"),
        Transition(_S.CONFIRM.value, _S.COMMITTED.value, action="commit", writes_ledger=True),
        Transition(_S.SELECT.value, _S.CANCELLED.value, action="cancel"),
        Transition(_S.CONFIGURE.value, _S.CANCELLED.value, action="cancel"),
        Transition(_S.PREVIEW.value, _S.CANCELLED.value, action="cancel"),
        Transition(_S.CONFIRM.value, _S.CANCELLED.value, action="cancel"),
    ),
    terminal_states=(_S.COMMITTED.value, _S.CANCELLED.value),
)


@dataclass(frozen=True)
class CommitSucceeded:
    result: CommitResult

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class CommitFailed:
    error: PharmacyKernelError

    @property
    def succeeded(self) -> bool:
        return False

    @property
    def message(self) -> str:
        if isinstance(self.error, PartialFailureError):
            return self.error.summary()
        return str(self.error)


CommitOutcome = Union[CommitSucceeded, CommitFailed]


@dataclass(frozen=True)
class SessionListeners:
    """Optional observer hooks. Exceptions raised by a hook propagate."""

    on_preview_ready: Callable[[PreviewResult], None] | None = None
    on_commit_succeeded: Callable[[CommitResult], None] | None = None
    on_commit_failed: Callable[[PharmacyKernelError], None] | None = None


class ReturnSession:
    """One operator's return against one sale."""

    def __init__(
        self,
        catalog: LoadedCatalog,
        *,
        actor_id: UUID,
        catalog_service: ReturnSelectionCatalog,
        preview_generator: PreviewGenerator,
        committer: ReconciliationCommitter,
        allocator: SequenceAllocator,
        reason_min_length: int = 1,
        listeners: SessionListeners | None = None,
    ):
        self._catalog = catalog
        self._actor_id = actor_id
        self._catalog_service = catalog_service
        self._preview_generator = preview_generator
        self._committer = committer
        self._allocator = allocator
        self._listeners = listeners or SessionListeners()
        self._configuration = ReturnConfigurationSet(catalog, reason_min_length=reason_min_length)
        self._state = ReturnState(RETURN_WORKFLOW.initial_state)
        self._preview: PreviewResult | None = None
        self._document_number: str | None = None
        self._result: CommitResult | None = None
        self._locked: set[UUID] = set()

    @property
    def state(self) -> ReturnState:
        return self._state

    @property
    def catalog(self) -> LoadedCatalog:
        return self._catalog

    @property
    def configuration(self) -> ReturnConfigurationSet:
        return self._configuration

    @property
    def preview(self) -> PreviewResult | None:
        return self._preview

    @property
    def document_number(self) -> str | None:
        return self._document_number

    @property
    def result(self) -> CommitResult | None:
        return self._result

    @property
    def locked_items(self) -> frozenset[UUID]:
        """Items with writes landed by an earlier partial attempt; they can no longer change."""
        return frozenset(self._locked)

    def available_actions(self) -> tuple[str, ...]:
        return RETURN_WORKFLOW.actions_from(self._state.value)

    # ------------------------------------------------------------------
    # Select
    # ------------------------------------------------------------------

    def select(self, line_item_id: UUID) -> None:
        self._require_editable("select")
        self._configuration.select(line_item_id)

    def deselect(self, line_item_id: UUID) -> None:
        self._require_editable("deselect")
        self._require_unlocked(line_item_id)
        self._configuration.deselect(line_item_id)

    def select_all(self) -> None:
        self._require_editable("select_all")
        self._configuration.select_all()

    def proceed_to_configure(self) -> None:
        self._fire("configure")

    # ------------------------------------------------------------------
    # Configure
    # ------------------------------------------------------------------

    def configure(
        self,
        line_item_id: UUID,
        quantity: int,
        disposition: Disposition | str,
        reason: str = "",
        replacement_target: InventoryItem | None = None,
    ) -> ConfigureResult:
        if self._state is not ReturnState.CONFIGURE:
            raise InvalidTransitionError(RETURN_WORKFLOW.name, self._state.value, "configure_item")
        self._require_unlocked(line_item_id)
        return self._configuration.configure(
            line_item_id, quantity, disposition, reason, replacement_target,
        )

    async def replacement_candidates(self, line_item_id: UUID) -> list[InventoryItem]:
        """In-stock items the given line item can be exchanged for."""
        catalog_item = self._catalog.get(line_item_id)
        return await self._catalog_service.list_replacement_candidates(
            exclude_inventory_item_id=catalog_item.inventory_item_id,
        )

    # ------------------------------------------------------------------
    # Preview / confirm / commit
    # ------------------------------------------------------------------

    def generate_preview(self) -> PreviewResult:
        action = "refresh" if self._state is ReturnState.PREVIEW else "preview"
        self._check(action)
        preview = self._preview_generator.generate(self._configuration)
        self._fire(action)
        self._preview = preview
        if self._listeners.on_preview_ready is not None:
            self._listeners.on_preview_ready(preview)
        return preview

    def back(self) -> ReturnState:
        self._fire("back")
        if self._state is ReturnState.CONFIGURE:
            self._preview = None
        return self._state

    async def confirm(self) -> str:
        """Move to confirm and return the document number for this return."""
        self._check("confirm")
        if self._document_number is None:
            allocated = await self._allocator.allocate(str(self._actor_id))
            self._document_number = allocated.identifier
        self._fire("confirm")
        return self._document_number

    async def commit(self) -> CommitOutcome:
        """
        Commit the configuration under the session's document number.

        On failure the session stays in confirm; the operator can go back,
        adjust items with nothing written yet and commit again under the
        same number.  Items with landed writes are locked to the
        configuration that wrote them.
        """
        self._check("commit")
        try:
            result = await self._committer.commit(
                self._configuration,
                idempotency_key=self._document_number,
                actor_id=self._actor_id,
            )
        except PharmacyKernelError as exc:
            if isinstance(exc, PartialFailureError):
                self._locked.update(item.line_item_id for item in exc.committed)
                self._locked.update(
                    item.line_item_id for item in exc.failed if item.completed_steps
                )
            logger.warning(
                "return_session_commit_failed",
                extra={"document_number": self._document_number, "error_code": exc.code},
            )
            if self._listeners.on_commit_failed is not None:
                self._listeners.on_commit_failed(exc)
            return CommitFailed(exc)

        self._fire("commit")
        self._result = result
        if self._listeners.on_commit_succeeded is not None:
            self._listeners.on_commit_succeeded(result)
        return CommitSucceeded(result)

    def cancel(self) -> None:
        self._fire("cancel")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, action: str) -> Transition:
        transition = RETURN_WORKFLOW.find(self._state.value, action)
        if transition is None:
            raise InvalidTransitionError(RETURN_WORKFLOW.name, self._state.value, action)
        if transition.guard is HAS_SELECTION and len(self._configuration) == 0:
            raise ValidationError.single(None, "selection", "Select at least one item to return")
        if transition.guard is CONFIGURATION_READY:
            self._configuration.ensure_ready()
        return transition

    def _fire(self, action: str) -> None:
        transition = self._check(action)
        previous = self._state
        self._state = ReturnState(transition.to_state)
        logger.info(
            "return_flow_transition",
            extra={
                "sale_id": str(self._catalog.sale_id),
                "action": action,
                "from_state": previous.value,
                "to_state": self._state.value,
            },
        )

    def _require_editable(self, action: str) -> None:
        if self._state not in (ReturnState.SELECT, ReturnState.CONFIGURE):
            raise InvalidTransitionError(RETURN_WORKFLOW.name, self._state.value, action)

    def _require_unlocked(self, line_item_id: UUID) -> None:
        if line_item_id in self._locked:
            raise ValidationError.single(
                line_item_id,
                "line_item_id",
                "Item was already partly or fully committed under this return",
            )
