"""
ORM-level immutability enforcement for the returns ledger.

Return records, replacement links and applied-operation markers are
append-only.  A mistaken return is corrected by a new record, never by
editing or deleting an old one.  The listeners here intercept UPDATE and
DELETE of those rows during flush and raise ImmutabilityViolationError
before any SQL reaches the database.

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError

Bulk ``update()``/``delete()`` statements bypass mapper events; the store
never issues them against these tables.
"""

from sqlalchemy import event

from pharmacy_kernel.exceptions import ImmutabilityViolationError
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject_update(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": str(target.id), "op": "update"},
    )
    raise ImmutabilityViolationError(
        entity_type,
        str(target.id),
        "ledger rows are append-only; record a correction instead",
    )


def _reject_delete(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": str(target.id), "op": "delete"},
    )
    raise ImmutabilityViolationError(
        entity_type,
        str(target.id),
        "ledger rows cannot be deleted",
    )


def _protected_models() -> tuple[type, ...]:
    from pharmacy_kernel.models.returns import (
        AppliedOperationModel,
        ReplacementLinkModel,
        ReturnRecordModel,
    )

    return (ReturnRecordModel, ReplacementLinkModel, AppliedOperationModel)


def register_immutability_listeners() -> None:
    """
    Register the append-only listeners (idempotent).

    Called by the SQL store on construction; safe to call again.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
