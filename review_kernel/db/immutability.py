"""
ORM-level append-only enforcement for request status history.

Status history is the audit trail of a request: who moved it to which
state, when, and why. Rows are inserted by the request store and are never
changed afterwards, and they outlive deletion of the request document
itself.

    session.flush()
         |
         v
    [before_update] --> _check_history_update() --> ImmutabilityViolationError
    [before_delete] --> _check_history_delete() --> ImmutabilityViolationError

Usage:

    from review_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup (create_tables does it)

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from review_kernel.exceptions import ImmutabilityViolationError
from review_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StatusHistoryEntry",
            "entity_id": str(target.id),
            "request_id": str(target.request_id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StatusHistoryEntry",
        entity_id=str(target.id),
        reason=reason,
    )


def _check_history_update(mapper, connection, target):
    _block(target, "UPDATE", "Status history entries are append-only")


def _check_history_delete(mapper, connection, target):
    _block(target, "DELETE", "Status history entries cannot be deleted")


def register_immutability_listeners() -> None:
    """Register the append-only listeners (idempotent)."""
    from review_kernel.models.event_request import StatusHistoryModel

    if not event.contains(StatusHistoryModel, "before_update", _check_history_update):
        event.listen(StatusHistoryModel, "before_update", _check_history_update)
    if not event.contains(StatusHistoryModel, "before_delete", _check_history_delete):
        event.listen(StatusHistoryModel, "before_delete", _check_history_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the append-only listeners.

    WARNING: Only for tests that intentionally violate the rule.
    """
    from review_kernel.models.event_request import StatusHistoryModel

    _safe_remove_listener(StatusHistoryModel, "before_update", _check_history_update)
    _safe_remove_listener(StatusHistoryModel, "before_delete", _check_history_delete)
