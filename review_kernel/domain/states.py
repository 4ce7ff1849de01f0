"""
Request lifecycle state machine (``review_kernel.domain.states``).

Responsibility
--------------
The single source of truth for which action is legal from which state.
Defines the canonical states and actions, the closed set of legacy status
spellings and their canonical targets, the transition table, and the
queries built on it (``next_state``, ``available_actions``,
``is_terminal``, ``can_edit``, ``can_cancel``).

Architecture position
---------------------
**Kernel domain layer** -- pure values, zero I/O.

Invariants enforced
-------------------
* Legality: ``next_state`` returns ``None`` for any pair absent from
  ``REQUEST_TRANSITIONS``; validators consult it before any other check.
* Terminal closure: ``rejected``, ``cancelled`` and ``completed`` have no
  outgoing edges; only ``view`` is available there.
* Normalization boundary: legacy strings are mapped once by
  ``normalize_state``; transition logic only ever sees ``RequestState``.

Failure modes
-------------
* ``UnknownStatusError`` from ``normalize_state`` for a string that is
  neither canonical nor a known alias.
"""

from __future__ import annotations

from enum import Enum

from review_kernel.exceptions import UnknownStatusError


class RequestState(str, Enum):
    """Canonical request lifecycle states."""

    PENDING_REVIEW = "pending-review"
    REVIEW_RESCHEDULED = "review-rescheduled"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RequestAction(str, Enum):
    """Canonical action vocabulary."""

    ACCEPT = "accept"
    REJECT = "reject"
    DECLINE = "decline"
    RESCHEDULE = "reschedule"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    EDIT = "edit"
    MANAGE_STAFF = "manage-staff"
    VIEW = "view"
    DELETE = "delete"


INITIAL_STATE = RequestState.PENDING_REVIEW

TERMINAL_STATES: frozenset[RequestState] = frozenset({
    RequestState.REJECTED,
    RequestState.CANCELLED,
    RequestState.COMPLETED,
})

# Actions that close the decision loop; reschedule is the only looping one.
DECISION_ACTIONS: frozenset[RequestAction] = frozenset({
    RequestAction.ACCEPT,
    RequestAction.REJECT,
    RequestAction.DECLINE,
    RequestAction.CONFIRM,
})

REQUEST_TRANSITIONS: dict[RequestState, dict[RequestAction, RequestState]] = {
    RequestState.PENDING_REVIEW: {
        RequestAction.ACCEPT: RequestState.APPROVED,
        RequestAction.REJECT: RequestState.REJECTED,
        RequestAction.DECLINE: RequestState.REJECTED,
        RequestAction.RESCHEDULE: RequestState.REVIEW_RESCHEDULED,
    },
    RequestState.REVIEW_RESCHEDULED: {
        RequestAction.CONFIRM: RequestState.APPROVED,
        RequestAction.ACCEPT: RequestState.APPROVED,
        RequestAction.REJECT: RequestState.REJECTED,
        RequestAction.DECLINE: RequestState.REJECTED,
        RequestAction.RESCHEDULE: RequestState.REVIEW_RESCHEDULED,
    },
    RequestState.APPROVED: {
        RequestAction.CANCEL: RequestState.CANCELLED,
        RequestAction.RESCHEDULE: RequestState.REVIEW_RESCHEDULED,
        RequestAction.EDIT: RequestState.APPROVED,
        RequestAction.MANAGE_STAFF: RequestState.APPROVED,
    },
    RequestState.REJECTED: {},
    RequestState.CANCELLED: {},
    RequestState.COMPLETED: {},
}

# Historical spellings, all lowercase. Canonical values map to themselves
# through the enum lookup in ``coerce_state``.
LEGACY_STATE_ALIASES: dict[str, RequestState] = {
    "pending": RequestState.PENDING_REVIEW,
    "pending_review": RequestState.PENDING_REVIEW,
    "pending_admin_review": RequestState.PENDING_REVIEW,
    "pending_coordinator_review": RequestState.PENDING_REVIEW,
    "pending_stakeholder_review": RequestState.PENDING_REVIEW,
    "accepted_by_admin": RequestState.APPROVED,
    "review-accepted": RequestState.APPROVED,
    "review_accepted": RequestState.APPROVED,
    "rejected_by_admin": RequestState.REJECTED,
    "review-rejected": RequestState.REJECTED,
    "review_rejected": RequestState.REJECTED,
    "rescheduled_by_admin": RequestState.REVIEW_RESCHEDULED,
    "rescheduled_by_coordinator": RequestState.REVIEW_RESCHEDULED,
    "review_rescheduled": RequestState.REVIEW_RESCHEDULED,
    "awaiting_confirmation": RequestState.REVIEW_RESCHEDULED,
}

STATUS_LABELS: dict[RequestState, str] = {
    RequestState.PENDING_REVIEW: "Waiting for Review",
    RequestState.REVIEW_RESCHEDULED: "Reschedule Proposed",
    RequestState.APPROVED: "Approved",
    RequestState.REJECTED: "Rejected",
    RequestState.CANCELLED: "Cancelled",
    RequestState.COMPLETED: "Completed",
}

_VIEW_ONLY: tuple[RequestAction, ...] = (RequestAction.VIEW,)


def coerce_state(status: RequestState | str | None) -> RequestState | None:
    """Map a stored status to its canonical state, or None if unknown.

    Empty or missing status is treated as the initial state.
    """
    if isinstance(status, RequestState):
        return status
    if status is None:
        return INITIAL_STATE
    key = str(status).strip().lower()
    if not key:
        return INITIAL_STATE
    try:
        return RequestState(key)
    except ValueError:
        return LEGACY_STATE_ALIASES.get(key)


def normalize_state(status: RequestState | str | None) -> RequestState:
    """Canonical state for ``status``.

    Raises:
        UnknownStatusError: ``status`` is not canonical or a known alias.
    """
    state = coerce_state(status)
    if state is None:
        raise UnknownStatusError(str(status))
    return state


def coerce_action(action: RequestAction | str) -> RequestAction | None:
    if isinstance(action, RequestAction):
        return action
    try:
        return RequestAction(str(action).strip().lower())
    except ValueError:
        return None


def next_state(
    state: RequestState | str | None,
    action: RequestAction | str,
) -> RequestState | None:
    """Resulting state of ``action`` from ``state``, or None if illegal."""
    current = coerce_state(state)
    act = coerce_action(action)
    if current is None or act is None:
        return None
    return REQUEST_TRANSITIONS[current].get(act)


def is_terminal(state: RequestState | str | None) -> bool:
    return coerce_state(state) in TERMINAL_STATES


def available_actions(state: RequestState | str | None) -> tuple[RequestAction, ...]:
    """Actions with an edge out of ``state``; ``(view,)`` for unknown or terminal."""
    current = coerce_state(state)
    if current is None or current in TERMINAL_STATES:
        return _VIEW_ONLY
    return tuple(REQUEST_TRANSITIONS[current])


def can_edit(state: RequestState | str | None) -> bool:
    """Request details are editable only while waiting for review."""
    return coerce_state(state) == RequestState.PENDING_REVIEW


def can_cancel(state: RequestState | str | None) -> bool:
    return next_state(state, RequestAction.CANCEL) is not None


def is_deletable(state: RequestState | str | None) -> bool:
    current = coerce_state(state)
    return current == RequestState.PENDING_REVIEW or current in TERMINAL_STATES


def status_label(state: RequestState | str | None) -> str:
    current = coerce_state(state)
    if current is None:
        return str(state)
    return STATUS_LABELS[current]
