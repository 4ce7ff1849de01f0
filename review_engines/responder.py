"""
review_engines.responder -- Active-responder tracking.

Responsibility:
    Decide who must act next after an action has been applied, and keep
    ``last_action`` and the open reschedule proposal in step with it.
    Owns the bidirectional reschedule loop: every reschedule hands the
    turn to the other party until someone closes the loop with a
    decision.

Architecture position:
    Engines -- pure calculation layer, zero I/O. The caller resolves the
    actor's live authority and logs the returned outcome.

Invariants enforced:
    - Terminal state or decision-closing action (accept, reject, decline,
      confirm) -> ``active_responder`` is None and no proposal remains.
    - The active responder is always the requester or the reviewer, never
      a third party, even when a third party produced the transition.
    - A third-party reschedule by an actor at or above the Coordinator
      tier counts as the reviewer side and hands the turn to the
      requester.
    - ``last_action`` is always updated.

Failure modes:
    - ``ResponderOutcome.INCONSISTENT`` when the flip cannot be determined
      (missing reviewer, or a low-authority third party). The responder is
      left unchanged; the caller logs it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from review_kernel.domain.authority import AuthorityTier
from review_kernel.domain.request import (
    ActiveResponder,
    EventRequest,
    LastAction,
    RescheduleProposal,
    ResponderRelationship,
)
from review_kernel.domain.states import (
    DECISION_ACTIONS,
    TERMINAL_STATES,
    RequestAction,
    RequestState,
    coerce_action,
)


class ResponderOutcome(str, Enum):
    CLEARED = "cleared"
    TO_REVIEWER = "to_reviewer"
    TO_REQUESTER = "to_requester"
    THIRD_PARTY_TO_REQUESTER = "third_party_to_requester"
    UNCHANGED = "unchanged"
    INCONSISTENT = "inconsistent"


def requester_responder(request: EventRequest) -> ActiveResponder:
    return ActiveResponder(
        user_id=request.requester.user_id,
        relationship=ResponderRelationship.REQUESTER,
        authority=request.requester.authority,
    )


def reviewer_responder(request: EventRequest) -> ActiveResponder | None:
    if request.reviewer is None:
        return None
    return ActiveResponder(
        user_id=request.reviewer.user_id,
        relationship=ResponderRelationship.REVIEWER,
        authority=request.reviewer.authority,
    )


def initial_active_responder(request: EventRequest) -> ActiveResponder | None:
    """A freshly created request waits on its reviewer."""
    return reviewer_responder(request)


def _flip_on_reschedule(
    request: EventRequest, actor_id: str, actor_authority: int,
) -> tuple[ActiveResponder | None, ResponderOutcome]:
    relationship = request.relationship_of(actor_id)

    if relationship == ResponderRelationship.REQUESTER:
        target = reviewer_responder(request)
        if target is None:
            return request.active_responder, ResponderOutcome.INCONSISTENT
        return target, ResponderOutcome.TO_REVIEWER

    if relationship == ResponderRelationship.REVIEWER:
        return requester_responder(request), ResponderOutcome.TO_REQUESTER

    # Third party: authority at or above Coordinator acts for the reviewer side.
    if actor_authority >= AuthorityTier.COORDINATOR:
        return requester_responder(request), ResponderOutcome.THIRD_PARTY_TO_REQUESTER

    return request.active_responder, ResponderOutcome.INCONSISTENT


def update_active_responder(
    request: EventRequest,
    action: RequestAction | str,
    actor_id: str,
    *,
    actor_authority: int,
    resulting_state: RequestState,
    now: datetime,
    proposal: RescheduleProposal | None = None,
) -> ResponderOutcome:
    """Mutate ``active_responder``, ``last_action`` and ``reschedule_proposal``.

    Args:
        request: The request being transitioned; ``status`` may still hold
            the pre-transition state.
        action: The action just validated.
        actor_id: Who performed it.
        actor_authority: The actor's live authority (third-party rule).
        resulting_state: State after the transition.
        now: Timestamp for ``last_action``.
        proposal: The new reschedule proposal, for ``reschedule``.

    Returns:
        What happened to the responder, for logging.
    """
    act = coerce_action(action)
    request.last_action = LastAction(
        action=act.value if act is not None else str(action),
        actor_id=actor_id,
        timestamp=now,
    )

    if resulting_state in TERMINAL_STATES or act in DECISION_ACTIONS:
        request.active_responder = None
        request.reschedule_proposal = None
        return ResponderOutcome.CLEARED

    if act == RequestAction.RESCHEDULE:
        responder, outcome = _flip_on_reschedule(request, actor_id, actor_authority)
        request.active_responder = responder
        if proposal is not None:
            request.reschedule_proposal = proposal
        return outcome

    return ResponderOutcome.UNCHANGED
