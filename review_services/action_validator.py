"""
review_services.action_validator -- May this actor do this now?

Responsibility:
    Decide whether an actor may execute an action on a request, and if
    not, say exactly why. Composes the state machine, the permission
    directory, the authority resolver and the active-responder gate.

Architecture position:
    Services layer. Reads the request and live directory data; never
    mutates anything.

Invariants enforced:
    Checks run in this order and stop at the first failure:
      1. Transition legality (state machine is the single source of truth)
      2. Self-action prevention
      3. Active-responder gate (SystemAdmin overrides; the live claim
         holder may act for the reviewer side)
      4. Capability (any mapped permission, scoped to the location)
      5. Authority hierarchy (live authority >= requester snapshot,
         SystemAdmin overrides)
    Authority used for decisions is always resolved live, never read from
    a stored snapshot.

Failure modes:
    - ``can_perform_action`` never raises for a denial; it returns an
      ``ActionCheck`` carrying a ``DenialReason``.
    - ``ActionCheck.raise_if_denied`` maps each reason to its typed
      exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from review_kernel.domain.authority import is_system_admin
from review_kernel.domain.clock import Clock, SystemClock
from review_kernel.domain.directory import AuthorityResolver, PermissionDirectory
from review_kernel.domain.request import EventRequest, ResponderRelationship
from review_kernel.domain.states import (
    RequestAction,
    RequestState,
    available_actions,
    coerce_action,
    next_state,
)
from review_kernel.exceptions import (
    AuthorityInsufficientError,
    InsufficientPermissionError,
    InvalidTransitionError,
    NotActiveResponderError,
    SelfActionForbiddenError,
)
from review_services.rbac_authority import check_capability, get_permissions_for_action

# Actions the requester may never take on their own request.
_REVIEWER_ONLY_ACTIONS = frozenset({RequestAction.ACCEPT, RequestAction.REJECT})


class DenialReason(str, Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    SELF_ACTION_FORBIDDEN = "SELF_ACTION_FORBIDDEN"
    NOT_ACTIVE_RESPONDER = "NOT_ACTIVE_RESPONDER"
    INSUFFICIENT_PERMISSION = "INSUFFICIENT_PERMISSION"
    AUTHORITY_INSUFFICIENT = "AUTHORITY_INSUFFICIENT"


@dataclass(frozen=True)
class ActionCheck:
    """Outcome of an authorization check. Never a bare boolean."""

    allowed: bool
    action: str
    actor_id: str
    request_id: str | None = None
    from_state: str | None = None
    next_state: RequestState | None = None
    reason: DenialReason | None = None
    detail: str = ""
    actor_authority: int | None = None
    required_authority: int | None = None
    active_responder_id: str | None = None
    location_id: str | None = None

    def raise_if_denied(self) -> None:
        if self.allowed:
            return
        if self.reason == DenialReason.INVALID_TRANSITION:
            raise InvalidTransitionError(self.request_id, self.from_state or "", self.action)
        if self.reason == DenialReason.SELF_ACTION_FORBIDDEN:
            raise SelfActionForbiddenError(self.request_id, self.actor_id, self.action)
        if self.reason == DenialReason.NOT_ACTIVE_RESPONDER:
            raise NotActiveResponderError(
                self.request_id, self.actor_id, self.action, self.active_responder_id,
            )
        if self.reason == DenialReason.INSUFFICIENT_PERMISSION:
            raise InsufficientPermissionError(
                self.actor_id,
                self.action,
                get_permissions_for_action(self.action),
                self.location_id,
            )
        raise AuthorityInsufficientError(
            self.actor_id, self.actor_authority or 0, self.required_authority or 0,
        )


class ActionValidator:
    """Composes the five authorization checks."""

    def __init__(
        self,
        permissions: PermissionDirectory,
        authority: AuthorityResolver,
        clock: Clock | None = None,
    ) -> None:
        self._permissions = permissions
        self._authority = authority
        self._clock = clock or SystemClock()

    def can_perform_action(
        self,
        request: EventRequest,
        actor_id: str,
        action: RequestAction | str,
    ) -> ActionCheck:
        act = coerce_action(action)
        action_name = act.value if act is not None else str(action)
        base = {
            "action": action_name,
            "actor_id": actor_id,
            "request_id": str(request.id),
            "from_state": request.status.value,
            "location_id": request.location_id,
        }

        # 1. Transition legality
        target = next_state(request.status, action)
        if target is None:
            return ActionCheck(
                allowed=False,
                reason=DenialReason.INVALID_TRANSITION,
                detail=f"'{action_name}' is not allowed from '{request.status.value}'",
                **base,
            )

        # 2. Self-action prevention
        is_requester = actor_id == request.requester_id
        if (is_requester and actor_id == request.reviewer_id) or (
            is_requester and act in _REVIEWER_ONLY_ACTIONS
        ):
            return ActionCheck(
                allowed=False,
                reason=DenialReason.SELF_ACTION_FORBIDDEN,
                detail="requester cannot review their own request",
                **base,
            )

        live_authority = self._authority.authority_of(actor_id)

        # 3. Active-responder gate
        denial = self._check_active_responder(request, actor_id, live_authority)
        if denial is not None:
            return ActionCheck(
                allowed=False,
                reason=DenialReason.NOT_ACTIVE_RESPONDER,
                detail=denial,
                actor_authority=live_authority,
                active_responder_id=(
                    request.active_responder.user_id if request.active_responder else None
                ),
                **base,
            )

        # 4. Capability
        allowed, rbac_reason = check_capability(
            self._permissions, actor_id, action_name, request.location_id,
        )
        if not allowed:
            return ActionCheck(
                allowed=False,
                reason=DenialReason.INSUFFICIENT_PERMISSION,
                detail=rbac_reason,
                actor_authority=live_authority,
                **base,
            )

        # 5. Authority hierarchy
        required = request.requester.authority
        if not is_requester and not is_system_admin(live_authority) and live_authority < required:
            return ActionCheck(
                allowed=False,
                reason=DenialReason.AUTHORITY_INSUFFICIENT,
                detail=f"authority {live_authority} below requester's {required}",
                actor_authority=live_authority,
                required_authority=required,
                **base,
            )

        return ActionCheck(
            allowed=True,
            next_state=target,
            actor_authority=live_authority,
            **base,
        )

    def _check_active_responder(
        self, request: EventRequest, actor_id: str, live_authority: int,
    ) -> str | None:
        """Reason the actor is blocked by the gate, or None if they may act."""
        if is_system_admin(live_authority):
            return None

        now = self._clock.now()
        claim = request.live_claim(now)
        if claim is not None and claim.user_id != actor_id and actor_id != request.requester_id:
            return f"request is claimed by {claim.user_id}"

        responder = request.active_responder
        if responder is None or responder.user_id == actor_id:
            return None

        if (
            responder.relationship == ResponderRelationship.REVIEWER
            and claim is not None
            and claim.user_id == actor_id
        ):
            return None

        return f"waiting on {responder.relationship.value} {responder.user_id}"

    def validate(
        self,
        request: EventRequest,
        actor_id: str,
        action: RequestAction | str,
    ) -> RequestState:
        """Raise the typed error for a denial; return the next state otherwise."""
        check = self.can_perform_action(request, actor_id, action)
        check.raise_if_denied()
        return check.next_state

    def available_actions(
        self, request: EventRequest, actor_id: str,
    ) -> tuple[RequestAction, ...]:
        """``view`` plus every table action this actor may take right now."""
        permitted = [
            action
            for action in available_actions(request.status)
            if action != RequestAction.VIEW
            and self.can_perform_action(request, actor_id, action).allowed
        ]
        return (RequestAction.VIEW, *permitted)
