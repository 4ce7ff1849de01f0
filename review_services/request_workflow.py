"""
review_services.request_workflow -- The request lifecycle boundary.

Responsibility:
    The operations callers use: create a request, execute an action on
    it, ask which actions a user may take, claim and release broadcast
    requests, override the reviewer, delete, read and list. Composes the
    assignment service, the validator, the responder tracker, the claim
    coordinator and the request store.

Architecture position:
    Services layer -- the only component that writes request documents.
    Every write is one ``find_and_update`` against the version read, so a
    concurrent writer never overwrites blindly.

Invariants enforced:
    - A document only changes through a transition the validator allowed
      against the freshly read version.
    - A losing optimistic writer re-reads and re-validates, up to
      ``max_update_retries`` attempts, then raises OptimisticLockError.
    - Committing any action drops a claim held by the actor.
    - Every status change appends a status-history entry.

Failure modes:
    - Every denial raises the typed error from ``ActionCheck``.
    - InvalidActionPayloadError: reschedule without ``proposed_date``.
    - RequestNotDeletableError: delete from a non-deletable state.
    - OptimisticLockError: retries exhausted.

Audit relevance:
    Each action emits one ``request_action`` trace with outcome
    (success / denied / conflict), from and to state, reason and duration.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any
from uuid import UUID

from review_config import RoutingConfig, get_routing_config
from review_engines.claims import ClaimCoordinator
from review_engines.responder import (
    ResponderOutcome,
    initial_active_responder,
    reviewer_responder,
    update_active_responder,
)
from review_kernel.domain.clock import Clock, SystemClock
from review_kernel.domain.directory import (
    AuthorityResolver,
    PermissionDirectory,
    UserDirectory,
)
from review_kernel.domain.request import (
    Claim,
    EventRequest,
    RescheduleProposal,
    ResponderRelationship,
    StatusHistoryEntry,
    ValidCoordinator,
)
from review_kernel.domain.states import (
    INITIAL_STATE,
    TERMINAL_STATES,
    RequestAction,
    coerce_action,
    is_deletable,
)
from review_kernel.exceptions import (
    InsufficientPermissionError,
    InvalidActionPayloadError,
    OptimisticLockError,
    RequestNotDeletableError,
    ReviewKernelError,
)
from review_kernel.logging_config import LogContext, get_logger
from review_kernel.services.request_store import Mutation, RequestStore
from review_services.action_validator import ActionValidator
from review_services.broadcast_access import BroadcastAccessService
from review_services.rbac_authority import check_capability, get_permissions_for_action
from review_services.reviewer_assignment import (
    OVERRIDE_ACTION,
    AssignmentContext,
    ReviewerAssignmentService,
)

logger = get_logger("services.request_workflow")

TRACE_TYPE_REQUEST_ACTION = "REQUEST_ACTION"

OUTCOME_SUCCESS = "success"
OUTCOME_DENIED = "denied"
OUTCOME_CONFLICT = "conflict"

CREATE_ACTION = "create"
CLAIM_ACTION = "claim"
RELEASE_ACTION = "release"

_CONTEXT_KEYS = (
    "location_id",
    "organization_id",
    "coverage_area_id",
    "stakeholder_id",
    "coordinator_id",
)


def _emit_request_trace(
    action: str,
    request_id: UUID | None,
    actor_id: str,
    from_state: str | None,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
) -> None:
    """Emit a structured request_action record."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_REQUEST_ACTION,
        "action": action,
        "request_id": str(request_id) if request_id is not None else None,
        "actor_id": actor_id,
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    record.update(LogContext.get_all())
    # LogRecord reserves "message"
    logger.info("request_action", extra={k: v for k, v in record.items() if k != "message"})


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class RequestWorkflowService:
    """Lifecycle operations over event requests."""

    def __init__(
        self,
        store: RequestStore,
        users: UserDirectory,
        permissions: PermissionDirectory,
        authority: AuthorityResolver,
        config: RoutingConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._users = users
        self._permissions = permissions
        self._authority = authority
        self._config = config or get_routing_config()
        self._clock = clock or SystemClock()
        self._assigner = ReviewerAssignmentService(
            users, permissions, authority, self._config, self._clock,
        )
        self._validator = ActionValidator(permissions, authority, self._clock)
        self._broadcast = BroadcastAccessService(
            users, permissions, authority, self._clock, self._config.review_permission,
        )
        self._claims = ClaimCoordinator(self._config.claim_timeout)

    @property
    def assigner(self) -> ReviewerAssignmentService:
        return self._assigner

    @property
    def validator(self) -> ActionValidator:
        return self._validator

    @property
    def broadcast(self) -> BroadcastAccessService:
        return self._broadcast

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _actor_name(self, user_id: str) -> str | None:
        profile = self._users.find_user(user_id)
        return profile.full_name if profile is not None else None

    def _update_with_retry(
        self,
        request_id: UUID,
        prepare: Callable[[EventRequest], Mutation],
    ) -> EventRequest:
        """Read, prepare a mutation against that read, write; retry on conflict.

        ``prepare`` runs against every fresh read, so validation always sees
        the document the write will be checked against.
        """
        attempts = self._config.max_update_retries
        for attempt in range(1, attempts + 1):
            current = self._store.get(request_id)
            mutation = prepare(current)
            try:
                return self._store.find_and_update(request_id, current.version, mutation)
            except OptimisticLockError:
                if attempt == attempts:
                    raise
                logger.info(
                    "request_update_retry",
                    extra={
                        "request_id": str(request_id),
                        "attempt": attempt,
                        "max_attempts": attempts,
                    },
                )
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_request(
        self,
        requester_id: str,
        payload: Mapping[str, Any] | None = None,
    ) -> EventRequest:
        """Assign a reviewer and persist a new request in ``pending-review``.

        Context keys (``location_id``, ``organization_id``,
        ``coverage_area_id``, ``stakeholder_id``, ``coordinator_id``) feed
        routing; every other payload key is kept in ``details``.
        """
        start = time.monotonic()
        data = dict(payload or {})
        context = AssignmentContext(**{k: data.pop(k, None) for k in _CONTEXT_KEYS})

        with LogContext.bind(actor_id=requester_id, action=CREATE_ACTION):
            try:
                requester = self._assigner.snapshot(requester_id)
                reviewer = self._assigner.assign_reviewer(requester_id, context)
            except ReviewKernelError as exc:
                _emit_request_trace(
                    CREATE_ACTION, None, requester_id, None,
                    OUTCOME_DENIED, exc.code, _elapsed_ms(start),
                )
                raise

            now = self._clock.now()
            request = EventRequest(
                requester=requester,
                status=INITIAL_STATE,
                reviewer=reviewer,
                location_id=context.location_id,
                organization_id=context.organization_id,
                coverage_area_id=context.coverage_area_id,
                details=data,
                created_at=now,
                updated_at=now,
            )
            request.valid_coordinators = self._broadcast.find_valid_coordinators(
                requester_id=requester_id,
                reviewer=reviewer,
                location_id=context.location_id,
                organization_id=context.organization_id,
                coverage_area_id=context.coverage_area_id,
                now=now,
            )
            request.active_responder = initial_active_responder(request)
            request.append_history(StatusHistoryEntry(
                status=INITIAL_STATE,
                changed_at=now,
                actor_id=requester_id,
                actor_name=requester.name,
                action=CREATE_ACTION,
            ))

            stored = self._store.add(request)
            _emit_request_trace(
                CREATE_ACTION, stored.id, requester_id, None,
                OUTCOME_SUCCESS, reviewer.assignment_rule, _elapsed_ms(start),
                to_state=stored.status.value,
            )
            return stored

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _build_proposal(
        self, actor_id: str, data: Mapping[str, Any],
    ) -> RescheduleProposal:
        proposed_date = data.get("proposed_date")
        if not proposed_date:
            raise InvalidActionPayloadError(
                RequestAction.RESCHEDULE.value, "proposed_date", "required",
            )
        if isinstance(proposed_date, date):
            proposed_date = proposed_date.isoformat()
        return RescheduleProposal(
            proposed_by=self._assigner.snapshot(actor_id),
            proposed_date=str(proposed_date),
            proposed_at=self._clock.now(),
            proposed_start_time=data.get("proposed_start_time"),
            proposed_end_time=data.get("proposed_end_time"),
            notes=data.get("notes"),
        )

    def execute_action(
        self,
        request_id: UUID,
        actor_id: str,
        action: RequestAction | str,
        data: Mapping[str, Any] | None = None,
    ) -> EventRequest:
        """Validate and apply ``action``; return the stored document.

        Raises the typed error of the first failed check. Conflicting
        writers are retried against the fresh document.
        """
        start = time.monotonic()
        payload = dict(data or {})
        act = coerce_action(action)
        action_name = act.value if act is not None else str(action)
        outcome_holder: list[ResponderOutcome] = []
        from_state: str | None = None

        with LogContext.bind(request_id=request_id, actor_id=actor_id, action=action_name):

            def prepare(current: EventRequest) -> Mutation:
                nonlocal from_state
                from_state = current.status.value
                check = self._validator.can_perform_action(current, actor_id, action)
                if not check.allowed:
                    _emit_request_trace(
                        action_name, request_id, actor_id, from_state,
                        OUTCOME_DENIED, check.reason.value, _elapsed_ms(start),
                    )
                    check.raise_if_denied()

                proposal = None
                if act == RequestAction.RESCHEDULE:
                    try:
                        proposal = self._build_proposal(actor_id, payload)
                    except InvalidActionPayloadError as exc:
                        _emit_request_trace(
                            action_name, request_id, actor_id, from_state,
                            OUTCOME_DENIED, exc.code, _elapsed_ms(start),
                        )
                        raise

                target = check.next_state
                actor_authority = check.actor_authority or 0
                actor_name = self._actor_name(actor_id)

                def mutation(doc: EventRequest) -> None:
                    now = self._clock.now()
                    doc.status = target
                    outcome_holder[:] = [update_active_responder(
                        doc,
                        act,
                        actor_id,
                        actor_authority=actor_authority,
                        resulting_state=target,
                        now=now,
                        proposal=proposal,
                    )]
                    self._claims.release_if_held(doc, actor_id)
                    if target in TERMINAL_STATES:
                        doc.claimed_by = None
                    if act == RequestAction.EDIT and payload.get("details"):
                        doc.details.update(payload["details"])
                    if act == RequestAction.MANAGE_STAFF and "staff" in payload:
                        doc.details["staff"] = list(payload["staff"])
                    doc.updated_at = now
                    doc.append_history(StatusHistoryEntry(
                        status=target,
                        changed_at=now,
                        actor_id=actor_id,
                        actor_name=actor_name,
                        action=action_name,
                        note=payload.get("note"),
                    ))

                return mutation

            try:
                updated = self._update_with_retry(request_id, prepare)
            except OptimisticLockError as exc:
                _emit_request_trace(
                    action_name, request_id, actor_id, from_state,
                    OUTCOME_CONFLICT, exc.code, _elapsed_ms(start),
                )
                raise

            if outcome_holder and outcome_holder[0] == ResponderOutcome.INCONSISTENT:
                logger.warning(
                    "active_responder_inconsistent",
                    extra={
                        "request_id": str(request_id),
                        "actor_id": actor_id,
                        "requester_id": updated.requester_id,
                        "reviewer_id": updated.reviewer_id,
                    },
                )

            _emit_request_trace(
                action_name, request_id, actor_id, from_state,
                OUTCOME_SUCCESS,
                outcome_holder[0].value if outcome_holder else "",
                _elapsed_ms(start),
                to_state=updated.status.value,
            )
            return updated

    def get_available_actions(
        self, user_id: str, request_id: UUID,
    ) -> tuple[RequestAction, ...]:
        """``view`` plus every action the validator would permit right now."""
        request = self._store.get(request_id)
        return self._validator.available_actions(request, user_id)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim_request(self, request_id: UUID, user_id: str) -> Claim:
        """Take the claim on a broadcast request for ``user_id``."""
        start = time.monotonic()
        name = self._actor_name(user_id) or user_id

        with LogContext.bind(request_id=request_id, actor_id=user_id, action=CLAIM_ACTION):

            def prepare(current: EventRequest) -> Mutation:
                # Fail before writing; the mutation repeats the check on the copy.
                self._claims.claim(current.clone(), user_id, name, self._clock.now())

                def mutation(doc: EventRequest) -> None:
                    self._claims.claim(doc, user_id, name, self._clock.now())

                return mutation

            try:
                updated = self._update_with_retry(request_id, prepare)
            except ReviewKernelError as exc:
                outcome = (
                    OUTCOME_CONFLICT if isinstance(exc, OptimisticLockError) else OUTCOME_DENIED
                )
                _emit_request_trace(
                    CLAIM_ACTION, request_id, user_id, None,
                    outcome, exc.code, _elapsed_ms(start),
                )
                raise

            _emit_request_trace(
                CLAIM_ACTION, request_id, user_id, updated.status.value,
                OUTCOME_SUCCESS, "", _elapsed_ms(start),
                to_state=updated.status.value,
            )
            return updated.claimed_by

    def release_request(self, request_id: UUID, user_id: str) -> EventRequest:
        """Drop ``user_id``'s claim. Raises StaleClaimError for a non-holder."""
        start = time.monotonic()

        with LogContext.bind(request_id=request_id, actor_id=user_id, action=RELEASE_ACTION):

            def prepare(current: EventRequest) -> Mutation:
                self._claims.release(current.clone(), user_id)

                def mutation(doc: EventRequest) -> None:
                    self._claims.release(doc, user_id)

                return mutation

            try:
                updated = self._update_with_retry(request_id, prepare)
            except ReviewKernelError as exc:
                outcome = (
                    OUTCOME_CONFLICT if isinstance(exc, OptimisticLockError) else OUTCOME_DENIED
                )
                _emit_request_trace(
                    RELEASE_ACTION, request_id, user_id, None,
                    outcome, exc.code, _elapsed_ms(start),
                )
                raise

            _emit_request_trace(
                RELEASE_ACTION, request_id, user_id, updated.status.value,
                OUTCOME_SUCCESS, "", _elapsed_ms(start),
                to_state=updated.status.value,
            )
            return updated

    # ------------------------------------------------------------------
    # Reviewer override
    # ------------------------------------------------------------------

    def override_reviewer(
        self,
        request_id: UUID,
        new_reviewer_id: str,
        overrider_id: str,
        note: str | None = None,
    ) -> EventRequest:
        """Replace the reviewer of a live request."""
        start = time.monotonic()
        from_state: str | None = None

        with LogContext.bind(
            request_id=request_id, actor_id=overrider_id, action=OVERRIDE_ACTION,
        ):

            def prepare(current: EventRequest) -> Mutation:
                nonlocal from_state
                from_state = current.status.value
                assignment = self._assigner.build_override(
                    current, new_reviewer_id, overrider_id,
                )
                previous_id = current.reviewer_id
                actor_name = self._actor_name(overrider_id)

                def mutation(doc: EventRequest) -> None:
                    now = self._clock.now()
                    doc.reviewer = assignment
                    doc.valid_coordinators = [
                        ValidCoordinator(
                            user_id=assignment.user_id,
                            name=assignment.name,
                            authority=assignment.authority,
                            discovered_at=now,
                        ),
                        *(vc for vc in doc.valid_coordinators if vc.user_id != assignment.user_id),
                    ]
                    doc.claimed_by = None
                    if (
                        doc.active_responder is not None
                        and doc.active_responder.relationship == ResponderRelationship.REVIEWER
                    ):
                        doc.active_responder = reviewer_responder(doc)
                    doc.updated_at = now
                    doc.append_history(StatusHistoryEntry(
                        status=doc.status,
                        changed_at=now,
                        actor_id=overrider_id,
                        actor_name=actor_name,
                        action=OVERRIDE_ACTION,
                        note=note or f"reviewer {previous_id} replaced by {assignment.user_id}",
                    ))

                return mutation

            try:
                updated = self._update_with_retry(request_id, prepare)
            except ReviewKernelError as exc:
                outcome = (
                    OUTCOME_CONFLICT if isinstance(exc, OptimisticLockError) else OUTCOME_DENIED
                )
                _emit_request_trace(
                    OVERRIDE_ACTION, request_id, overrider_id, from_state,
                    outcome, exc.code, _elapsed_ms(start),
                )
                raise

            _emit_request_trace(
                OVERRIDE_ACTION, request_id, overrider_id, from_state,
                OUTCOME_SUCCESS, "manual", _elapsed_ms(start),
                to_state=updated.status.value,
            )
            return updated

    # ------------------------------------------------------------------
    # Delete / read
    # ------------------------------------------------------------------

    def delete_request(self, request_id: UUID, actor_id: str) -> None:
        """Remove the document; its status history is kept."""
        start = time.monotonic()
        action_name = RequestAction.DELETE.value

        with LogContext.bind(request_id=request_id, actor_id=actor_id, action=action_name):
            current = self._store.get(request_id)
            from_state = current.status.value
            try:
                if not is_deletable(current.status):
                    raise RequestNotDeletableError(str(request_id), from_state)
                allowed, _ = check_capability(
                    self._permissions, actor_id, action_name, current.location_id,
                )
                if not allowed:
                    raise InsufficientPermissionError(
                        actor_id,
                        action_name,
                        get_permissions_for_action(action_name),
                        current.location_id,
                    )
            except ReviewKernelError as exc:
                _emit_request_trace(
                    action_name, request_id, actor_id, from_state,
                    OUTCOME_DENIED, exc.code, _elapsed_ms(start),
                )
                raise

            self._store.delete(request_id)
            _emit_request_trace(
                action_name, request_id, actor_id, from_state,
                OUTCOME_SUCCESS, "", _elapsed_ms(start),
            )

    def get_request(self, request_id: UUID, user_id: str | None = None) -> EventRequest:
        """Read a request; with ``user_id``, enforce read visibility."""
        request = self._store.get(request_id)
        if user_id is not None and not self._broadcast.can_access_request(request, user_id):
            raise InsufficientPermissionError(
                user_id,
                RequestAction.VIEW.value,
                get_permissions_for_action(RequestAction.VIEW.value),
                request.location_id,
            )
        return request

    def visible_requests(self, user_id: str) -> list[EventRequest]:
        return self._broadcast.visible_requests(self._store.list_requests(), user_id)

    def status_history(self, request_id: UUID) -> list[StatusHistoryEntry]:
        return self._store.history_for(request_id)
