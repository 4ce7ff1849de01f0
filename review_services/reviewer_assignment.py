"""
review_services.reviewer_assignment -- Reviewer routing.

Responsibility:
    Select the reviewer for a new request from the requester's authority
    tier and context, following the routing table in ``RoutingConfig``,
    and validate manual reviewer overrides.

Architecture position:
    Services layer. Thin coordinator: rule choice comes from the config,
    candidate selection from ``review_engines.assignment``, user data
    from the directory collaborators.

Invariants enforced:
    - Self-review: no path returns an assignment whose user is the
      requester (engine postcondition, fallback-chain exclusion, and the
      direct-selection checks).
    - Every assignment carries the ``assignment_rule`` tag of the branch
      that produced it.
    - Narrowing to zero candidates widens the pool with a WARNING; it is
      never an error by itself.

Failure modes:
    - UserNotFoundError: requester (or override target) not in directory.
    - NoReviewerAvailableError: routing and every fallback step exhausted.
      Logged at ERROR with ``alert=True``.
    - InsufficientPermissionError / AuthorityInsufficientError /
      SelfActionForbiddenError / InvalidTransitionError on a rejected
      override.
"""

from __future__ import annotations

from dataclasses import dataclass

from review_config import RoutingConfig, get_routing_config
from review_config.schema import FallbackStepDef, RoutingRuleDef
from review_engines.assignment import Candidate, select_reviewer
from review_kernel.domain.authority import is_system_admin
from review_kernel.domain.clock import Clock, SystemClock
from review_kernel.domain.directory import (
    AuthorityResolver,
    PermissionDirectory,
    UserDirectory,
    UserProfile,
    split_permission,
)
from review_kernel.domain.request import ActorSnapshot, EventRequest, ReviewerAssignment
from review_kernel.exceptions import (
    AuthorityInsufficientError,
    InsufficientPermissionError,
    InvalidTransitionError,
    NoReviewerAvailableError,
    SelfActionForbiddenError,
    UserNotFoundError,
)
from review_kernel.logging_config import get_logger

logger = get_logger("services.reviewer_assignment")

MANUAL_RULE = "manual"
OVERRIDE_ACTION = "override-reviewer"


@dataclass(frozen=True)
class AssignmentContext:
    """Routing inputs beyond the requester's identity."""

    location_id: str | None = None
    organization_id: str | None = None
    coverage_area_id: str | None = None
    stakeholder_id: str | None = None
    coordinator_id: str | None = None

    def selection_keys(self) -> frozenset[str]:
        keys = set()
        if self.stakeholder_id:
            keys.add("stakeholder_id")
        if self.coordinator_id:
            keys.add("coordinator_id")
        return frozenset(keys)


class ReviewerAssignmentService:
    """Routes new requests to a reviewer."""

    def __init__(
        self,
        users: UserDirectory,
        permissions: PermissionDirectory,
        authority: AuthorityResolver,
        config: RoutingConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._users = users
        self._permissions = permissions
        self._authority = authority
        self._config = config or get_routing_config()
        self._clock = clock or SystemClock()
        self._review_resource, self._review_action = split_permission(
            self._config.review_permission
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _profile(self, user_id: str) -> UserProfile:
        profile = self._users.find_user(user_id)
        if profile is None:
            raise UserNotFoundError(user_id)
        return profile

    def snapshot(self, user_id: str) -> ActorSnapshot:
        """Capture the user as they are now. Raises UserNotFoundError."""
        profile = self._profile(user_id)
        return ActorSnapshot(
            user_id=user_id,
            name=profile.full_name,
            authority=self._authority.authority_of(user_id),
            role_code=profile.primary_role,
            email=profile.email,
        )

    def _assignment(self, user_id: str, rule_name: str) -> ReviewerAssignment:
        return ReviewerAssignment(
            actor=self.snapshot(user_id),
            assignment_rule=rule_name,
            assigned_at=self._clock.now(),
        )

    def _has_review_capability(self, user_id: str, location_id: str | None) -> bool:
        return self._permissions.has_permission(
            user_id, self._review_resource, self._review_action, location_id,
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def assign_reviewer(
        self,
        requester_id: str,
        context: AssignmentContext | None = None,
    ) -> ReviewerAssignment:
        """Select a reviewer for a request by ``requester_id``.

        Postconditions:
            The returned assignment's user differs from the requester.

        Raises:
            UserNotFoundError: Requester not in the directory.
            NoReviewerAvailableError: Every routing and fallback step failed.
        """
        ctx = context or AssignmentContext()
        requester = self._profile(requester_id)
        requester_authority = self._authority.authority_of(requester_id)
        keys = ctx.selection_keys()
        skipped: set[str] = set()

        while True:
            rule = self._config.rule_for(requester_authority, keys, frozenset(skipped))
            if rule is None:
                logger.warning(
                    "routing_rule_not_found",
                    extra={
                        "requester_id": requester_id,
                        "requester_authority": requester_authority,
                    },
                )
                return self._run_fallback_chain(requester_id, rule_name=None)

            if rule.selection_key is None:
                return self._route(requester_id, requester, requester_authority, rule, ctx)

            direct = self._try_direct_selection(requester_id, rule, ctx)
            if direct is not None:
                return direct
            skipped.add(rule.name)

    def _try_direct_selection(
        self,
        requester_id: str,
        rule: RoutingRuleDef,
        ctx: AssignmentContext,
    ) -> ReviewerAssignment | None:
        """Assign the user named in context, or None if the selection is unusable."""
        selected_id = getattr(ctx, rule.selection_key)
        reason = None
        profile = self._users.find_user(selected_id)
        selected_authority = self._authority.authority_of(selected_id)
        has_capability = self._has_review_capability(selected_id, ctx.location_id)

        if selected_id == requester_id:
            reason = "selected user is the requester"
        elif profile is None or not profile.is_active:
            reason = "selected user not found or inactive"
        elif not rule.covers_target(selected_authority):
            reason = (
                f"selected user authority {selected_authority} outside "
                f"[{rule.target_min}, {rule.target_max}]"
            )
        elif rule.requires_selected_coordinator and not has_capability:
            reason = "selected coordinator lacks review capability"

        if reason is not None:
            logger.warning(
                "direct_selection_ignored",
                extra={
                    "rule": rule.name,
                    "requester_id": requester_id,
                    "selected_id": selected_id,
                    "reason": reason,
                },
            )
            return None

        logger.info(
            "reviewer_directly_selected",
            extra={
                "rule": rule.name,
                "requester_id": requester_id,
                "reviewer_id": selected_id,
                "has_review_capability": has_capability,
            },
        )
        return self._assignment(selected_id, rule.name)

    def _candidate_ids(self, location_id: str | None) -> list[str]:
        permission = self._config.review_permission
        ids = self._permissions.users_with_permission(permission, location_id)
        if not ids and location_id is not None:
            logger.info(
                "reviewer_pool_unscoped",
                extra={"location_id": location_id, "permission": permission},
            )
            ids = self._permissions.users_with_permission(permission)
        return ids

    def _route(
        self,
        requester_id: str,
        requester: UserProfile,
        requester_authority: int,
        rule: RoutingRuleDef,
        ctx: AssignmentContext,
    ) -> ReviewerAssignment:
        candidates = []
        for order, user_id in enumerate(self._candidate_ids(ctx.location_id)):
            profile = self._users.find_user(user_id)
            if profile is None or not profile.is_active:
                continue
            candidates.append(Candidate(
                user_id=user_id,
                authority=self._authority.authority_of(user_id),
                organization_ids=profile.organization_ids,
                coverage_area_ids=profile.coverage_area_ids,
                order=order,
            ))

        org_ids = (
            frozenset({ctx.organization_id}) if ctx.organization_id
            else requester.organization_ids
        )
        coverage_ids = (
            frozenset({ctx.coverage_area_id}) if ctx.coverage_area_id
            else requester.coverage_area_ids
        )

        result = select_reviewer(
            requester_id=requester_id,
            requester_authority=requester_authority,
            target_min=rule.target_min,
            target_max=rule.target_max,
            candidates=candidates,
            require_org_match=rule.requires_org_match,
            require_coverage_match=rule.requires_coverage_match,
            requester_organization_ids=org_ids,
            requester_coverage_area_ids=coverage_ids,
        )

        for reason in result.widenings:
            logger.warning(
                "reviewer_pool_widened",
                extra={
                    "rule": rule.name,
                    "requester_id": requester_id,
                    "reason": reason,
                    "band_size": result.band_size,
                    "matched_size": result.matched_size,
                },
            )

        if result.candidate is None:
            return self._run_fallback_chain(requester_id, rule_name=rule.name)

        logger.info(
            "reviewer_assigned",
            extra={
                "rule": rule.name,
                "requester_id": requester_id,
                "reviewer_id": result.candidate.user_id,
                "reviewer_authority": result.candidate.authority,
            },
        )
        return self._assignment(result.candidate.user_id, rule.name)

    # ------------------------------------------------------------------
    # Fallback chain
    # ------------------------------------------------------------------

    def _fallback_ids(self, step: FallbackStepDef) -> list[str]:
        if step.kind == "global-permission":
            return self._permissions.users_with_permission(step.permission)
        if step.kind == "role":
            return self._permissions.users_with_role(step.role)
        return [
            p.user_id
            for p in self._users.active_users()
            if self._authority.authority_of(p.user_id) >= step.min_authority
        ]

    def _run_fallback_chain(
        self, requester_id: str, rule_name: str | None,
    ) -> ReviewerAssignment:
        tried: list[str] = []
        for step in self._config.fallback_chain:
            tried.append(step.label)
            for user_id in self._fallback_ids(step):
                if user_id == requester_id:
                    continue
                profile = self._users.find_user(user_id)
                if profile is None or not profile.is_active:
                    continue
                tag = f"fallback-{step.kind}"
                logger.warning(
                    "reviewer_fallback_used",
                    extra={
                        "requester_id": requester_id,
                        "routing_rule": rule_name,
                        "fallback_step": step.label,
                        "reviewer_id": user_id,
                    },
                )
                return self._assignment(user_id, tag)

        logger.error(
            "no_reviewer_available",
            extra={
                "alert": True,
                "requester_id": requester_id,
                "routing_rule": rule_name,
                "fallback_steps": tried,
            },
        )
        raise NoReviewerAvailableError(requester_id, tuple(tried))

    # ------------------------------------------------------------------
    # Manual override
    # ------------------------------------------------------------------

    def build_override(
        self,
        request: EventRequest,
        new_reviewer_id: str,
        overrider_id: str,
    ) -> ReviewerAssignment:
        """Validate a manual reviewer override and return the new assignment.

        Preconditions:
            The overrider holds review capability for the request location
            or is SystemAdmin. The new reviewer is not the requester and,
            unless the overrider is SystemAdmin, has authority at least the
            requester's snapshot authority.
        """
        if request.is_terminal:
            raise InvalidTransitionError(str(request.id), request.status.value, OVERRIDE_ACTION)

        overrider_authority = self._authority.authority_of(overrider_id)
        overrider_is_sysadmin = is_system_admin(overrider_authority)
        if not overrider_is_sysadmin and not self._has_review_capability(
            overrider_id, request.location_id,
        ):
            raise InsufficientPermissionError(
                overrider_id,
                OVERRIDE_ACTION,
                (self._config.review_permission,),
                request.location_id,
            )

        if new_reviewer_id == request.requester_id:
            raise SelfActionForbiddenError(str(request.id), new_reviewer_id, OVERRIDE_ACTION)

        snapshot = self.snapshot(new_reviewer_id)
        if not overrider_is_sysadmin and snapshot.authority < request.requester.authority:
            raise AuthorityInsufficientError(
                new_reviewer_id, snapshot.authority, request.requester.authority,
            )

        now = self._clock.now()
        logger.info(
            "reviewer_override_validated",
            extra={
                "request_id": str(request.id),
                "previous_reviewer_id": request.reviewer_id,
                "reviewer_id": new_reviewer_id,
                "overridden_by": overrider_id,
            },
        )
        return ReviewerAssignment(
            actor=snapshot,
            assignment_rule=MANUAL_RULE,
            assigned_at=now,
            overridden_at=now,
            overridden_by=overrider_id,
        )
