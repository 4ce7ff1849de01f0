"""
review_services.broadcast_access -- Who may see a request.

Responsibility:
    Discover the valid coordinators of a request (everyone qualified to
    act on it under broadcast visibility) and answer read-visibility
    questions.

Architecture position:
    Services layer. Reads the directory; returns values, never persists.

Invariants enforced:
    - The assigned reviewer is always the first valid coordinator.
    - The requester is never a valid coordinator.
    - OperationalAdmin-or-above sees every request; everyone else sees
      requests they are a party to, hold the claim on, or coordinate.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from review_kernel.domain.authority import AuthorityTier, is_admin_or_above
from review_kernel.domain.clock import Clock, SystemClock
from review_kernel.domain.directory import (
    AuthorityResolver,
    PermissionDirectory,
    UserDirectory,
)
from review_kernel.domain.request import EventRequest, ReviewerAssignment, ValidCoordinator
from review_kernel.logging_config import get_logger

logger = get_logger("services.broadcast_access")

DEFAULT_REVIEW_PERMISSION = "request.review"


class BroadcastAccessService:
    """Valid-coordinator discovery and read visibility."""

    def __init__(
        self,
        users: UserDirectory,
        permissions: PermissionDirectory,
        authority: AuthorityResolver,
        clock: Clock | None = None,
        review_permission: str = DEFAULT_REVIEW_PERMISSION,
    ) -> None:
        self._users = users
        self._permissions = permissions
        self._authority = authority
        self._clock = clock or SystemClock()
        self._review_permission = review_permission

    def _scope(
        self,
        requester_id: str,
        organization_id: str | None,
        coverage_area_id: str | None,
        location_id: str | None,
    ) -> tuple[frozenset[str], frozenset[str]]:
        """Organizations and coverage a coordinator must match.

        Explicit request context wins; otherwise the requester's own
        directory profile supplies both sets, as reviewer routing does.
        """
        requester = self._users.find_user(requester_id)
        org_ids = (
            frozenset({organization_id}) if organization_id
            else requester.organization_ids if requester is not None
            else frozenset()
        )
        explicit = frozenset(v for v in (coverage_area_id, location_id) if v)
        coverage_ids = (
            explicit if explicit
            else requester.coverage_area_ids if requester is not None
            else frozenset()
        )
        return org_ids, coverage_ids

    def find_valid_coordinators(
        self,
        *,
        requester_id: str,
        reviewer: ReviewerAssignment | None,
        location_id: str | None = None,
        organization_id: str | None = None,
        coverage_area_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ValidCoordinator]:
        """Every coordinator-tier user qualified to act on the request.

        Candidates hold review capability for the location, have authority
        in [Coordinator, OperationalAdmin), cover the request's coverage area
        or location, and belong to the request organization. Without
        context the requester's organizations and coverage areas apply; an
        empty scope admits nobody beyond the reviewer. The reviewer leads
        the list.
        """
        discovered_at = now or self._clock.now()
        org_ids, coverage_ids = self._scope(
            requester_id, organization_id, coverage_area_id, location_id,
        )
        result: list[ValidCoordinator] = []
        seen: set[str] = {requester_id}

        if reviewer is not None and reviewer.user_id != requester_id:
            result.append(ValidCoordinator(
                user_id=reviewer.user_id,
                name=reviewer.name,
                authority=reviewer.authority,
                discovered_at=discovered_at,
            ))
            seen.add(reviewer.user_id)

        for user_id in self._permissions.users_with_permission(
            self._review_permission, location_id,
        ):
            if user_id in seen:
                continue
            profile = self._users.find_user(user_id)
            if profile is None or not profile.is_active:
                continue
            authority = self._authority.authority_of(user_id)
            if not AuthorityTier.COORDINATOR <= authority < AuthorityTier.OPERATIONAL_ADMIN:
                continue
            if not profile.coverage_area_ids & coverage_ids:
                continue
            if not profile.organization_ids & org_ids:
                continue
            result.append(ValidCoordinator(
                user_id=user_id,
                name=profile.full_name,
                authority=authority,
                discovered_at=discovered_at,
            ))
            seen.add(user_id)

        logger.debug(
            "valid_coordinators_discovered",
            extra={
                "requester_id": requester_id,
                "location_id": location_id,
                "coordinator_count": len(result),
            },
        )
        return result

    def can_access_request(self, request: EventRequest, user_id: str) -> bool:
        if is_admin_or_above(self._authority.authority_of(user_id)):
            return True
        if user_id in (request.requester_id, request.reviewer_id):
            return True
        claim = request.live_claim(self._clock.now())
        if claim is not None and claim.user_id == user_id:
            return True
        return request.is_valid_coordinator(user_id)

    def visible_requests(
        self, requests: Iterable[EventRequest], user_id: str,
    ) -> list[EventRequest]:
        return [r for r in requests if self.can_access_request(r, user_id)]
