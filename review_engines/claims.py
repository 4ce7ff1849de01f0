"""
review_engines.claims -- Optimistic claim / release for broadcast requests.

Responsibility:
    Let every valid coordinator see a broadcast request while ensuring at
    most one of them is "in the middle of deciding" at a time. A claim is
    a stored, time-boxed lock; expiry is cooperative (a reader compares
    ``claim_timeout_at`` with the injected clock), never a callback.

Architecture position:
    Engines -- pure calculation over an ``EventRequest``; zero I/O. The
    request store's version check makes the read-claim-write atomic.

Invariants enforced:
    - At most one live claim per request.
    - A claim holder is the reviewer or an active valid coordinator.
    - Only the holder may release.

Failure modes:
    - ClaimNotApplicableError: one or fewer valid coordinators, or the
      user is not eligible to claim.
    - ClaimConflictError: a live claim is held by someone else.
    - StaleClaimError: release by a non-holder.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from review_kernel.domain.request import Claim, EventRequest
from review_kernel.exceptions import (
    ClaimConflictError,
    ClaimNotApplicableError,
    StaleClaimError,
)

DEFAULT_CLAIM_TIMEOUT = timedelta(minutes=30)


class ClaimCoordinator:
    """Claim bookkeeping on a request document."""

    def __init__(self, claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT) -> None:
        if claim_timeout <= timedelta(0):
            raise ValueError("claim_timeout must be positive")
        self._claim_timeout = claim_timeout

    @property
    def claim_timeout(self) -> timedelta:
        return self._claim_timeout

    @staticmethod
    def is_broadcast(request: EventRequest) -> bool:
        """Claims only apply when more than one coordinator may act."""
        return len(request.valid_coordinators) > 1

    @staticmethod
    def is_eligible(request: EventRequest, user_id: str) -> bool:
        return user_id == request.reviewer_id or request.is_valid_coordinator(user_id)

    def claim(
        self, request: EventRequest, user_id: str, name: str, now: datetime,
    ) -> Claim:
        """Take (or refresh) the claim for ``user_id``.

        Succeeds when there is no live claim or the live claim is the
        caller's own; the timeout restarts from ``now``.
        """
        if not self.is_broadcast(request):
            raise ClaimNotApplicableError(
                str(request.id), "request has a single reviewer; claiming is not required",
            )
        if not self.is_eligible(request, user_id):
            raise ClaimNotApplicableError(
                str(request.id), f"user {user_id} is not a valid coordinator",
            )

        current = request.live_claim(now)
        if current is not None and current.user_id != user_id:
            raise ClaimConflictError(str(request.id), current.user_id, current.claim_timeout_at)

        claim = Claim(
            user_id=user_id,
            name=name,
            claimed_at=now,
            claim_timeout_at=now + self._claim_timeout,
        )
        request.claimed_by = claim
        return claim

    def release(self, request: EventRequest, user_id: str) -> None:
        """Drop the claim; only its holder may do so."""
        holder = request.claimed_by.user_id if request.claimed_by is not None else None
        if holder != user_id:
            raise StaleClaimError(str(request.id), user_id, holder)
        request.claimed_by = None

    def release_if_held(self, request: EventRequest, user_id: str) -> bool:
        """Drop ``user_id``'s claim if they hold one. Used when an action commits."""
        if request.claimed_by is not None and request.claimed_by.user_id == user_id:
            request.claimed_by = None
            return True
        return False

    @staticmethod
    def blocking_holder(request: EventRequest, user_id: str, now: datetime) -> str | None:
        """Holder of a live claim that is not ``user_id``, else None."""
        current = request.live_claim(now)
        if current is not None and current.user_id != user_id:
            return current.user_id
        return None
