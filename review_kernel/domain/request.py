"""
Event request aggregate (``review_kernel.domain.request``).

Responsibility
--------------
The document every workflow component operates on, plus its value
objects. Snapshots (``ActorSnapshot``) are historical truth captured at
the time they were taken; they are never recalculated. Live authority for
new decisions is resolved through the directory, not read from here.

Architecture position
---------------------
**Kernel domain layer** -- pure values, zero I/O. May import only from
``domain/states`` and ``domain/authority``.

Invariants enforced
-------------------
* ``requester`` is immutable after creation.
* ``status_history`` only grows (``append_history``).
* ``active_responder`` is None in terminal states (maintained by the
  responder tracker, checked by ``check_invariants``).
* A claim with ``claim_timeout_at`` in the past is treated as absent by
  ``live_claim``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from review_kernel.domain.states import RequestState, TERMINAL_STATES, normalize_state


class ResponderRelationship(str, Enum):
    """Which side of the request must respond next."""

    REQUESTER = "requester"
    REVIEWER = "reviewer"


def _dt(value: datetime | str | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# =========================================================================
# Value objects
# =========================================================================


@dataclass(frozen=True)
class ActorSnapshot:
    """A user as they were when the snapshot was taken."""

    user_id: str
    name: str
    authority: int
    role_code: str | None = None
    email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "authority": self.authority,
            "role_code": self.role_code,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActorSnapshot:
        return cls(
            user_id=str(data["user_id"]),
            name=data.get("name", ""),
            authority=int(data.get("authority", 0)),
            role_code=data.get("role_code"),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class ReviewerAssignment:
    """The assigned reviewer plus the routing rule that produced them."""

    actor: ActorSnapshot
    assignment_rule: str
    assigned_at: datetime | None = None
    overridden_at: datetime | None = None
    overridden_by: str | None = None

    @property
    def user_id(self) -> str:
        return self.actor.user_id

    @property
    def authority(self) -> int:
        return self.actor.authority

    @property
    def name(self) -> str:
        return self.actor.name

    @property
    def is_overridden(self) -> bool:
        return self.overridden_by is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.actor.to_dict(),
            "assignment_rule": self.assignment_rule,
            "assigned_at": _iso(self.assigned_at),
            "overridden_at": _iso(self.overridden_at),
            "overridden_by": self.overridden_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewerAssignment:
        return cls(
            actor=ActorSnapshot.from_dict(data),
            assignment_rule=data["assignment_rule"],
            assigned_at=_dt(data.get("assigned_at")),
            overridden_at=_dt(data.get("overridden_at")),
            overridden_by=data.get("overridden_by"),
        )


@dataclass(frozen=True)
class ValidCoordinator:
    """A reviewer qualified to see and act on a broadcast request."""

    user_id: str
    name: str
    authority: int
    discovered_at: datetime
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "authority": self.authority,
            "discovered_at": _iso(self.discovered_at),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidCoordinator:
        return cls(
            user_id=str(data["user_id"]),
            name=data.get("name", ""),
            authority=int(data.get("authority", 0)),
            discovered_at=_dt(data["discovered_at"]),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(frozen=True)
class ActiveResponder:
    """Whoever must act next on a non-terminal request."""

    user_id: str
    relationship: ResponderRelationship
    authority: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "relationship": self.relationship.value,
            "authority": self.authority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActiveResponder:
        return cls(
            user_id=str(data["user_id"]),
            relationship=ResponderRelationship(data["relationship"]),
            authority=int(data.get("authority", 0)),
        )


@dataclass(frozen=True)
class LastAction:
    action: str
    actor_id: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "actor_id": self.actor_id,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LastAction:
        return cls(
            action=data["action"],
            actor_id=str(data["actor_id"]),
            timestamp=_dt(data["timestamp"]),
        )


@dataclass(frozen=True)
class RescheduleProposal:
    """An open counter-proposal in the reschedule negotiation."""

    proposed_by: ActorSnapshot
    proposed_date: str
    proposed_at: datetime
    proposed_start_time: str | None = None
    proposed_end_time: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposed_by": self.proposed_by.to_dict(),
            "proposed_date": self.proposed_date,
            "proposed_start_time": self.proposed_start_time,
            "proposed_end_time": self.proposed_end_time,
            "notes": self.notes,
            "proposed_at": _iso(self.proposed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RescheduleProposal:
        return cls(
            proposed_by=ActorSnapshot.from_dict(data["proposed_by"]),
            proposed_date=data["proposed_date"],
            proposed_at=_dt(data["proposed_at"]),
            proposed_start_time=data.get("proposed_start_time"),
            proposed_end_time=data.get("proposed_end_time"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class Claim:
    """Exclusive, time-boxed lock held by one broadcast reviewer."""

    user_id: str
    name: str
    claimed_at: datetime
    claim_timeout_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.claim_timeout_at > now

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "claimed_at": _iso(self.claimed_at),
            "claim_timeout_at": _iso(self.claim_timeout_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Claim:
        return cls(
            user_id=str(data["user_id"]),
            name=data.get("name", ""),
            claimed_at=_dt(data["claimed_at"]),
            claim_timeout_at=_dt(data["claim_timeout_at"]),
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One audit-trail row. Never mutated after append."""

    status: RequestState
    changed_at: datetime
    actor_id: str | None
    actor_name: str | None = None
    action: str | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "changed_at": _iso(self.changed_at),
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "action": self.action,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusHistoryEntry:
        return cls(
            status=normalize_state(data["status"]),
            changed_at=_dt(data["changed_at"]),
            actor_id=data.get("actor_id"),
            actor_name=data.get("actor_name"),
            action=data.get("action"),
            note=data.get("note"),
        )


# =========================================================================
# Aggregate
# =========================================================================


@dataclass
class EventRequest:
    """
    The event request document.

    Mutated only by the workflow service through validated transitions.
    ``version`` is the optimistic concurrency token; stores bump it on
    every successful write.
    """

    requester: ActorSnapshot
    status: RequestState = RequestState.PENDING_REVIEW
    id: UUID = field(default_factory=uuid4)
    reviewer: ReviewerAssignment | None = None
    valid_coordinators: list[ValidCoordinator] = field(default_factory=list)
    active_responder: ActiveResponder | None = None
    last_action: LastAction | None = None
    reschedule_proposal: RescheduleProposal | None = None
    claimed_by: Claim | None = None
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    location_id: str | None = None
    organization_id: str | None = None
    coverage_area_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    # -- queries ----------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def requester_id(self) -> str:
        return self.requester.user_id

    @property
    def reviewer_id(self) -> str | None:
        return self.reviewer.user_id if self.reviewer is not None else None

    def live_claim(self, now: datetime) -> Claim | None:
        """The current claim, or None if absent or expired."""
        if self.claimed_by is not None and self.claimed_by.is_live(now):
            return self.claimed_by
        return None

    def active_coordinator_ids(self) -> list[str]:
        return [vc.user_id for vc in self.valid_coordinators if vc.is_active]

    def is_valid_coordinator(self, user_id: str) -> bool:
        return user_id in self.active_coordinator_ids()

    def relationship_of(self, user_id: str) -> ResponderRelationship | None:
        if user_id == self.requester.user_id:
            return ResponderRelationship.REQUESTER
        if self.reviewer is not None and user_id == self.reviewer.user_id:
            return ResponderRelationship.REVIEWER
        return None

    def check_invariants(self) -> list[str]:
        """Return a list of violated document invariants (empty if sound)."""
        problems: list[str] = []
        if self.is_terminal and self.active_responder is not None:
            problems.append("terminal request has an active responder")
        if self.reviewer is not None and self.reviewer.user_id == self.requester.user_id:
            problems.append("reviewer equals requester")
        if self.active_responder is not None:
            party = self.relationship_of(self.active_responder.user_id)
            if party is None:
                problems.append("active responder is neither requester nor reviewer")
        if self.claimed_by is not None:
            holders = set(self.active_coordinator_ids())
            if self.reviewer is not None:
                holders.add(self.reviewer.user_id)
            if self.claimed_by.user_id not in holders:
                problems.append("claim holder is not a valid coordinator")
        return problems

    # -- mutation -----------------------------------------------------------

    def append_history(self, entry: StatusHistoryEntry) -> None:
        self.status_history.append(entry)

    def clone(self) -> EventRequest:
        """Deep copy, so stores never hand out their own instances."""
        return copy.deepcopy(self)

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "status": self.status.value,
            "requester": self.requester.to_dict(),
            "reviewer": self.reviewer.to_dict() if self.reviewer else None,
            "valid_coordinators": [vc.to_dict() for vc in self.valid_coordinators],
            "active_responder": (
                self.active_responder.to_dict() if self.active_responder else None
            ),
            "last_action": self.last_action.to_dict() if self.last_action else None,
            "reschedule_proposal": (
                self.reschedule_proposal.to_dict() if self.reschedule_proposal else None
            ),
            "claimed_by": self.claimed_by.to_dict() if self.claimed_by else None,
            "status_history": [h.to_dict() for h in self.status_history],
            "location_id": self.location_id,
            "organization_id": self.organization_id,
            "coverage_area_id": self.coverage_area_id,
            "details": dict(self.details),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRequest:
        reviewer = data.get("reviewer")
        responder = data.get("active_responder")
        last_action = data.get("last_action")
        proposal = data.get("reschedule_proposal")
        claim = data.get("claimed_by")
        return cls(
            id=UUID(str(data["id"])),
            status=normalize_state(data.get("status")),
            requester=ActorSnapshot.from_dict(data["requester"]),
            reviewer=ReviewerAssignment.from_dict(reviewer) if reviewer else None,
            valid_coordinators=[
                ValidCoordinator.from_dict(vc)
                for vc in data.get("valid_coordinators") or []
            ],
            active_responder=ActiveResponder.from_dict(responder) if responder else None,
            last_action=LastAction.from_dict(last_action) if last_action else None,
            reschedule_proposal=(
                RescheduleProposal.from_dict(proposal) if proposal else None
            ),
            claimed_by=Claim.from_dict(claim) if claim else None,
            status_history=[
                StatusHistoryEntry.from_dict(h) for h in data.get("status_history") or []
            ],
            location_id=data.get("location_id"),
            organization_id=data.get("organization_id"),
            coverage_area_id=data.get("coverage_area_id"),
            details=dict(data.get("details") or {}),
            created_at=_dt(data.get("created_at")),
            updated_at=_dt(data.get("updated_at")),
            version=int(data.get("version", 0)),
        )
