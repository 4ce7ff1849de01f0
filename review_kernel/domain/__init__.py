"""
Pure domain layer.

Value objects, the state machine and collaborator protocols with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time
- I/O
"""

from review_kernel.domain.authority import AuthorityTier, tier_of
from review_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from review_kernel.domain.directory import (
    AuthorityResolver,
    PermissionDirectory,
    StaticDirectory,
    UserDirectory,
    UserProfile,
)
from review_kernel.domain.request import (
    ActiveResponder,
    ActorSnapshot,
    Claim,
    EventRequest,
    LastAction,
    RescheduleProposal,
    ResponderRelationship,
    ReviewerAssignment,
    StatusHistoryEntry,
    ValidCoordinator,
)
from review_kernel.domain.states import (
    REQUEST_TRANSITIONS,
    STATUS_LABELS,
    TERMINAL_STATES,
    RequestAction,
    RequestState,
    available_actions,
    is_terminal,
    next_state,
    normalize_state,
)

__all__ = [
    "ActiveResponder",
    "ActorSnapshot",
    "AuthorityResolver",
    "AuthorityTier",
    "Claim",
    "Clock",
    "DeterministicClock",
    "EventRequest",
    "LastAction",
    "PermissionDirectory",
    "REQUEST_TRANSITIONS",
    "RequestAction",
    "RequestState",
    "RescheduleProposal",
    "ResponderRelationship",
    "ReviewerAssignment",
    "STATUS_LABELS",
    "StaticDirectory",
    "StatusHistoryEntry",
    "SystemClock",
    "TERMINAL_STATES",
    "UserDirectory",
    "UserProfile",
    "ValidCoordinator",
    "available_actions",
    "is_terminal",
    "next_state",
    "normalize_state",
    "tier_of",
]
