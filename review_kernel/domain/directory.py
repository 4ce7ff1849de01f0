"""
Directory collaborators (``review_kernel.domain.directory``).

Responsibility
--------------
The narrow interfaces through which the workflow consumes user, permission
and authority data it does not own, plus ``StaticDirectory``, a dict-backed
implementation of all three used by tests and embedders.

Architecture position
---------------------
**Kernel domain layer** -- protocols and pure values. ``StaticDirectory``
holds its data in memory; a database- or IdP-backed implementation can
replace it without touching the workflow.

Permission strings have the form ``"<resource>.<action>"``. A grant of
``"*.*"`` matches every permission and ``"<resource>.*"`` every action on
that resource. Grants may be scoped to a set of location ids; an unscoped
grant applies everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Protocol


def split_permission(permission: str) -> tuple[str, str]:
    """``"request.review"`` -> ``("request", "review")``."""
    resource, _, action = permission.partition(".")
    if not resource or not action:
        raise ValueError(f"Malformed permission: {permission!r}")
    return resource, action


def permission_matches(granted: str, resource: str, action: str) -> bool:
    g_resource, g_action = split_permission(granted)
    if g_resource not in ("*", resource):
        return False
    return g_action in ("*", action)


@dataclass(frozen=True)
class UserProfile:
    """Directory record for one user."""

    user_id: str
    first_name: str
    last_name: str
    email: str | None = None
    organization_ids: frozenset[str] = frozenset()
    coverage_area_ids: frozenset[str] = frozenset()
    role_codes: tuple[str, ...] = ()
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def primary_role(self) -> str | None:
        return self.role_codes[0] if self.role_codes else None


# =========================================================================
# Consumed protocols
# =========================================================================


class AuthorityResolver(Protocol):
    """Pure function ``user_id -> authority``."""

    def authority_of(self, user_id: str) -> int:
        ...


class PermissionDirectory(Protocol):
    """Permission lookups, optionally scoped to a location."""

    def has_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        location_id: str | None = None,
    ) -> bool:
        ...

    def users_with_permission(
        self, permission: str, location_id: str | None = None,
    ) -> list[str]:
        """User ids holding ``permission``, scoped to ``location_id`` if given."""
        ...

    def users_with_role(self, role_code: str) -> list[str]:
        ...


class UserDirectory(Protocol):

    def find_user(self, user_id: str) -> UserProfile | None:
        ...

    def active_users(self) -> list[UserProfile]:
        ...


# =========================================================================
# In-memory implementation
# =========================================================================


@dataclass
class _Grant:
    permission: str
    location_ids: frozenset[str] | None = None

    def applies_to(self, location_id: str | None) -> bool:
        if location_id is None or self.location_ids is None:
            return True
        return location_id in self.location_ids


@dataclass
class _Entry:
    profile: UserProfile
    authority: int
    grants: list[_Grant] = field(default_factory=list)


class StaticDirectory:
    """Dict-backed user, permission and authority directory.

    Satisfies ``UserDirectory``, ``PermissionDirectory`` and
    ``AuthorityResolver``. Users iterate in insertion order, which keeps
    candidate ordering deterministic.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    def add_user(
        self,
        user_id: str,
        *,
        authority: int,
        first_name: str | None = None,
        last_name: str = "",
        email: str | None = None,
        permissions: Iterable[str] = (),
        locations: Iterable[str] | None = None,
        organizations: Iterable[str] = (),
        coverage_areas: Iterable[str] = (),
        roles: Iterable[str] = (),
        is_active: bool = True,
    ) -> UserProfile:
        """Register a user. ``locations`` scopes every permission given here."""
        profile = UserProfile(
            user_id=user_id,
            first_name=first_name if first_name is not None else user_id,
            last_name=last_name,
            email=email,
            organization_ids=frozenset(organizations),
            coverage_area_ids=frozenset(coverage_areas),
            role_codes=tuple(roles),
            is_active=is_active,
        )
        scope = frozenset(locations) if locations is not None else None
        self._entries[user_id] = _Entry(
            profile=profile,
            authority=int(authority),
            grants=[_Grant(p, scope) for p in permissions],
        )
        return profile

    def grant(
        self, user_id: str, permission: str, locations: Iterable[str] | None = None,
    ) -> None:
        split_permission(permission)
        scope = frozenset(locations) if locations is not None else None
        self._entries[user_id].grants.append(_Grant(permission, scope))

    def revoke(self, user_id: str, permission: str) -> None:
        entry = self._entries[user_id]
        entry.grants = [g for g in entry.grants if g.permission != permission]

    def set_authority(self, user_id: str, authority: int) -> None:
        self._entries[user_id].authority = int(authority)

    def deactivate(self, user_id: str) -> None:
        entry = self._entries[user_id]
        entry.profile = replace(entry.profile, is_active=False)

    # -- UserDirectory -------------------------------------------------------

    def find_user(self, user_id: str) -> UserProfile | None:
        entry = self._entries.get(user_id)
        return entry.profile if entry is not None else None

    def active_users(self) -> list[UserProfile]:
        return [e.profile for e in self._entries.values() if e.profile.is_active]

    # -- AuthorityResolver ---------------------------------------------------

    def authority_of(self, user_id: str) -> int:
        entry = self._entries.get(user_id)
        return entry.authority if entry is not None else 0

    # -- PermissionDirectory -------------------------------------------------

    def has_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        location_id: str | None = None,
    ) -> bool:
        entry = self._entries.get(user_id)
        if entry is None or not entry.profile.is_active:
            return False
        return any(
            permission_matches(g.permission, resource, action)
            and g.applies_to(location_id)
            for g in entry.grants
        )

    def users_with_permission(
        self, permission: str, location_id: str | None = None,
    ) -> list[str]:
        resource, action = split_permission(permission)
        return [
            user_id
            for user_id in self._entries
            if self.has_permission(user_id, resource, action, location_id)
        ]

    def users_with_role(self, role_code: str) -> list[str]:
        return [
            user_id
            for user_id, entry in self._entries.items()
            if entry.profile.is_active and role_code in entry.profile.role_codes
        ]
