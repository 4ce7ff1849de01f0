"""
Authority tiers (``review_kernel.domain.authority``).

Responsibility
--------------
The fixed five-tier authority scale every routing and authorization
decision compares against. Authority is a number; the only "is admin"
test in the codebase is ``authority >= AuthorityTier.SYSTEM_ADMIN`` (or
``OPERATIONAL_ADMIN`` for the admin-or-above band). Role-name strings are
never branched on.

Architecture position
---------------------
**Kernel domain layer** -- pure values, zero I/O.
"""

from __future__ import annotations

from enum import IntEnum


class AuthorityTier(IntEnum):
    """Numeric authority bands, lowest to highest."""

    BASIC = 20
    STAKEHOLDER = 30
    COORDINATOR = 60
    OPERATIONAL_ADMIN = 80
    SYSTEM_ADMIN = 100


# Top of the coordinator band; routing targets "coordinators" as [60, 79].
COORDINATOR_MAX = AuthorityTier.OPERATIONAL_ADMIN - 1

_TIER_BY_NAME: dict[str, AuthorityTier] = {
    tier.name.lower(): tier for tier in AuthorityTier
}


def tier_of(authority: int) -> AuthorityTier:
    """Return the highest tier whose floor is <= ``authority``.

    Authorities below the Basic floor still classify as Basic.
    """
    result = AuthorityTier.BASIC
    for tier in AuthorityTier:
        if authority >= tier:
            result = tier
    return result


def is_system_admin(authority: int) -> bool:
    return authority >= AuthorityTier.SYSTEM_ADMIN


def is_admin_or_above(authority: int) -> bool:
    return authority >= AuthorityTier.OPERATIONAL_ADMIN


def resolve_tier_bound(value: int | str) -> int:
    """Resolve a config tier bound given either as a number or a tier name.

    ``"coordinator_max"`` resolves to the top of the coordinator band.

    Raises:
        ValueError: Unknown tier name.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid tier bound: {value!r}")
    if isinstance(value, int):
        return value
    key = str(value).strip().lower()
    if key == "coordinator_max":
        return int(COORDINATOR_MAX)
    if key in _TIER_BY_NAME:
        return int(_TIER_BY_NAME[key])
    raise ValueError(f"Unknown authority tier: {value!r}")
