"""
review_engines.assignment -- Pure reviewer candidate selection.

Responsibility:
    Given the requester's authority, the candidate pool the directory
    produced, and the routing rule that applies, pick one reviewer:
    exclude the requester, filter to the rule's target band, widen when
    the band is empty, intersect by organization and coverage area when
    the rule asks for it, then break ties toward the lowest authority.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Routing rules arrive as plain band bounds; no config imports.

Invariants enforced:
    - Self-review: the requester is never returned, even if the caller
      failed to exclude them from the pool.
    - Deterministic: ties broken by lowest authority, then by pool order.
    - Narrowing to zero is not an error: an empty band widens, an empty
      org/coverage intersection falls back to the pre-match pool. Every
      widening is reported in ``SelectionResult.widenings``.

Failure modes:
    - ``SelectionResult.candidate is None`` when the pool has no one but
      the requester; the caller then runs the fallback chain.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from review_engines.tracer import traced_engine

WIDEN_AUTHORITY_FLOOR = "target_band_empty_widened_to_requester_authority"
WIDEN_HIGHEST = "target_band_empty_took_highest_authority"
WIDEN_MATCH_FALLBACK = "org_coverage_match_empty_used_unmatched_pool"


@dataclass(frozen=True)
class Candidate:
    """A potential reviewer as seen by the selection engine."""

    user_id: str
    authority: int
    organization_ids: frozenset[str] = frozenset()
    coverage_area_ids: frozenset[str] = frozenset()
    order: int = 0


@dataclass(frozen=True)
class SelectionResult:
    candidate: Candidate | None
    widenings: tuple[str, ...] = ()
    band_size: int = 0
    matched_size: int | None = None


def filter_band(candidates: Iterable[Candidate], low: int, high: int) -> list[Candidate]:
    return [c for c in candidates if low <= c.authority <= high]


def widen_pool(
    candidates: list[Candidate], requester_authority: int,
) -> tuple[list[Candidate], str | None]:
    """Widening when the target band is empty.

    First to everyone at or above the requester's authority, then to the
    single highest-authority candidate.
    """
    at_or_above = [c for c in candidates if c.authority >= requester_authority]
    if at_or_above:
        return at_or_above, WIDEN_AUTHORITY_FLOOR
    if candidates:
        highest = max(candidates, key=lambda c: (c.authority, -c.order))
        return [highest], WIDEN_HIGHEST
    return [], None


def match_org_and_coverage(
    candidates: Iterable[Candidate],
    organization_ids: frozenset[str],
    coverage_area_ids: frozenset[str],
    require_org: bool,
    require_coverage: bool,
) -> list[Candidate]:
    """Candidates sharing an organization AND a coverage area with the requester.

    A requirement is skipped when the requester has no values for it.
    """
    matched = []
    for c in candidates:
        if require_org and organization_ids and not (c.organization_ids & organization_ids):
            continue
        if require_coverage and coverage_area_ids and not (
            c.coverage_area_ids & coverage_area_ids
        ):
            continue
        matched.append(c)
    return matched


def tie_break(candidates: Iterable[Candidate]) -> Candidate | None:
    """Lowest authority wins (closest tier match); pool order breaks ties."""
    ordered = sorted(candidates, key=lambda c: (c.authority, c.order))
    return ordered[0] if ordered else None


@traced_engine(
    "reviewer_selection",
    "1.0",
    fingerprint_fields=(
        "requester_id",
        "requester_authority",
        "target_min",
        "target_max",
        "requester_organization_ids",
        "requester_coverage_area_ids",
    ),
)
def select_reviewer(
    *,
    requester_id: str,
    requester_authority: int,
    target_min: int,
    target_max: int,
    candidates: list[Candidate],
    require_org_match: bool = False,
    require_coverage_match: bool = False,
    requester_organization_ids: frozenset[str] = frozenset(),
    requester_coverage_area_ids: frozenset[str] = frozenset(),
) -> SelectionResult:
    """Pick a reviewer from ``candidates`` within ``[target_min, target_max]``.

    Postconditions:
        ``result.candidate`` is None or has ``user_id != requester_id``.
    """
    widenings: list[str] = []
    pool = [c for c in candidates if c.user_id != requester_id]

    band = filter_band(pool, target_min, target_max)
    band_size = len(band)
    if not band:
        band, reason = widen_pool(pool, requester_authority)
        if reason is not None:
            widenings.append(reason)

    matched_size: int | None = None
    selectable = band
    if require_org_match or require_coverage_match:
        matched = match_org_and_coverage(
            band,
            requester_organization_ids,
            requester_coverage_area_ids,
            require_org_match,
            require_coverage_match,
        )
        matched_size = len(matched)
        if matched:
            selectable = matched
        elif band:
            widenings.append(WIDEN_MATCH_FALLBACK)

    remaining = list(selectable)
    while remaining:
        choice = tie_break(remaining)
        if choice.user_id != requester_id:
            return SelectionResult(
                candidate=choice,
                widenings=tuple(widenings),
                band_size=band_size,
                matched_size=matched_size,
            )
        remaining.remove(choice)

    return SelectionResult(
        candidate=None,
        widenings=tuple(widenings),
        band_size=band_size,
        matched_size=matched_size,
    )
