"""
Routing configuration schema.

The human-authored routing table parsed from YAML into frozen
dataclasses. Tier bounds are already resolved to integers here; the
loader accepts either numbers or tier names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class RoutingRuleDef:
    """One row of the routing table.

    A rule applies when the requester's authority lies in
    ``[requester_min, requester_max]`` and, for direct-selection rules,
    when the context names the selected user. The rule's ``name`` becomes
    the ``assignment_rule`` tag on the resulting assignment.
    """

    name: str
    priority: int
    requester_min: int
    requester_max: int
    target_min: int
    target_max: int
    requires_org_match: bool = False
    requires_coverage_match: bool = False
    requires_explicit_stakeholder: bool = False
    requires_selected_coordinator: bool = False

    @property
    def selection_key(self) -> str | None:
        """Context field naming a directly selected reviewer, if any."""
        if self.requires_explicit_stakeholder:
            return "stakeholder_id"
        if self.requires_selected_coordinator:
            return "coordinator_id"
        return None

    def covers_requester(self, authority: int) -> bool:
        return self.requester_min <= authority <= self.requester_max

    def covers_target(self, authority: int) -> bool:
        return self.target_min <= authority <= self.target_max


FALLBACK_STEP_KINDS = frozenset({"global-permission", "role", "authority"})


@dataclass(frozen=True)
class FallbackStepDef:
    """One step of the fallback chain, tried in order."""

    kind: str
    permission: str | None = None
    role: str | None = None
    min_authority: int | None = None

    @property
    def label(self) -> str:
        detail = {
            "global-permission": self.permission,
            "role": self.role,
            "authority": self.min_authority,
        }.get(self.kind)
        return f"{self.kind}:{detail}"


@dataclass(frozen=True)
class RoutingConfig:
    """Compiled routing configuration -- the sole runtime artifact."""

    config_id: str
    version: int
    review_permission: str
    fallback_role: str  # role for a "role" fallback step that names none
    claim_timeout_minutes: int
    max_update_retries: int
    rules: tuple[RoutingRuleDef, ...] = ()
    fallback_chain: tuple[FallbackStepDef, ...] = ()
    checksum: str = ""
    metadata: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def claim_timeout(self) -> timedelta:
        return timedelta(minutes=self.claim_timeout_minutes)

    def ordered_rules(self) -> tuple[RoutingRuleDef, ...]:
        return tuple(sorted(self.rules, key=lambda r: r.priority))

    def rule_for(
        self,
        requester_authority: int,
        context_keys: frozenset[str] = frozenset(),
        skip: frozenset[str] = frozenset(),
    ) -> RoutingRuleDef | None:
        """First rule by ascending priority that covers the requester.

        Direct-selection rules only match when their selection key is in
        ``context_keys``. Rules named in ``skip`` are passed over (used
        after a direct selection was rejected).
        """
        for rule in self.ordered_rules():
            if rule.name in skip or not rule.covers_requester(requester_authority):
                continue
            key = rule.selection_key
            if key is not None and key not in context_keys:
                continue
            return rule
        return None

    def rule_named(self, name: str) -> RoutingRuleDef | None:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None
