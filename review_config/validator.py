"""
Routing configuration validator (``review_config.validator``).

Responsibility
--------------
Structural checks on a parsed ``RoutingConfig`` before it is handed to
any service.

Invariants enforced
-------------------
* Rule names and priorities are unique.
* Bands are well-formed: ``min <= max`` and within the authority scale.
* Every fallback step is of a known kind and carries its parameter.
* Claim timeout and retry limit are positive.

Failure modes
-------------
* Errors in ``ConfigValidationResult.errors`` -> ``RoutingConfigError``.
* Warnings (e.g. overlapping requester bands of non-selection rules) are
  logged but do not block loading.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from review_config.schema import FALLBACK_STEP_KINDS, RoutingConfig
from review_kernel.domain.authority import AuthorityTier

_SCALE_MIN = 0
_SCALE_MAX = int(AuthorityTier.SYSTEM_ADMIN)


class RoutingConfigError(ValueError):
    """Routing configuration failed to parse or validate."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            "Routing configuration invalid:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass
class ConfigValidationResult:
    """``is_valid`` only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_routing_config(config: RoutingConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_settings(config, result)
    _validate_rule_identity(config, result)
    _validate_bands(config, result)
    _validate_overlaps(config, result)
    _validate_fallback_chain(config, result)
    return result


def _validate_settings(config: RoutingConfig, result: ConfigValidationResult) -> None:
    if config.claim_timeout_minutes <= 0:
        result.add_error(
            f"claim_timeout_minutes must be positive, got {config.claim_timeout_minutes}"
        )
    if config.max_update_retries < 1:
        result.add_error(
            f"max_update_retries must be at least 1, got {config.max_update_retries}"
        )
    if "." not in config.review_permission:
        result.add_error(
            f"review_permission must look like 'resource.action', "
            f"got {config.review_permission!r}"
        )
    if not config.rules:
        result.add_error("At least one routing rule is required")


def _validate_rule_identity(config: RoutingConfig, result: ConfigValidationResult) -> None:
    names: set[str] = set()
    priorities: dict[int, str] = {}
    for rule in config.rules:
        if rule.name in names:
            result.add_error(f"Duplicate routing rule name: {rule.name}")
        names.add(rule.name)
        if rule.priority in priorities:
            result.add_error(
                f"Rules '{priorities[rule.priority]}' and '{rule.name}' "
                f"share priority {rule.priority}"
            )
        priorities.setdefault(rule.priority, rule.name)
        if rule.requires_explicit_stakeholder and rule.requires_selected_coordinator:
            result.add_error(
                f"Rule '{rule.name}' cannot require both an explicit stakeholder "
                f"and a selected coordinator"
            )


def _validate_bands(config: RoutingConfig, result: ConfigValidationResult) -> None:
    for rule in config.rules:
        for label, low, high in (
            ("requester", rule.requester_min, rule.requester_max),
            ("target", rule.target_min, rule.target_max),
        ):
            if low > high:
                result.add_error(
                    f"Rule '{rule.name}' has inverted {label} band [{low}, {high}]"
                )
            for bound in (low, high):
                if not _SCALE_MIN <= bound <= _SCALE_MAX:
                    result.add_error(
                        f"Rule '{rule.name}' {label} bound {bound} is outside "
                        f"[{_SCALE_MIN}, {_SCALE_MAX}]"
                    )


def _validate_overlaps(config: RoutingConfig, result: ConfigValidationResult) -> None:
    """Overlapping non-selection rules are legal (priority decides) but suspicious."""
    plain = [r for r in config.ordered_rules() if r.selection_key is None]
    for i, first in enumerate(plain):
        for second in plain[i + 1:]:
            if first.requester_min <= second.requester_max and second.requester_min <= first.requester_max:
                result.add_warning(
                    f"Rules '{first.name}' and '{second.name}' overlap on requester "
                    f"authority; '{first.name}' wins by priority"
                )


def _validate_fallback_chain(config: RoutingConfig, result: ConfigValidationResult) -> None:
    if not config.fallback_chain:
        result.add_warning("Fallback chain is empty; unmatched requests will fail")
    for step in config.fallback_chain:
        if step.kind not in FALLBACK_STEP_KINDS:
            result.add_error(
                f"Unknown fallback step '{step.kind}'; expected one of "
                f"{sorted(FALLBACK_STEP_KINDS)}"
            )
        elif step.kind == "global-permission" and not step.permission:
            result.add_error("Fallback step 'global-permission' needs a permission")
        elif step.kind == "role" and not step.role:
            result.add_error("Fallback step 'role' needs a role")
        elif step.kind == "authority" and step.min_authority is None:
            result.add_error("Fallback step 'authority' needs min_authority")
