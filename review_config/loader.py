"""
Routing configuration loader (``review_config.loader``).

Responsibility
--------------
Loads the routing YAML and parses it into ``review_config.schema``
dataclasses. Build/test tooling: services obtain configuration only
through ``review_config.get_routing_config()``.

Invariants enforced
-------------------
* No silent defaults for required keys (``rules``, rule ``name``, bands).
* Tier bounds may be written as numbers or tier names
  (``coordinator``, ``coordinator_max``, ``operational_admin`` ...).
* ``compute_checksum`` is a deterministic SHA-256 of canonical JSON.

Failure modes
-------------
* Missing file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing keys or unknown tier names -> ``RoutingConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from review_config.schema import FallbackStepDef, RoutingConfig, RoutingRuleDef
from review_config.validator import RoutingConfigError
from review_kernel.domain.authority import resolve_tier_bound

DEFAULT_CLAIM_TIMEOUT_MINUTES = 30
DEFAULT_MAX_UPDATE_RETRIES = 3


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _bound(rule_name: str, data: dict[str, Any], key: str, errors: list[str]) -> int:
    if key not in data:
        errors.append(f"Rule '{rule_name}' is missing '{key}'")
        return 0
    try:
        return resolve_tier_bound(data[key])
    except ValueError as exc:
        errors.append(f"Rule '{rule_name}' {key}: {exc}")
        return 0


def parse_rule(data: dict[str, Any], errors: list[str]) -> RoutingRuleDef:
    """Parse one routing rule, collecting problems into ``errors``."""
    name = data.get("name")
    if not name:
        errors.append(f"Routing rule without a name: {data!r}")
        name = "<unnamed>"
    if "priority" not in data:
        errors.append(f"Rule '{name}' is missing 'priority'")
    return RoutingRuleDef(
        name=str(name),
        priority=int(data.get("priority", 0)),
        requester_min=_bound(name, data, "requester_min", errors),
        requester_max=_bound(name, data, "requester_max", errors),
        target_min=_bound(name, data, "target_min", errors),
        target_max=_bound(name, data, "target_max", errors),
        requires_org_match=bool(data.get("requires_org_match", False)),
        requires_coverage_match=bool(data.get("requires_coverage_match", False)),
        requires_explicit_stakeholder=bool(data.get("requires_explicit_stakeholder", False)),
        requires_selected_coordinator=bool(data.get("requires_selected_coordinator", False)),
    )


def parse_fallback_step(
    data: dict[str, Any] | str,
    errors: list[str],
    default_role: str | None = None,
) -> FallbackStepDef:
    if isinstance(data, str):
        data = {"step": data}
    min_authority = data.get("min_authority")
    if min_authority is not None:
        try:
            min_authority = resolve_tier_bound(min_authority)
        except ValueError as exc:
            errors.append(f"Fallback step '{data.get('step')}' min_authority: {exc}")
            min_authority = None
    kind = str(data.get("step", ""))
    role = data.get("role")
    if kind == "role" and not role:
        role = default_role
    return FallbackStepDef(
        kind=kind,
        permission=data.get("permission"),
        role=role,
        min_authority=min_authority,
    )


def parse_routing_config(data: dict[str, Any], source: str = "<memory>") -> RoutingConfig:
    """
    Parse a routing config dict.

    Raises:
        RoutingConfigError: Required keys missing or tier names unknown.
    """
    errors: list[str] = []
    if "rules" not in data:
        raise RoutingConfigError([f"{source}: 'rules' is required"])

    rules = tuple(parse_rule(r, errors) for r in data["rules"] or [])
    review_permission = data.get("review_permission", "request.review")
    fallback_role = data.get("fallback_role", "system-admin")
    chain = tuple(
        parse_fallback_step(step, errors, default_role=fallback_role)
        for step in data.get("fallback_chain") or []
    )
    if errors:
        raise RoutingConfigError(errors)

    return RoutingConfig(
        config_id=str(data.get("config_id", Path(source).stem)),
        version=int(data.get("version", 1)),
        review_permission=review_permission,
        fallback_role=fallback_role,
        claim_timeout_minutes=int(
            data.get("claim_timeout_minutes", DEFAULT_CLAIM_TIMEOUT_MINUTES)
        ),
        max_update_retries=int(
            data.get("max_update_retries", DEFAULT_MAX_UPDATE_RETRIES)
        ),
        rules=rules,
        fallback_chain=chain,
        checksum=compute_checksum(data),
        metadata={"source": source},
    )


def load_routing_config(path: Path) -> RoutingConfig:
    return parse_routing_config(load_yaml_file(path), source=str(path))
