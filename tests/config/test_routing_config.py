"""
Routing configuration: YAML loading, tier-name resolution, validation
and rule lookup.
"""

import copy

import pytest
import yaml

from review_config import RoutingConfigError, get_routing_config
from review_config.loader import parse_routing_config
from review_config.validator import validate_routing_config

BASE = {
    "config_id": "test-routing",
    "version": 2,
    "review_permission": "request.review",
    "claim_timeout_minutes": 15,
    "max_update_retries": 2,
    "rules": [
        {
            "name": "low-to-coordinator",
            "priority": 10,
            "requester_min": 0,
            "requester_max": 59,
            "target_min": "coordinator",
            "target_max": "coordinator_max",
        },
        {
            "name": "high-to-admin",
            "priority": 20,
            "requester_min": "coordinator",
            "requester_max": "system_admin",
            "target_min": "operational_admin",
            "target_max": 100,
        },
    ],
    "fallback_chain": [
        {"step": "role", "role": "system-admin"},
    ],
}


def _data(**overrides):
    data = copy.deepcopy(BASE)
    data.update(overrides)
    return data


def _write(tmp_path, data):
    path = tmp_path / "routing.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultConfig:

    def test_loads_and_validates(self, routing_config):
        assert routing_config.config_id == "default-routing"
        assert routing_config.review_permission == "request.review"
        assert routing_config.claim_timeout_minutes == 30
        assert routing_config.max_update_retries == 3
        assert validate_routing_config(routing_config).is_valid

    def test_rule_order(self, routing_config):
        assert [r.name for r in routing_config.ordered_rules()] == [
            "coordinator-to-stakeholder",
            "admin-selected-coordinator",
            "stakeholder-to-coordinator",
            "coordinator-to-admin",
            "admin-to-coordinator",
            "auto-assigned",
        ]

    @pytest.mark.parametrize(
        "authority, keys, expected",
        [
            (20, frozenset(), "auto-assigned"),
            (30, frozenset(), "stakeholder-to-coordinator"),
            (60, frozenset(), "coordinator-to-admin"),
            (60, frozenset({"stakeholder_id"}), "coordinator-to-stakeholder"),
            (80, frozenset(), "admin-to-coordinator"),
            (100, frozenset({"coordinator_id"}), "admin-selected-coordinator"),
            (30, frozenset({"coordinator_id"}), "stakeholder-to-coordinator"),
        ],
    )
    def test_rule_for(self, routing_config, authority, keys, expected):
        assert routing_config.rule_for(authority, keys).name == expected

    def test_skipped_rule_falls_through(self, routing_config):
        rule = routing_config.rule_for(
            60, frozenset({"stakeholder_id"}), frozenset({"coordinator-to-stakeholder"}),
        )
        assert rule.name == "coordinator-to-admin"

    def test_tier_names_resolved(self, routing_config):
        rule = routing_config.rule_named("stakeholder-to-coordinator")
        assert (rule.target_min, rule.target_max) == (60, 79)
        assert rule.requires_org_match and rule.requires_coverage_match

    def test_fallback_chain(self, routing_config):
        assert [s.label for s in routing_config.fallback_chain] == [
            "global-permission:request.review",
            "role:system-admin",
            "authority:80",
        ]

    def test_trace_is_logged(self, captured_logs):
        config = get_routing_config()
        traces = [r for r in captured_logs() if r["message"] == "ROUTING_CONFIG_TRACE"]
        assert traces[-1]["checksum"] == config.checksum
        assert traces[-1]["config_id"] == "default-routing"


class TestLoading:

    def test_custom_file(self, tmp_path):
        config = get_routing_config(_write(tmp_path, _data()))
        assert config.config_id == "test-routing"
        assert config.claim_timeout.total_seconds() == 15 * 60
        assert config.rule_named("high-to-admin").target_min == 80

    def test_checksum_is_stable(self, tmp_path):
        first = get_routing_config(_write(tmp_path, _data()))
        second = parse_routing_config(_data())
        assert first.checksum == second.checksum
        assert parse_routing_config(_data(version=3)).checksum != first.checksum

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_routing_config(tmp_path / "absent.yaml")

    def test_unknown_tier_name(self):
        rules = copy.deepcopy(BASE["rules"])
        rules[0]["target_min"] = "overlord"
        with pytest.raises(RoutingConfigError) as exc_info:
            parse_routing_config(_data(rules=rules))
        assert "overlord" in str(exc_info.value)

    def test_rules_required(self):
        data = _data()
        del data["rules"]
        with pytest.raises(RoutingConfigError):
            parse_routing_config(data)

    def test_role_step_defaults_to_fallback_role(self):
        config = parse_routing_config(_data(
            fallback_role="operational-admin",
            fallback_chain=[{"step": "role"}, {"step": "role", "role": "auditor"}],
        ))
        assert [s.role for s in config.fallback_chain] == ["operational-admin", "auditor"]
        assert validate_routing_config(config).is_valid

    def test_fallback_labels_follow_step_kind(self):
        config = parse_routing_config(_data(fallback_chain=[
            {"step": "authority", "min_authority": 0},
            {"step": "global-permission", "permission": "request.review", "role": "x"},
        ]))
        assert [s.label for s in config.fallback_chain] == [
            "authority:0",
            "global-permission:request.review",
        ]


class TestValidation:

    def _errors(self, tmp_path, data):
        with pytest.raises(RoutingConfigError) as exc_info:
            get_routing_config(_write(tmp_path, data))
        return exc_info.value.errors

    def test_inverted_band(self, tmp_path):
        rules = copy.deepcopy(BASE["rules"])
        rules[0]["requester_min"], rules[0]["requester_max"] = 59, 0
        errors = self._errors(tmp_path, _data(rules=rules))
        assert any("inverted requester band" in e for e in errors)

    def test_duplicate_names_and_priorities(self, tmp_path):
        rules = copy.deepcopy(BASE["rules"])
        rules[1]["name"] = rules[0]["name"]
        rules[1]["priority"] = rules[0]["priority"]
        errors = self._errors(tmp_path, _data(rules=rules))
        assert any("Duplicate routing rule name" in e for e in errors)
        assert any("share priority" in e for e in errors)

    def test_unknown_fallback_step(self, tmp_path):
        errors = self._errors(tmp_path, _data(fallback_chain=[{"step": "coin-flip"}]))
        assert any("Unknown fallback step" in e for e in errors)

    def test_non_positive_timeout(self, tmp_path):
        errors = self._errors(tmp_path, _data(claim_timeout_minutes=0))
        assert any("claim_timeout_minutes" in e for e in errors)

    def test_overlap_is_a_warning(self, captured_logs, tmp_path):
        rules = copy.deepcopy(BASE["rules"])
        rules[1]["requester_min"] = 50
        get_routing_config(_write(tmp_path, _data(rules=rules)))
        warnings = [r for r in captured_logs() if r["message"] == "routing_config_warning"]
        assert any("overlap" in w["warning"] for w in warnings)
