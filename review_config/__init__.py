"""
review_config -- single public entrypoint for routing configuration.

Responsibility:
    ``get_routing_config()`` is the ONLY way services obtain the routing
    table, fallback chain, claim timeout and retry limit. No other
    component reads the YAML directly.

Architecture position:
    Configuration -- sits above ``review_kernel`` and below
    ``review_services``. The kernel MUST NEVER import from this package.

Invariants enforced:
    - A returned ``RoutingConfig`` has passed validation.
    - Same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- config path does not exist.
    - ``RoutingConfigError`` -- parse or validation failure.

Audit relevance:
    Every successful call emits a ``ROUTING_CONFIG_TRACE`` log entry with
    config id, version and checksum, tying each assignment back to the
    exact routing table that produced it.
"""

from __future__ import annotations

from pathlib import Path

from review_config.loader import load_routing_config
from review_config.schema import FallbackStepDef, RoutingConfig, RoutingRuleDef
from review_config.validator import RoutingConfigError, validate_routing_config
from review_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default" / "routing.yaml"


def get_routing_config(config_path: Path | str | None = None) -> RoutingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a routing YAML file. Defaults to
            review_config/sets/default/routing.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        RoutingConfigError: If parsing or validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_routing_config(path)

    validation = validate_routing_config(config)
    if not validation.is_valid:
        raise RoutingConfigError(validation.errors)
    for warning in validation.warnings:
        _logger.warning("routing_config_warning", extra={"warning": warning})

    _logger.info(
        "ROUTING_CONFIG_TRACE",
        extra={
            "trace_type": "ROUTING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "rule_count": len(config.rules),
            "fallback_steps": [s.label for s in config.fallback_chain],
        },
    )
    return config


__all__ = [
    "FallbackStepDef",
    "RoutingConfig",
    "RoutingConfigError",
    "RoutingRuleDef",
    "get_routing_config",
]
