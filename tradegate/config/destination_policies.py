"""Destination policy models and YAML loader.

Provides typed Pydantic models for per-exchange request cadence policies
and a loader function that parses the YAML config into those models.
Intervals are configured in milliseconds and exposed in microseconds.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from tradegate.clock import MICROS_PER_MILLI

logger = logging.getLogger(__name__)


class DestinationPolicy(BaseModel):
    """Polling cadence and proxy eligibility for a single exchange endpoint."""

    update_interval_ms: int = Field(default=15_000, ge=0)
    minimum_request_interval_ms: int = Field(default=100, ge=0)
    proxy_allowed: bool = False
    max_parallel_proxy_requests: int = Field(default=1, ge=1)

    @property
    def update_interval(self) -> int:
        return self.update_interval_ms * MICROS_PER_MILLI

    @property
    def minimum_request_interval(self) -> int:
        return self.minimum_request_interval_ms * MICROS_PER_MILLI


_DEFAULT_POLICY = DestinationPolicy()


def load_destination_policies(yaml_path: str) -> dict[str, DestinationPolicy]:
    """Parse a destination policies YAML file into typed DestinationPolicy objects.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        A dict mapping exchange names (and "default") to DestinationPolicy instances.
        If the file is not found, returns just the built-in default policy.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Destination policies file not found at %s; using built-in defaults", yaml_path)
        return {"default": _DEFAULT_POLICY}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse destination policies YAML at %s: %s", yaml_path, exc)
        return {"default": _DEFAULT_POLICY}

    if not isinstance(raw, dict) or not isinstance(raw.get("destinations"), dict):
        logger.warning("Destination policies YAML missing 'destinations' key; using built-in defaults")
        return {"default": _DEFAULT_POLICY}

    policies: dict[str, DestinationPolicy] = {}
    for name, config in raw["destinations"].items():
        try:
            policies[str(name).lower()] = DestinationPolicy.model_validate(config or {})
        except Exception as exc:
            logger.error("Invalid policy for destination '%s': %s, skipping", name, exc)

    if "default" not in policies:
        policies["default"] = _DEFAULT_POLICY

    return policies


def resolve_policy(policies: dict[str, DestinationPolicy], name: str) -> DestinationPolicy | None:
    """Return the policy for *name*, falling back to the configured ``default`` entry.

    Returns None when only the built-in default is available, so adapters keep
    their own class-level cadence unless the YAML says otherwise.
    """
    policy = policies.get(name.lower()) or policies.get("default")
    if policy is _DEFAULT_POLICY:
        return None
    return policy
