"""Configuration module: settings and destination policies."""

from tradegate.config.destination_policies import (
    DestinationPolicy,
    load_destination_policies,
    resolve_policy,
)
from tradegate.config.settings import GatewaySettings

__all__ = [
    "DestinationPolicy",
    "GatewaySettings",
    "load_destination_policies",
    "resolve_policy",
]
