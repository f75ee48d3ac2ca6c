"""Pydantic Settings for the gateway.

All environment variables use the TRADEGATE_ prefix.
Example: TRADEGATE_PORT=8002, TRADEGATE_PROXY_LIST_PATH=/etc/tradegate/proxies.csv
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class GatewaySettings(BaseSettings):
    """Gateway configuration validated from environment variables."""

    # Service
    port: int = 8002
    log_level: str = "INFO"

    # Destination policies (per-exchange interval overrides)
    destination_policies_path: str = str(Path(__file__).with_name("destination_policies.yaml"))

    # Proxy pool
    proxy_list_path: str | None = None  # checkedproxylists-style CSV export
    proxy_list_delimiter: str = ";"
    proxy_health_check_enabled: bool = False
    proxy_health_check_interval_seconds: int = Field(default=600, ge=1)
    proxy_test_url: str = "http://blanksite.com/"
    proxy_test_timeout_seconds: float = Field(default=10.0, gt=0)
    proxy_test_concurrency: int = Field(default=50, ge=1)

    # Proxied HTTP transport
    http_max_attempts: int = Field(default=5, ge=1)
    http_connect_timeout_seconds: float = Field(default=15.0, gt=0)
    http_read_timeout_seconds: float = Field(default=10.0, gt=0)

    # Trade history cache
    trade_retention_seconds: int = Field(default=24 * 60 * 60, ge=1)
    trade_initial_lookback_seconds: int = Field(default=60 * 60, ge=0)
    trade_fetch_slack_seconds: int = Field(default=3, ge=0)
    trade_poll_margin_ms: int = Field(default=100, ge=0)
    trade_cache_pairs: list[str] = []  # "exchange:BASE_QUOTE" entries activated at startup

    # Shutdown
    graceful_shutdown_seconds: int = Field(default=30, ge=0)

    model_config = {"env_prefix": "TRADEGATE_"}
