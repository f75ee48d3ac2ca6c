"""Shared test fixtures for the tradegate test suite."""

from __future__ import annotations

import os

import pytest

from tradegate.config.settings import GatewaySettings


# ---------------------------------------------------------------------------
# Keep host environment from leaking into GatewaySettings
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clear_gateway_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("TRADEGATE_"):
            monkeypatch.delenv(key)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path) -> GatewaySettings:
    """Test settings that never touch the network or the shipped policy file."""
    return GatewaySettings(
        destination_policies_path=str(tmp_path / "missing.yaml"),
        proxy_health_check_enabled=False,
    )
