from __future__ import annotations

import pytest

from multinic_agent.tests.fakes import FakeRunner, make_context

_ENV_VARS = (
    "DB_HOST", "DB_PORT", "DB_USERNAME", "DB_PASSWORD", "DB_DATABASE", "DB_CHARSET", "DB_LOC",
    "DB_POOL_SIZE", "DB_MAX_OVERFLOW", "DB_POOL_RECYCLE",
    "AGENT_CHECK_INTERVAL", "AGENT_RETRY_COUNT", "AGENT_RETRY_INTERVAL", "NODE_NAME",
    "NETPLAN_CONFIG_PATH", "NETPLAN_BACKUP_PATH", "NETPLAN_DRY_RUN", "DRY_RUN",
    "NETPLAN_RENDERER", "NETPLAN_NAMESERVERS", "NETPLAN_ADDRESS_MODE",
    "NETPLAN_HOST_OFFSET", "NETPLAN_GATEWAY_OFFSET", "NETPLAN_ROUTE_METRIC",
    "NETPLAN_APPLY_TIMEOUT", "NETPLAN_COMMAND_TIMEOUT",
    "LOG_LEVEL", "LOG_FORMAT", "LOG_OUTPUT", "LOG_FILE_PATH",
    "KUBERNETES_SERVICE_HOST", "PRIVILEGED_MODE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the host environment from leaking into settings under test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def context(tmp_path):
    (tmp_path / "netplan").mkdir()
    return make_context(tmp_path)


@pytest.fixture
def dry_run_context(tmp_path):
    return make_context(tmp_path, dry_run=True)


@pytest.fixture
def fake_runner():
    return FakeRunner()
