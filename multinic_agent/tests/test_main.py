"""Tests for the command line entry point."""

from __future__ import annotations

import asyncio
import logging
import signal

import pytest

from multinic_agent import main as main_module
from multinic_agent.errors import RepositoryError
from multinic_agent.main import list_interfaces, main, parse_args, serve
from multinic_agent.models import InterfaceRecord
from multinic_agent.tests.fakes import FakeRepository


class _Repository(FakeRepository):
    def __init__(self, *args, ready_error=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.ready_error = ready_error
        self.closed = False

    def wait_until_ready(self, attempts, interval):
        if self.ready_error is not None:
            raise self.ready_error

    def close(self):
        self.closed = True


RECORD = InterfaceRecord(
    port_id="port-1",
    mac_address="fa:16:3e:00:00:01",
    subnet_name="mgmt",
    cidr="192.168.10.0/24",
    network_id="net-1",
)


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr(
        main_module,
        "setup_agent_logging",
        lambda settings, node_name="": logging.getLogger("multinic_agent.test"),
    )


@pytest.fixture
def repository(monkeypatch, quiet_logging):
    repo = _Repository([RECORD])
    monkeypatch.setattr(main_module.InterfaceRepository, "from_settings", classmethod(lambda cls, ctx: repo))
    monkeypatch.setenv("NODE_NAME", "worker-1")
    monkeypatch.setenv("DRY_RUN", "true")
    return repo


def test_parse_args_defaults():
    args = parse_args([])

    assert args.config is None
    assert args.once is False
    assert args.list_interfaces is None


def test_parse_args_flags():
    args = parse_args(["-c", "/etc/multinic/config.yaml", "--once", "--list-interfaces", "a", "b"])

    assert args.config == "/etc/multinic/config.yaml"
    assert args.once is True
    assert args.list_interfaces == ["a", "b"]


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        parse_args(["--version"])

    assert exc.value.code == 0
    assert "multinic-agent" in capsys.readouterr().out


def test_config_error_exits_1(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.yaml")]) == 1
    assert "Failed to load configuration" in capsys.readouterr().err


def test_database_unreachable_exits_1(monkeypatch, quiet_logging):
    repo = _Repository(ready_error=RepositoryError("refused"))
    monkeypatch.setattr(main_module.InterfaceRepository, "from_settings", classmethod(lambda cls, ctx: repo))

    assert main(["--once"]) == 1
    assert repo.closed is True


def test_once_runs_single_cycle(repository):
    assert main(["--once"]) == 0

    assert repository.fetched == ["worker-1"]
    assert repository.reports == [("port-1", True)]
    assert repository.closed is True


def test_once_failure_exits_1(repository):
    repository.fetch_error = RepositoryError("query failed")

    assert main(["--once"]) == 1


def test_list_interfaces_defaults_to_this_node(repository, capsys):
    assert main(["--list-interfaces"]) == 0

    out = capsys.readouterr().out
    assert "=== Interfaces for worker-1 ===" in out
    assert "port-1: fa:16:3e:00:00:01 192.168.10.0/24 [pending]" in out
    assert repository.reports == []


def test_list_interfaces_reports_errors(capsys):
    repo = FakeRepository(fetch_error=RepositoryError("boom"))

    assert list_interfaces(repo, ["worker-1", "worker-2"]) == 1
    assert "error: boom" in capsys.readouterr().err


def test_list_interfaces_empty(capsys):
    assert list_interfaces(FakeRepository([]), ["worker-1"]) == 0
    assert "(none)" in capsys.readouterr().out


class _Loop:
    def __init__(self, ignore_stop=False):
        self.ignore_stop = ignore_stop
        self.started = False
        self.cancelled = False

    async def run(self, stop):
        self.started = True
        try:
            if self.ignore_stop:
                await asyncio.sleep(3600)
            else:
                await stop.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_serve_stops_on_sigterm(context):
    runner = _Loop()
    asyncio.get_running_loop().call_later(0.05, signal.raise_signal, signal.SIGTERM)

    await asyncio.wait_for(serve(context, runner), timeout=5)

    assert runner.started is True
    assert runner.cancelled is False


@pytest.mark.asyncio
async def test_serve_cancels_busy_loop_after_grace(context):
    runner = _Loop(ignore_stop=True)
    asyncio.get_running_loop().call_later(0.05, signal.raise_signal, signal.SIGINT)

    await asyncio.wait_for(serve(context, runner), timeout=5)

    assert runner.cancelled is True


@pytest.mark.asyncio
async def test_serve_returns_when_loop_ends(context):
    class _Finished:
        async def run(self, stop):
            return None

    await asyncio.wait_for(serve(context, _Finished()), timeout=5)
