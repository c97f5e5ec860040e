"""Tests for the command runner."""

from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from multinic_agent.network import cmd as cmd_module
from multinic_agent.network.cmd import (
    NSENTER_PREFIX,
    CommandResult,
    CommandRunner,
    host_command,
)


@pytest.fixture
def recorded(monkeypatch):
    calls = []

    def fake_run(argv, **kwargs):
        calls.append(SimpleNamespace(argv=argv, kwargs=kwargs))
        return subprocess.CompletedProcess(argv, 0, stdout="done\n", stderr="")

    monkeypatch.setattr(cmd_module.subprocess, "run", fake_run)
    return calls


def test_host_command_prefix():
    assert host_command(["netplan", "apply"]) == [
        "nsenter", "-t", "1", "-m", "-u", "-n", "-i", "-p", "--", "netplan", "apply",
    ]


def test_runs_command_directly(recorded):
    result = CommandRunner().run(["netplan", "generate"], timeout=5)

    assert result.ok is True
    assert result.argv == ("netplan", "generate")
    assert result.stdout == "done\n"
    assert recorded[0].argv == ["netplan", "generate"]
    assert recorded[0].kwargs["timeout"] == 5
    assert recorded[0].kwargs["capture_output"] is True
    assert recorded[0].kwargs["text"] is True


def test_runs_command_in_host_namespace(recorded):
    result = CommandRunner().run(("netplan", "apply"), host_namespace=True)

    assert recorded[0].argv == [*NSENTER_PREFIX, "netplan", "apply"]
    assert result.argv[: len(NSENTER_PREFIX)] == NSENTER_PREFIX


def test_non_zero_exit_is_returned(monkeypatch):
    monkeypatch.setattr(
        cmd_module.subprocess,
        "run",
        lambda argv, **kw: subprocess.CompletedProcess(argv, 78, stdout="", stderr="bad yaml\n"),
    )

    result = CommandRunner().run(["netplan", "generate"])

    assert result.ok is False
    assert result.returncode == 78
    assert result.describe() == "exit 78: bad yaml"


def test_timeout_maps_to_124(monkeypatch):
    def fake_run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

    monkeypatch.setattr(cmd_module.subprocess, "run", fake_run)

    result = CommandRunner().run(["netplan", "apply"], timeout=0.5)

    assert result.returncode == 124
    assert "timed out" in result.stderr


def test_missing_binary_maps_to_127(monkeypatch):
    def fake_run(argv, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", argv[0])

    monkeypatch.setattr(cmd_module.subprocess, "run", fake_run)

    result = CommandRunner().run(["nsenter", "--help"])

    assert result.returncode == 127
    assert result.ok is False


def test_permission_error_maps_to_126(monkeypatch):
    def fake_run(argv, **kwargs):
        raise PermissionError(13, "Permission denied", argv[0])

    monkeypatch.setattr(cmd_module.subprocess, "run", fake_run)

    assert CommandRunner().run(["netplan"]).returncode == 126


def test_describe_without_output():
    assert CommandResult(("true",), 1).describe() == "exit 1"
