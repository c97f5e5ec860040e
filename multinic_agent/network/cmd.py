"""Command execution for network modules.

All external programs (netplan, nsenter, systemd-run, networkctl, systemctl)
go through ``CommandRunner.run`` so callers can be tested with a fake runner.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

# Enter the namespaces of PID 1 (the host init when running with pid:host):
# mount, UTS, network, IPC and PID.
NSENTER_PREFIX = ("nsenter", "-t", "1", "-m", "-u", "-n", "-i", "-p", "--")

TIMEOUT_RETURNCODE = 124
NOT_FOUND_RETURNCODE = 127
EXEC_FAILED_RETURNCODE = 126


def host_command(cmd: list[str] | tuple[str, ...]) -> list[str]:
    """Wrap a command so it runs inside the host's namespaces."""
    return [*NSENTER_PREFIX, *cmd]


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """Short diagnostic string for logs and error messages."""
        detail = self.stderr.strip() or self.stdout.strip()
        text = f"exit {self.returncode}"
        if detail:
            text += f": {detail}"
        return text


class CommandRunner:
    """Run commands synchronously, optionally inside the host namespaces."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    def run(
        self,
        cmd: list[str] | tuple[str, ...],
        host_namespace: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Launch failures and timeouts are reported through the return code
        (127 not found, 126 not executable, 124 timed out) instead of raising.

        Args:
            cmd: Command and arguments
            host_namespace: Run through nsenter in PID 1's namespaces
            timeout: Wall-clock limit in seconds, None for no limit

        Returns:
            CommandResult
        """
        argv = tuple(host_command(cmd)) if host_namespace else tuple(cmd)
        self._logger.debug("Running command: %s", " ".join(argv))
        try:
            completed = subprocess.run(
                list(argv),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(argv, TIMEOUT_RETURNCODE, stderr=f"Command timed out after {timeout}s")
        except FileNotFoundError as e:
            return CommandResult(argv, NOT_FOUND_RETURNCODE, stderr=str(e))
        except OSError as e:
            return CommandResult(argv, EXEC_FAILED_RETURNCODE, stderr=str(e))

        return CommandResult(
            argv,
            completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
