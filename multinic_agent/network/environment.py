"""Execution environment detection.

Decides whether the agent runs inside a container and whether it holds
enough privilege to change the host's network namespace. Both checks are
read-only probes of the filesystem and environment.

The privilege check is a heuristic: it matches the effective capability
mask against two known "all capabilities" values rather than testing for
CAP_NET_ADMIN and CAP_SYS_ADMIN individually. Callers depend only on the
``EnvironmentProbe`` protocol so a precise implementation can replace it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Protocol

# Effective capability masks of a fully privileged process on kernels with
# 38 and 41 defined capabilities.
FULL_CAPABILITY_MASKS = frozenset({"0000003fffffffff", "000001ffffffffff"})

CONTAINER_MARKER = "/.dockerenv"
ORCHESTRATOR_ENV = "KUBERNETES_SERVICE_HOST"
PRIVILEGED_OVERRIDE_ENV = "PRIVILEGED_MODE"


class EnvironmentProbe(Protocol):
    """Capability query used by the applier."""

    def is_containerized(self) -> bool: ...

    def is_privileged(self) -> bool: ...


def parse_effective_capabilities(status_text: str) -> str | None:
    """Return the ``CapEff`` hex mask from /proc/<pid>/status content."""
    for line in status_text.splitlines():
        if line.startswith("CapEff:"):
            return line.split(":", 1)[1].strip().lower()
    return None


class HostEnvironment:
    """Probe the live process environment.

    Paths and the environment mapping are injectable for tests.
    """

    def __init__(
        self,
        container_marker: str = CONTAINER_MARKER,
        init_root: str = "/proc/1/root",
        status_path: str = "/proc/self/status",
        environ: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._container_marker = Path(container_marker)
        self._init_root = Path(init_root)
        self._status_path = Path(status_path)
        self._environ = os.environ if environ is None else environ
        self._logger = logger or logging.getLogger(__name__)

    def is_containerized(self) -> bool:
        """True if a container marker file or orchestrator env var is present."""
        if self._container_marker.exists():
            return True
        return bool(self._environ.get(ORCHESTRATOR_ENV))

    def is_privileged(self) -> bool:
        """True if host namespaces look reachable from this process."""
        try:
            if self._init_root.exists():
                return True
        except OSError:
            # EACCES on stat means the host init root is not reachable
            pass

        mask = self._effective_capabilities()
        if mask is not None and mask in FULL_CAPABILITY_MASKS:
            return True

        return self._environ.get(PRIVILEGED_OVERRIDE_ENV, "").lower() == "true"

    def _effective_capabilities(self) -> str | None:
        try:
            content = self._status_path.read_text()
        except OSError as e:
            self._logger.debug(f"Cannot read {self._status_path}: {e}")
            return None
        return parse_effective_capabilities(content)

    def describe(self) -> dict[str, bool]:
        """Snapshot of both checks, for logging."""
        return {
            "containerized": self.is_containerized(),
            "privileged": self.is_privileged(),
        }
