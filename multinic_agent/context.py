"""Explicit runtime context handed to every agent component."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from multinic_agent.config import Settings


@dataclass(frozen=True)
class AgentContext:
    """Settings and logger shared by the components of one agent process.

    Components take the context in their constructor instead of reading
    module-level singletons, so tests can build them with any settings.
    """

    settings: Settings = field(default_factory=Settings)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("multinic_agent"))

    def get_logger(self, name: str) -> logging.Logger:
        """Return a child logger for a component."""
        return self.logger.getChild(name)

    @property
    def simulate(self) -> bool:
        """True when running in simulate-only (dry run) mode."""
        return self.settings.netplan.dry_run
