"""Node agent that keeps host netplan configuration in sync with the control plane."""

from multinic_agent.version import __version__

__all__ = ["__version__"]
