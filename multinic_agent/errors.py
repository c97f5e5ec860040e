"""Exception hierarchy for the multinic agent."""


class MultinicError(Exception):
    """Base class for all agent errors."""


class ConfigError(MultinicError):
    """Configuration could not be loaded or is invalid."""


class RepositoryError(MultinicError):
    """The interface repository could not be queried or updated."""


class NetplanError(MultinicError):
    """Base class for netplan generation, write, validate and apply errors."""


class NetplanWriteError(NetplanError):
    """The netplan file could not be written."""


class NetplanValidationError(NetplanError):
    """netplan rejected the on-disk configuration."""


class NetplanApplyError(NetplanError):
    """Every apply strategy failed, including configuration regeneration."""


class ReconcileError(MultinicError):
    """A reconciliation cycle failed."""
