class ConfigurationError(Exception):
    """Configuration could not produce a usable set of targets."""


class StorageError(Exception):
    """The result store failed to open, read or write."""


class MonitorAlreadyRunningError(RuntimeError):
    pass
