from __future__ import annotations


class DevLauncherError(Exception):
    """Base class for launcher failures that abort startup."""


class ConfigError(DevLauncherError, ValueError):
    pass


class ShutdownListenerError(DevLauncherError):
    """The shutdown port could not be bound."""

    def __init__(self, port: int, cause: OSError):
        super().__init__(f"Cannot listen for shutdown commands on port {port}: {cause}")
        self.port = port
        self.cause = cause
