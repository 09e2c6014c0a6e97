from .config import LauncherConfig, build_effective_config
from .container import Container, HttpContainer
from .customizers import (
    ConnectorCustomizer,
    CopyDefinition,
    CopyResourcesCustomizer,
    GeneratedWebappCustomizer,
    LauncherCustomizer,
    WebappCustomizer,
)
from .errors import ConfigError, DevLauncherError, ShutdownListenerError
from .launcher import DevLauncher
from .mirror import PathMirror, needs_update
from .shutdown import ShutdownCoordinator, ShutdownEndpoint
from .sync import SyncSession
from .watcher import DirectoryWatcher, WatchRegistration

__version__ = "1.0.0"

__all__ = [
    "ConfigError",
    "ConnectorCustomizer",
    "Container",
    "CopyDefinition",
    "CopyResourcesCustomizer",
    "DevLauncher",
    "DevLauncherError",
    "DirectoryWatcher",
    "GeneratedWebappCustomizer",
    "HttpContainer",
    "LauncherConfig",
    "LauncherCustomizer",
    "PathMirror",
    "ShutdownCoordinator",
    "ShutdownEndpoint",
    "ShutdownListenerError",
    "SyncSession",
    "WatchRegistration",
    "WebappCustomizer",
    "build_effective_config",
    "needs_update",
]
