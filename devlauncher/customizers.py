"""
Hooks that shape the container before it starts.

Each customizer is handed the container and the launcher. Generated
webapps do not copy anything themselves: they register their copy
definitions with the launcher, which opens the sync sessions once the
container is up and closes them when it stops.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

from .container import Container
from .filters import FileFilter
from .logs import log_action
from .mirror import PathMirror

if TYPE_CHECKING:
    from .launcher import DevLauncher


class LauncherCustomizer(Protocol):
    def customize(self, container: Container, launcher: "DevLauncher") -> None: ...


@dataclass
class ConnectorCustomizer:
    """Additional listening port next to the default one."""

    port: int
    host: str = ""

    def customize(self, container: Container, launcher: "DevLauncher") -> None:
        container.add_connector(self.port, self.host)


@dataclass
class WebappCustomizer:
    """Serves an existing (exploded) webapp directory as-is."""

    context_path: str
    directory: Path

    def customize(self, container: Container, launcher: "DevLauncher") -> None:
        directory = Path(self.directory).expanduser().resolve()
        if not directory.is_dir():
            raise FileNotFoundError(f"Webapp directory not existing at: {directory}")
        container.add_webapp(self.context_path, directory)


@dataclass
class CopyDefinition:
    """
    One overlay of a generated webapp: files below ``source_directory`` are
    mirrored into the webapp directory, or into ``target_directory_name``
    below it when given.
    """

    source_directory: Path
    file_filter: Optional[FileFilter] = None
    target_directory_name: Optional[str] = None

    def target_for(self, webapp_directory: Path) -> Path:
        if not self.target_directory_name:
            return webapp_directory
        return webapp_directory / self.target_directory_name


@dataclass
class GeneratedWebappCustomizer:
    """
    Builds a webapp in ``target_directory`` from several source overlays,
    a little like a Maven overlay, and keeps it in sync while running.
    """

    context_path: str
    target_directory: Path
    copies: list[CopyDefinition] = field(default_factory=list)

    def customize(self, container: Container, launcher: "DevLauncher") -> None:
        target_directory = Path(self.target_directory).expanduser().resolve()
        if not target_directory.exists():
            launcher.logger.debug("Creating web application target directory at: %s", target_directory)
            target_directory.mkdir(parents=True, exist_ok=True)

        for copy in self.copies:
            launcher.add_sync(copy.source_directory, copy.target_for(target_directory), copy.file_filter)
        container.add_webapp(self.context_path, target_directory)


@dataclass
class CopyResourcesCustomizer:
    """One-shot copy of stale resources before the container starts."""

    source_directory: Path
    target_directory: Path
    file_filter: Optional[FileFilter] = None
    recursive: bool = True

    def customize(self, container: Container, launcher: "DevLauncher") -> None:
        logger = launcher.logger
        source = Path(self.source_directory).expanduser().resolve()
        target = Path(self.target_directory).expanduser().resolve()
        if not source.is_dir():
            logger.warning("Cannot find resource copy source directory at: %s", source)
            return

        copied = PathMirror(self.file_filter, logger).sync_directory(source, target, recursive=self.recursive)
        log_action(logger, "COPY", f"Copied {copied} files from '{source}' into '{target}'", path=target, is_dir=True)
