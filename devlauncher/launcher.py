from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .config import LauncherConfig, ensure_working_directory
from .container import Container, HttpContainer
from .customizers import (
    ConnectorCustomizer,
    CopyDefinition,
    CopyResourcesCustomizer,
    GeneratedWebappCustomizer,
    LauncherCustomizer,
    WebappCustomizer,
)
from .filters import FileFilter, exclude_filter
from .logs import get_logger
from .shutdown import ShutdownCoordinator
from .sync import ObserverFactory, SyncSession, observer_factory


class DevLauncher:
    """
    Runs one container per shutdown port.

    ``launch`` stops a previous instance, builds and starts the container,
    opens the registered sync sessions and then hands the process over to the
    shutdown coordinator.
    """

    def __init__(
        self,
        config: LauncherConfig,
        container_factory: Optional[Callable[[], Container]] = None,
        coordinator: Optional[ShutdownCoordinator] = None,
        logger: Optional[logging.Logger] = None,
        observers: Optional[ObserverFactory] = None,
    ):
        self.config = config
        self.logger = logger or get_logger()
        self.container_factory = container_factory or (lambda: HttpContainer(logger=self.logger))
        self.coordinator = coordinator or ShutdownCoordinator(logger=self.logger)
        self.observers = observers or observer_factory(config.polling)
        self.customizers: list[LauncherCustomizer] = []
        self.sync_definitions: list[tuple[Path, Path, Optional[FileFilter]]] = []
        self.sync_sessions: list[SyncSession] = []
        self.container: Optional[Container] = None

    @classmethod
    def from_config(cls, config: LauncherConfig, **kwargs) -> "DevLauncher":
        launcher = cls(config, **kwargs)
        for port in config.connectors:
            launcher.add_customizer(ConnectorCustomizer(port))
        for resource in config.copy_resources:
            launcher.add_customizer(
                CopyResourcesCustomizer(
                    source_directory=resource.source,
                    target_directory=resource.target,
                    file_filter=exclude_filter(resource.source, resource.exclude),
                    recursive=resource.recursive,
                )
            )
        for webapp in config.webapps:
            if not webapp.generated:
                launcher.add_customizer(WebappCustomizer(webapp.context_path, webapp.directory))
                continue
            copies = [
                CopyDefinition(
                    source_directory=copy.source,
                    file_filter=exclude_filter(copy.source, copy.exclude),
                    target_directory_name=copy.target_directory_name,
                )
                for copy in webapp.copies
            ]
            launcher.add_customizer(GeneratedWebappCustomizer(webapp.context_path, webapp.target_directory, copies))
        return launcher

    def add_customizer(self, customizer: LauncherCustomizer) -> None:
        self.customizers.append(customizer)

    def add_sync(self, source: Path, target: Path, file_filter: Optional[FileFilter] = None) -> None:
        self.sync_definitions.append((Path(source), Path(target), file_filter))

    # -------------------------
    # Lifecycle
    # -------------------------

    def prepare(self) -> Container:
        ensure_working_directory(self.config, self.logger)
        container = self.container_factory()
        if self.config.default_port:
            container.add_connector(self.config.default_port)
        for customizer in self.customizers:
            customizer.customize(container, self)
        self.container = container
        return container

    def open_sync_sessions(self) -> list[SyncSession]:
        for source, target, file_filter in self.sync_definitions:
            session = SyncSession.create(source, target, file_filter, logger=self.logger, observer=self.observers())
            self.sync_sessions.append(session)
        if self.sync_sessions and self.container is not None:
            self.container.add_stop_listener(self.close_sync_sessions)
        return self.sync_sessions

    def close_sync_sessions(self) -> None:
        for session in self.sync_sessions:
            try:
                session.close()
            except Exception as e:
                self.logger.warning("Cannot close sync session for %s: %s", session.source_root, e)

    def launch(self) -> None:
        endpoint = self.config.shutdown
        self.coordinator.shutdown_existing_server(endpoint.port, endpoint.host)

        container = self.prepare()
        self.logger.info("Starting embedded webserver")
        container.start()

        try:
            self.open_sync_sessions()
            self.coordinator.install_for_server(container, endpoint.port, endpoint.host)
            container.await_termination()
        except KeyboardInterrupt:
            self.logger.info("Stopping...")
        finally:
            self.coordinator.stop_container(container)
            self.close_sync_sessions()
