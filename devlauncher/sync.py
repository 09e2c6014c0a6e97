from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from .errors import ConfigError
from .filters import FileFilter
from .logs import get_logger, log_action
from .mirror import PathMirror
from .watcher import DirectoryWatcher, WatchRegistration

ObserverFactory = Callable[[], BaseObserver]


def observer_factory(polling: bool = False) -> ObserverFactory:
    return PollingObserver if polling else Observer


class SyncSession:
    """
    Keeps ``target_root`` consistent with ``source_root`` until closed.

    ``create`` copies everything that is stale before returning, then
    watches every directory of the source tree and replays changes on a
    single dispatch worker.
    """

    def __init__(self, source_root: Path, target_root: Path, mirror: PathMirror, watcher: DirectoryWatcher):
        self.source_root = source_root
        self.target_root = target_root
        self.mirror = mirror
        self.watcher = watcher
        self.initial_copies = 0

    @classmethod
    def create(
        cls,
        source_root: Path,
        target_root: Path,
        file_filter: Optional[FileFilter] = None,
        logger: Optional[logging.Logger] = None,
        observer: Optional[BaseObserver] = None,
    ) -> "SyncSession":
        logger = logger or get_logger()
        source_root = Path(source_root).expanduser().resolve()
        target_root = Path(target_root).expanduser().resolve()

        if not source_root.exists():
            raise FileNotFoundError(f"Sync source directory does not exist: {source_root}")
        if not source_root.is_dir():
            raise NotADirectoryError(f"Sync source is not a directory: {source_root}")
        if target_root == source_root or source_root in target_root.parents:
            raise ConfigError(f"Sync target must not be inside its source (would cause loops): {target_root}")

        target_root.mkdir(parents=True, exist_ok=True)

        mirror = PathMirror(file_filter=file_filter, logger=logger)
        watcher = DirectoryWatcher(
            mirror,
            observer=observer,
            logger=logger,
            name=f"SyncSession[{source_root} -> {target_root}]",
        )
        session = cls(source_root, target_root, mirror, watcher)

        session.initial_copies = session.sync_directory(source_root, target_root)
        log_action(
            logger,
            "COPY",
            f"(initial sync) {session.initial_copies} files {source_root} -> {target_root}",
            path=target_root,
            is_dir=True,
        )

        watches = watcher.watch_root(source_root, target_root)
        watcher.start()
        log_action(logger, "WATCH", f"{watches} directories below {source_root}", path=source_root, is_dir=True)
        return session

    def sync_directory(self, source: Path, target: Path) -> int:
        return self.mirror.sync_directory(source, target)

    def resync(self) -> int:
        """
        Run a full pass again from the calling thread; returns the number of
        files written. Meant for quiet trees, the dispatch worker may be
        writing to the same target.
        """
        return self.sync_directory(self.source_root, self.target_root)

    @property
    def registrations(self) -> list[WatchRegistration]:
        return self.watcher.registrations

    @property
    def closed(self) -> bool:
        return self.watcher.closed

    def close(self) -> None:
        if self.watcher.closed:
            return
        self.watcher.close()
        log_action(self.watcher.logger, "UNWATCH", f"sync closed {self.source_root}", path=self.source_root, is_dir=True)

    def __enter__(self) -> "SyncSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
