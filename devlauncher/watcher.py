"""
Per-directory filesystem watches feeding a single dispatch worker.

Every directory of a source tree gets its own non-recursive watchdog
schedule. The returned ``ObservedWatch`` is the subscription handle; the
tracking table maps it to the (source, target) pair it mirrors. Observer
threads only enqueue events, the ``DispatchWorker`` applies them to the
target tree one at a time, in the order they were reported.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from .logs import get_logger, log_action
from .mirror import PathMirror, delete_path

_CLOSED = object()


@dataclass(frozen=True)
class WatchRegistration:
    source_path: Path
    target_path: Path
    handle: ObservedWatch


class RegistrationHandler(FileSystemEventHandler):
    """Forwards the events of one watch into the dispatch channel."""

    def __init__(self, channel: queue.Queue):
        self.channel = channel
        self.handle: Optional[ObservedWatch] = None

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.channel.put((self, event))


class DispatchWorker(threading.Thread):
    def __init__(self, watcher: "DirectoryWatcher", name: str):
        super().__init__(name=name, daemon=True)
        self.watcher = watcher

    def run(self) -> None:
        channel = self.watcher.channel
        logger = self.watcher.logger
        logger.debug("Dispatch worker started: %s", self.name)
        while True:
            item = channel.get()
            try:
                if item is _CLOSED or self.watcher.closed:
                    break
                handler, event = item
                try:
                    self.watcher.dispatch(handler.handle, event)
                except Exception as e:
                    logger.warning("Cannot handle %s event for %s | %s", event.event_type, event.src_path, e, exc_info=logger.isEnabledFor(logging.DEBUG))
            finally:
                channel.task_done()
        logger.debug("Dispatch worker stopped: %s", self.name)


def _event_path(raw) -> Path:
    return Path(os.fsdecode(raw))


class DirectoryWatcher:
    def __init__(
        self,
        mirror: PathMirror,
        observer: Optional[BaseObserver] = None,
        logger: Optional[logging.Logger] = None,
        name: str = "DirectoryWatcher",
    ):
        self.mirror = mirror
        self.observer = observer if observer is not None else Observer()
        self.logger = logger or get_logger()
        self.channel: queue.Queue = queue.Queue()
        self.closed = False
        self._registrations: dict[ObservedWatch, WatchRegistration] = {}
        self._by_source: dict[Path, ObservedWatch] = {}
        self._root_targets: set[Path] = set()
        self._guard = threading.Lock()
        self._worker = DispatchWorker(self, name=name)

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self) -> None:
        self.observer.start()
        self._worker.start()

    def close(self, timeout: float = 10.0) -> None:
        with self._guard:
            if self.closed:
                return
            self.closed = True
            registrations = list(self._registrations.values())
            self._registrations.clear()
            self._by_source.clear()

        for registration in registrations:
            self._unschedule(registration)
        self.observer.stop()
        self.channel.put(_CLOSED)

        current = threading.current_thread()
        if self._worker.is_alive() and current is not self._worker:
            self._worker.join(timeout=timeout)
        if self.observer.is_alive() and current is not self.observer:
            self.observer.join(timeout=timeout)

    def wait_idle(self) -> None:
        """Block until every event queued so far has been handled."""
        self.channel.join()

    # -------------------------
    # Tracking table
    # -------------------------

    @property
    def registrations(self) -> list[WatchRegistration]:
        with self._guard:
            return list(self._registrations.values())

    def lookup(self, handle: Optional[ObservedWatch]) -> Optional[WatchRegistration]:
        if handle is None:
            return None
        with self._guard:
            return self._registrations.get(handle)

    def registration_for_directory(self, source: Path) -> Optional[WatchRegistration]:
        with self._guard:
            handle = self._by_source.get(source)
            return self._registrations.get(handle) if handle is not None else None

    def watch_root(self, source: Path, target: Path) -> int:
        """Watch a whole source tree; its target root is never deleted by events."""
        self._root_targets.add(target)
        return self.register_recursive(source, target)

    def register_recursive(self, source: Path, target: Path) -> int:
        """Register ``source`` and every directory below it. Returns the number of new watches."""
        registered = 0
        if self._register(source, target) is not None:
            registered += 1
        try:
            children = sorted(child for child in source.iterdir() if child.is_dir())
        except OSError as e:
            self.logger.debug("Cannot process source directory: %s | %s", source, e)
            return registered
        for child in children:
            registered += self.register_recursive(child, target / child.name)
        return registered

    def _register(self, source: Path, target: Path) -> Optional[WatchRegistration]:
        with self._guard:
            if self.closed or source in self._by_source:
                return None

        handler = RegistrationHandler(self.channel)
        try:
            handle = self.observer.schedule(handler, str(source), recursive=False)
        except OSError as e:
            self.logger.debug("Cannot watch source directory: %s | %s", source, e)
            return None
        handler.handle = handle

        registration = WatchRegistration(source_path=source, target_path=target, handle=handle)
        with self._guard:
            self._registrations[handle] = registration
            self._by_source[source] = handle
        log_action(self.logger, "WATCH", f"{source} -> {target}", path=source, is_dir=True, level=logging.DEBUG)
        return registration

    def unregister_below(self, source: Path) -> int:
        """Drop the watches of ``source`` and of every directory below it."""
        with self._guard:
            doomed = [
                registration
                for registration in self._registrations.values()
                if registration.source_path == source or source in registration.source_path.parents
            ]
            for registration in doomed:
                del self._registrations[registration.handle]
                self._by_source.pop(registration.source_path, None)
        for registration in doomed:
            self._unschedule(registration)
        return len(doomed)

    def _unschedule(self, registration: WatchRegistration) -> None:
        try:
            self.observer.unschedule(registration.handle)
        except (KeyError, OSError) as e:
            self.logger.debug("Watch already gone: %s | %s", registration.source_path, e)
        log_action(self.logger, "UNWATCH", f"{registration.source_path}", path=registration.source_path, is_dir=True, level=logging.DEBUG)

    # -------------------------
    # Event dispatch
    # -------------------------

    def dispatch(self, handle: Optional[ObservedWatch], event: FileSystemEvent) -> None:
        registration = self.lookup(handle)
        if registration is None:
            self.logger.debug("No watched directory for %s event: %s", event.event_type, event.src_path)
            return

        source = _event_path(event.src_path)
        kind = event.event_type

        if kind == EVENT_TYPE_MOVED:
            self._handle_deleted(registration, source)
            destination = _event_path(event.dest_path)
            dest_registration = self.registration_for_directory(destination.parent)
            if dest_registration is not None:
                self._handle_created(dest_registration, destination)
            return

        if kind == EVENT_TYPE_CREATED:
            self._handle_created(registration, source)
        elif kind in (EVENT_TYPE_MODIFIED, EVENT_TYPE_CLOSED):
            self._handle_modified(registration, source)
        elif kind == EVENT_TYPE_DELETED:
            self._handle_deleted(registration, source)

    def _target_for(self, registration: WatchRegistration, source: Path) -> Optional[Path]:
        try:
            rel = source.relative_to(registration.source_path)
        except ValueError:
            return None
        return registration.target_path / rel

    def _handle_created(self, registration: WatchRegistration, source: Path) -> None:
        target = self._target_for(registration, source)
        if target is None:
            return
        if source.is_dir():
            # Watch first so nothing written during the copy is missed.
            self.register_recursive(source, target)
            copied = self.mirror.sync_directory(source, target)
            log_action(self.logger, "MKDIR", f"(created) {target} [{copied} files]", path=target, is_dir=True)
        else:
            self._copy(source, target, "created")

    def _handle_modified(self, registration: WatchRegistration, source: Path) -> None:
        target = self._target_for(registration, source)
        if target is None:
            return
        self._copy(source, target, "modified")

    def _copy(self, source: Path, target: Path, reason: str) -> None:
        if not source.is_file() or not self.mirror.accepts(source):
            return
        if self.mirror.copy_file(source, target, reason):
            log_action(self.logger, "COPY", f"({reason}) {source} -> {target}", path=target, is_dir=False)

    def _handle_deleted(self, registration: WatchRegistration, source: Path) -> None:
        target = self._target_for(registration, source)
        if target is None:
            return
        self.unregister_below(source)
        if target in self._root_targets:
            self.logger.warning("Source root removed, keeping target: %s", target)
            return
        was_dir = target.is_dir()
        if delete_path(target):
            log_action(self.logger, "DELETE", f"{target}", path=target, is_dir=was_dir)
