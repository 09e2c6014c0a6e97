"""
The embedded web container the launcher starts and stops.

``Container`` is the contract the launcher relies on. ``HttpContainer``
fulfils it with the standard library's threading HTTP server: one server per
connector, each serving the registered webapp directories by context path.
"""

from __future__ import annotations

import abc
import logging
import threading
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Optional

from .logs import get_logger, log_action


def normalize_context_path(context_path: Optional[str]) -> str:
    value = (context_path or "").strip().strip("/")
    return f"/{value}" if value else "/"


class Container(abc.ABC):
    @property
    @abc.abstractmethod
    def is_running(self) -> bool: ...

    @abc.abstractmethod
    def start(self) -> None: ...

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop serving. Must be safe to call more than once."""

    @abc.abstractmethod
    def await_termination(self, timeout: Optional[float] = None) -> bool:
        """Block until stopped by any means; False if ``timeout`` elapsed first."""

    @abc.abstractmethod
    def add_connector(self, port: int, host: str = "") -> None: ...

    @abc.abstractmethod
    def add_webapp(self, context_path: str, directory: Path) -> None: ...

    @abc.abstractmethod
    def add_stop_listener(self, callback: Callable[[], None]) -> None: ...


class ReusableHTTPServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True


class WebappRequestHandler(SimpleHTTPRequestHandler):
    """Serves files from the webapp whose context path prefixes the request."""

    container: "HttpContainer"

    def __init__(self, *args, container: "HttpContainer", **kwargs):
        self.container = container
        super().__init__(*args, **kwargs)

    def translate_path(self, path: str) -> str:
        match = self.container.resolve_webapp(path.split("?", 1)[0].split("#", 1)[0])
        if match is None:
            return ""
        context_path, directory = match
        self.directory = str(directory)
        remainder = path[len(context_path):] if context_path != "/" else path
        return super().translate_path(remainder or "/")

    def log_message(self, format: str, *args) -> None:
        self.container.logger.debug("%s - %s", self.address_string(), format % args)


class HttpContainer(Container):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger()
        self._connectors: list[tuple[str, int]] = []
        self._webapps: dict[str, Path] = {}
        self._servers: list[ReusableHTTPServer] = []
        self._threads: list[threading.Thread] = []
        self._stop_listeners: list[Callable[[], None]] = []
        self._lock = threading.RLock()
        self._running = False
        self._terminated = threading.Event()

    # -------------------------
    # Configuration
    # -------------------------

    def add_connector(self, port: int, host: str = "") -> None:
        log_action(self.logger, "CONNECTOR", f"Adding connector listening on port {port}")
        self._connectors.append((host, port))

    def add_webapp(self, context_path: str, directory: Path) -> None:
        context_path = normalize_context_path(context_path)
        log_action(self.logger, "WEBAPP", f"Adding webapp '{context_path}' from {directory}", path=directory, is_dir=True)
        self._webapps[context_path] = Path(directory)

    def add_stop_listener(self, callback: Callable[[], None]) -> None:
        self._stop_listeners.append(callback)

    @property
    def webapps(self) -> dict[str, Path]:
        return dict(self._webapps)

    def resolve_webapp(self, request_path: str) -> Optional[tuple[str, Path]]:
        """Longest context path that prefixes ``request_path``."""
        for context_path in sorted(self._webapps, key=len, reverse=True):
            if context_path == "/" or request_path == context_path or request_path.startswith(context_path + "/"):
                return context_path, self._webapps[context_path]
        return None

    # -------------------------
    # Lifecycle
    # -------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def bound_ports(self) -> list[int]:
        return [server.server_address[1] for server in self._servers]

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            handler = partial(WebappRequestHandler, container=self)
            try:
                for host, port in self._connectors:
                    self._servers.append(ReusableHTTPServer((host, port), handler))
            except OSError:
                self._close_servers()
                raise
            for server in self._servers:
                thread = threading.Thread(
                    target=server.serve_forever,
                    name=f"HttpConnector[{server.server_address[1]}]",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
            self._terminated.clear()
            self._running = True
        self.logger.info("Embedded webserver started on ports: %s", ", ".join(str(p) for p in self.bound_ports) or "-")

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            for server in self._servers:
                server.shutdown()
            self._close_servers()
            for thread in self._threads:
                thread.join(timeout=5)
            self._threads.clear()
            listeners = list(self._stop_listeners)

        for callback in listeners:
            try:
                callback()
            except Exception as e:
                self.logger.warning("Stop listener failed: %s", e, exc_info=True)
        self.logger.info("Embedded webserver stopped")
        self._terminated.set()

    def _close_servers(self) -> None:
        for server in self._servers:
            try:
                server.server_close()
            except OSError as e:
                self.logger.debug("Cannot close connector socket: %s", e)
        self._servers.clear()

    def await_termination(self, timeout: Optional[float] = None) -> bool:
        return self._terminated.wait(timeout)
