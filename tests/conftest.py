from __future__ import annotations

import logging
import socket
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import pytest

from devlauncher.container import Container
from devlauncher.logs import LOGGER_NAME


class FakeContainer(Container):
    """In-memory container counting stop() calls."""

    def __init__(self, stop_error: Optional[Exception] = None, stop_delay: float = 0.0):
        self.connectors: list[tuple[str, int]] = []
        self.webapps: dict[str, Path] = {}
        self.stop_listeners: list[Callable[[], None]] = []
        self.stop_calls = 0
        self.stop_error = stop_error
        self.stop_delay = stop_delay
        self._running = False
        self._terminated = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        with self._lock:
            self.stop_calls += 1
        if self.stop_delay:
            time.sleep(self.stop_delay)
        if self.stop_error is not None:
            raise self.stop_error
        if not self._running:
            return
        self._running = False
        for callback in self.stop_listeners:
            callback()
        self._terminated.set()

    def await_termination(self, timeout: Optional[float] = None) -> bool:
        return self._terminated.wait(timeout)

    def add_connector(self, port: int, host: str = "") -> None:
        self.connectors.append((host, port))

    def add_webapp(self, context_path: str, directory: Path) -> None:
        self.webapps[context_path] = Path(directory)

    def add_stop_listener(self, callback: Callable[[], None]) -> None:
        self.stop_listeners.append(callback)


class ExitRecorder:
    def __init__(self):
        self.codes: list[int] = []
        self.called = threading.Event()

    def __call__(self, code: int) -> None:
        self.codes.append(code)
        self.called.set()


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


@pytest.fixture
def devlauncher_logger():
    """The package logger with its handlers, level and propagation restored afterwards."""
    logger = logging.getLogger(LOGGER_NAME)
    saved_handlers = list(logger.handlers)
    saved_level = logger.level
    saved_propagate = logger.propagate
    logger.handlers.clear()
    yield logger
    for handler in logger.handlers:
        if handler not in saved_handlers:
            handler.close()
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)
    logger.propagate = saved_propagate


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("devlauncher.tests")


@pytest.fixture
def container() -> FakeContainer:
    return FakeContainer()


@pytest.fixture
def port() -> int:
    return free_port()


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def target(tmp_path: Path) -> Path:
    return tmp_path / "target"
