"""
Single-instance shutdown handshake over a loopback TCP socket.

A starting launcher first connects to the shutdown port and sends
``shutdown``; a running launcher stops its container, answers
``shutdownConfirmation`` and exits. Then the new launcher binds the same
port itself and waits for its container to terminate.

Both trigger paths (a shutdown command, or the container stopping some
other way) serialize on one re-entrant lock, so the stop/exit sequence runs
once.
"""

from __future__ import annotations

import enum
import logging
import os
import socket
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ShutdownListenerError
from .logs import get_logger, log_action

SHUTDOWN_COMMAND = "shutdown"
SHUTDOWN_CONFIRMATION = "shutdownConfirmation"
LOOPBACK_HOST = "127.0.0.1"

CONNECT_TIMEOUT_SEC = 0.1
HANDSHAKE_TIMEOUT_SEC = 10.0
# A client that connects and stays silent holds up the accept loop this long.
COMMAND_READ_TIMEOUT_SEC = 1.0


def shutdown_enabled(port: Optional[int]) -> bool:
    return port is not None and port > 0


@dataclass(frozen=True)
class ShutdownEndpoint:
    port: Optional[int] = None
    host: str = LOOPBACK_HOST

    @property
    def enabled(self) -> bool:
        return shutdown_enabled(self.port)


class ShutdownState(str, enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    STOPPING = "stopping"
    STOPPED = "stopped"
    PROCESS_EXIT = "process_exit"


class ShutdownListener(threading.Thread):
    """Accept loop on an already bound server socket."""

    def __init__(self, coordinator: "ShutdownCoordinator", server_socket: socket.socket, container, port: int):
        super().__init__(name=f"ShutdownListener[{port}]", daemon=True)
        self.coordinator = coordinator
        self.server_socket = server_socket
        self.container = container
        self.port = port
        self._stopped = threading.Event()

    def run(self) -> None:
        logger = self.coordinator.logger
        log_action(logger, "SHUTDOWN", f"Start listening for shutdown commands on port: {self.port}")
        try:
            while not self._stopped.is_set():
                try:
                    client, _ = self.server_socket.accept()
                except OSError as e:
                    if not self._stopped.is_set():
                        logger.debug("Shutdown listener on port %s closed: %s", self.port, e)
                    break
                with client:
                    try:
                        client.settimeout(self.coordinator.read_timeout)
                        self.coordinator.handle_connection(client, self.container)
                    except (OSError, ValueError) as e:
                        logger.debug("Cannot handle shutdown connection: %s", e)
        finally:
            self.server_socket.close()

    def stop(self) -> None:
        self._stopped.set()
        try:
            self.server_socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.server_socket.close()


class ShutdownCoordinator:
    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        exit_func: Callable[[int], None] = sys.exit,
        abort_func: Callable[[int], None] = os._exit,
        connect_timeout: float = CONNECT_TIMEOUT_SEC,
        handshake_timeout: float = HANDSHAKE_TIMEOUT_SEC,
        read_timeout: float = COMMAND_READ_TIMEOUT_SEC,
    ):
        self.logger = logger or get_logger()
        self.exit_func = exit_func
        self.abort_func = abort_func
        self.connect_timeout = connect_timeout
        self.handshake_timeout = handshake_timeout
        self.read_timeout = read_timeout
        self.lock = threading.RLock()
        self.state = ShutdownState.IDLE
        self.listener: Optional[ShutdownListener] = None

    # -------------------------
    # Client role
    # -------------------------

    def shutdown_existing_server(self, port: Optional[int], host: str = LOOPBACK_HOST) -> bool:
        """
        Ask a launcher listening on ``port`` to shut down. Never raises; a
        missing listener is the normal case. Returns True when the previous
        instance confirmed.
        """
        if not shutdown_enabled(port):
            return False

        self.logger.debug("Try shutting down running server using %s:%s", host, port)
        try:
            with socket.create_connection((host, port), timeout=self.connect_timeout) as sock:
                sock.settimeout(self.handshake_timeout)
                sock.sendall(f"{SHUTDOWN_COMMAND}\n".encode("utf-8"))
                self.logger.debug("Shutdown command successfully sent to running server")
                return self._await_confirmation(sock)
        except OSError as e:
            self.logger.debug("No running server detected or server could not be shut down [%s]", e)
            return False

    def _await_confirmation(self, sock: socket.socket) -> bool:
        confirmed = False
        try:
            with sock.makefile("r", encoding="utf-8") as reader:
                for line in reader:
                    if line.rstrip("\r\n") == SHUTDOWN_CONFIRMATION:
                        confirmed = True
                        self.logger.debug("Previous server instance confirmed shutdown")
        except (OSError, ValueError) as e:
            self.logger.debug("No response from server that was to be shut down - it may be stopped, it may not [%s]", e)
        if not confirmed:
            self.logger.debug("Previous server instance closed the connection without confirmation")
        return confirmed

    # -------------------------
    # Server role
    # -------------------------

    def listen(self, container, port: int, host: str = LOOPBACK_HOST) -> ShutdownListener:
        """Bind the shutdown port and start the accept loop."""
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((host, port))
            server_socket.listen()
        except OSError as e:
            server_socket.close()
            raise ShutdownListenerError(port, e) from e

        self.listener = ShutdownListener(self, server_socket, container, port)
        self.state = ShutdownState.LISTENING
        self.listener.start()
        return self.listener

    def install_for_server(self, container, port: Optional[int], host: str = LOOPBACK_HOST) -> None:
        """
        Listen for shutdown commands and block until ``container`` has
        terminated, then exit the process with status 0. Returns at once when
        ``port`` is disabled; the caller then waits on the container itself.
        """
        if not shutdown_enabled(port):
            self.logger.debug("No shutdown port configured, shutdown listener disabled")
            return

        self.listen(container, port, host)
        try:
            container.await_termination()
            log_action(self.logger, "SHUTDOWN", "Embedded webserver has been stopped - exiting application")
            with self.lock:
                self.state = ShutdownState.PROCESS_EXIT
                self.exit_func(0)
        finally:
            self.close()

    def handle_connection(self, client: socket.socket, container) -> None:
        with client.makefile("r", encoding="utf-8") as reader:
            for line in reader:
                if line.strip().lower() == SHUTDOWN_COMMAND:
                    self.handle_shutdown_command(client, container)
                    return

    def handle_shutdown_command(self, client: socket.socket, container) -> None:
        with self.lock:
            log_action(self.logger, "SHUTDOWN", "Shutdown command received - stopping embedded webserver")
            try:
                try:
                    self.stop_container(container)
                finally:
                    self._send_confirmation(client)
            except Exception as e:
                self.logger.error("Cannot stop embedded webserver correctly - forcing process exit | %s", e, exc_info=True)
                self.state = ShutdownState.PROCESS_EXIT
                self.abort_func(1)

    def stop_container(self, container) -> None:
        with self.lock:
            if self.state in (ShutdownState.STOPPED, ShutdownState.PROCESS_EXIT) or not container.is_running:
                self.logger.debug("Embedded webserver already stopped")
                return
            self.state = ShutdownState.STOPPING
            container.stop()
            self.state = ShutdownState.STOPPED

    def _send_confirmation(self, client: socket.socket) -> None:
        try:
            client.sendall(f"{SHUTDOWN_CONFIRMATION}\n".encode("utf-8"))
        except OSError as e:
            self.logger.debug("Could not send shutdown confirmation: %s", e)

    def close(self) -> None:
        if self.listener is not None:
            self.listener.stop()
            self.listener = None
