"""TCP listener for zeroscaler.

This module accepts client connections, hands each one to the scale controller
on its own thread, and coordinates graceful shutdown.
"""

import logging
import socket
import threading
import time

from zeroscaler.config import format_address, parse_listen_address
from zeroscaler.controller import ScaleController

logger = logging.getLogger(__name__)


class ProxyServer:
    """Listening socket and accept loop.

    In-flight connection handlers are tracked so that shutdown can wait for them,
    up to a timeout.
    """

    # Seconds accept() blocks before checking for a stop request
    ACCEPT_POLL_INTERVAL = 0.5

    def __init__(self, controller: ScaleController, listen_addr: str):
        """Initialize the server.

        Args:
            controller: Controller handling each accepted connection.
            listen_addr: Address to listen on, e.g. ":8080".
        """
        self.controller = controller
        self.listen_addr = listen_addr
        self.host, self.port = parse_listen_address(listen_addr)
        self._listener: socket.socket | None = None
        self._stopping = threading.Event()
        self._sessions = 0
        self._sessions_done = threading.Condition()

    @property
    def address(self) -> tuple[str, int]:
        """The bound address, with the actual port when listening on port 0."""
        if self._listener is None:
            raise RuntimeError("Server is not bound")
        return self._listener.getsockname()[:2]

    @property
    def active_sessions(self) -> int:
        with self._sessions_done:
            return self._sessions

    def bind(self) -> None:
        """Create the listening socket.

        Raises:
            OSError: If the address cannot be bound.
        """
        if self.host:
            family = socket.getaddrinfo(self.host, self.port, type=socket.SOCK_STREAM)[0][0]
            self._listener = socket.create_server((self.host, self.port), family=family)
        elif socket.has_dualstack_ipv6():
            self._listener = socket.create_server(("", self.port), family=socket.AF_INET6, dualstack_ipv6=True)
        else:
            self._listener = socket.create_server(("", self.port))
        self._listener.settimeout(self.ACCEPT_POLL_INTERVAL)
        logger.info(
            f"TCP proxy listening on {self.listen_addr} for StatefulSet "
            f"{self.controller.namespace}/{self.controller.name}"
        )

    def serve_forever(self) -> None:
        """Accept connections until stop() is called."""
        if self._listener is None:
            self.bind()
        listener = self._listener

        while not self._stopping.is_set():
            try:
                client, address = listener.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if self._stopping.is_set():
                    break
                logger.warning(f"Failed to accept connection: {e}")
                continue
            client.settimeout(None)
            self._start_session(client, format_address(address[0], address[1]))
        logger.info("Exited connection accept loop")

    def _start_session(self, client: socket.socket, client_addr: str) -> None:
        with self._sessions_done:
            self._sessions += 1
        thread = threading.Thread(
            target=self._run_session, args=(client, client_addr), name=f"conn-{client_addr}", daemon=True
        )
        try:
            thread.start()
        except RuntimeError as e:
            logger.error(f"Could not start handler for {client_addr}: {e}")
            client.close()
            self._session_finished()

    def _run_session(self, client: socket.socket, client_addr: str) -> None:
        try:
            self.controller.handle_connection(client, client_addr)
        finally:
            self._session_finished()

    def _session_finished(self) -> None:
        with self._sessions_done:
            self._sessions -= 1
            if self._sessions == 0:
                self._sessions_done.notify_all()

    def stop(self) -> None:
        """Stop accepting connections and close the listener."""
        if self._stopping.is_set():
            return
        self._stopping.set()
        if self._listener is not None:
            try:
                self._listener.close()
            except OSError as e:
                logger.error(f"Error closing network listener: {e}")

    def wait_for_sessions(self, timeout: float) -> bool:
        """Wait for in-flight connections to finish.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            True if all connections finished, False if the timeout was reached first.
        """
        deadline = time.monotonic() + timeout
        with self._sessions_done:
            if self._sessions:
                logger.info(f"Waiting for {self._sessions} active connections to close...")
            while self._sessions:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        f"Shutdown timeout reached, {self._sessions} connections may have been cut short"
                    )
                    return False
                self._sessions_done.wait(remaining)
        logger.info("All active connections closed gracefully")
        return True
