"""Bidirectional TCP relay between a client and the backend pod."""

import errno
import logging
import socket
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Size of each read from a source socket
BUFFER_SIZE = 32 * 1024

# Errors raised when the socket was already closed or shut down, expected during teardown
_CLOSED_ERRNOS = frozenset({errno.EBADF, errno.ENOTCONN, errno.ESHUTDOWN})


@dataclass
class RelayResult:
    """Outcome of one relay direction."""

    direction: str
    bytes_copied: int = 0
    error: OSError | None = field(default=None, repr=False)


def _is_closed_error(error: OSError) -> bool:
    return error.errno in _CLOSED_ERRNOS


class ProxySession:
    """Relay bytes between two connected sockets until both directions finish.

    Each direction copies until its source reaches end of stream, then shuts down
    writing on the destination and reading on the source, so the other direction
    can keep draining. Both sockets are closed once both directions are done.
    """

    def __init__(
        self,
        client: socket.socket,
        backend: socket.socket,
        client_addr: str = "client",
        backend_addr: str = "backend",
        buffer_size: int = BUFFER_SIZE,
    ):
        self.client = client
        self.backend = backend
        self.client_addr = client_addr
        self.backend_addr = backend_addr
        self.buffer_size = buffer_size
        self._closed = False
        self._close_lock = threading.Lock()

    def run(self) -> tuple[RelayResult, RelayResult]:
        """Relay in both directions, wait for both to finish and close the sockets.

        Returns:
            The client-to-backend and backend-to-client results.
        """
        upstream = RelayResult(f"client_to_target (client: {self.client_addr}, target: {self.backend_addr})")
        downstream = RelayResult(f"target_to_client (target: {self.backend_addr}, client: {self.client_addr})")
        threads = [
            threading.Thread(
                target=self._relay, args=(self.client, self.backend, upstream), name="relay-upstream", daemon=True
            ),
            threading.Thread(
                target=self._relay, args=(self.backend, self.client, downstream), name="relay-downstream", daemon=True
            ),
        ]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        finally:
            self.close()
        logger.debug(f"Data transfer complete for {self.client_addr} -> {self.backend_addr}")
        return upstream, downstream

    def close(self) -> None:
        """Close both sockets, once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        for sock in (self.client, self.backend):
            try:
                sock.close()
            except OSError as e:
                logger.debug(f"Error closing socket: {e}")

    def _relay(self, src: socket.socket, dst: socket.socket, result: RelayResult) -> None:
        try:
            while True:
                data = src.recv(self.buffer_size)
                if not data:
                    break
                dst.sendall(data)
                result.bytes_copied += len(data)
        except OSError as e:
            result.error = e
            if _is_closed_error(e):
                logger.debug(f"Copy error: connection already closed (likely expected). {result.direction}: {e}")
            else:
                logger.warning(f"Error copying data. {result.direction}: {e}")

        logger.debug(f"Data copy operation finished. {result.direction}, bytes copied: {result.bytes_copied}")
        self._shutdown(dst, socket.SHUT_WR)
        self._shutdown(src, socket.SHUT_RD)

    @staticmethod
    def _shutdown(sock: socket.socket, how: int) -> None:
        try:
            sock.shutdown(how)
        except OSError as e:
            if not _is_closed_error(e):
                logger.debug(f"Error shutting down socket: {e}")
