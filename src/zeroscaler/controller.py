"""Scale controller module.

This module decides, for every accepted connection, whether the StatefulSet has to
be woken up, connects the client to the backend pod, and scales the StatefulSet
back to zero once clients have been idle long enough.
"""

import logging
import socket
import threading
from collections.abc import Callable

from zeroscaler.config import AutoscalerConfig, format_address
from zeroscaler.connections import ConnectionRegister, ScaleDownTimer, TimerFactory
from zeroscaler.kubernetes.statefulsets import OrchestrationError, StatefulSetClient
from zeroscaler.proxy import ProxySession
from zeroscaler.readiness import DEFAULT_POLL_INTERVAL, ReadinessTimeoutError, wait_for_ready

logger = logging.getLogger(__name__)

# Ready replicas the proxy wakes the StatefulSet up to
TARGET_REPLICAS = 1


class ScaleController:
    """Controller gating the StatefulSet replica count on client connections.

    A single instance is shared by every connection handler. It owns the active
    connection register and the scale-down timer.
    """

    # Seconds between readiness checks after a scale up
    ready_poll_interval: float = DEFAULT_POLL_INTERVAL

    def __init__(
        self,
        config: AutoscalerConfig,
        statefulsets: StatefulSetClient,
        timer_factory: TimerFactory = threading.Timer,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ):
        """Initialize the scale controller.

        Args:
            config: The proxy configuration.
            statefulsets: Client for the managed StatefulSet.
            timer_factory: Creates the scale-down timer, threading.Timer by default.
            connect: Function dialing the backend, socket.create_connection by default.
        """
        self.config = config
        self.statefulsets = statefulsets
        self.register = ConnectionRegister()
        self.scale_down_timer = ScaleDownTimer(
            self.register, config.idle_timeout, self.scale_down, timer_factory=timer_factory
        )
        self._connect = connect

    @property
    def namespace(self) -> str:
        return self.config.namespace

    @property
    def name(self) -> str:
        return self.config.statefulset_name

    @property
    def active_connections(self) -> int:
        return self.register.count

    def scale_down(self) -> bool:
        """Scale the StatefulSet to zero replicas.

        Returns:
            True if the scale request succeeded.
        """
        try:
            self.statefulsets.set_desired_replicas(self.namespace, self.name, 0)
        except OrchestrationError as e:
            logger.error(f"Failed to scale down StatefulSet {self.namespace}/{self.name} to 0: {e}")
            return False
        logger.info(f"Successfully scaled down StatefulSet {self.namespace}/{self.name} to 0 replicas")
        return True

    def reconcile_on_startup(self) -> None:
        """Scale the StatefulSet down if it is running while nobody is connected.

        Covers a restart of the proxy that left the StatefulSet scaled up. Failures
        are logged and do not prevent the proxy from starting.
        """
        try:
            status = self.statefulsets.get_status(self.namespace, self.name)
        except OrchestrationError as e:
            logger.warning(f"Could not get initial status for StatefulSet {self.namespace}/{self.name}. "
                           f"Assuming 0 replicas: {e}")
            return

        if status.ready > 0 and self.register.count == 0:
            logger.info(
                f"Initial state: {status.ready} ready replicas with 0 active connections. "
                f"Initiating scale down of StatefulSet {self.namespace}/{self.name} to 0."
            )
            self.scale_down()
        else:
            logger.debug(f"Initial state of StatefulSet {self.namespace}/{self.name}: {status}")

    def handle_connection(self, client: socket.socket, client_addr: str) -> None:
        """Serve one client connection from accept to teardown.

        The connection is counted as active for the whole call. Failures only close
        this client.

        Args:
            client: The accepted client socket.
            client_addr: Printable client address for logging.
        """
        is_first = self.register.opened()
        logger.debug(f"Accepted connection from {client_addr}, active connections: {self.register.count}")
        session_started = False
        backend = None
        try:
            if is_first:
                self.scale_down_timer.cancel()

            backend = self._open_backend(client_addr, is_first)
            if backend is None:
                return

            session = ProxySession(client, backend, client_addr, self._backend_label())
            session_started = True
            session.run()
        except Exception:
            logger.exception(f"Unexpected error handling connection from {client_addr}")
        finally:
            if not session_started:
                client.close()
                if backend is not None:
                    backend.close()
            is_last = self.register.closed()
            logger.debug(f"Closed connection from {client_addr}, active connections: {self.register.count}")
            if is_last:
                self.scale_down_timer.arm()

    def _backend_label(self) -> str:
        return format_address(*self.config.backend_address)

    def _open_backend(self, client_addr: str, is_first: bool) -> socket.socket | None:
        """Make sure the backend is ready and connect to it.

        Returns:
            The connected backend socket, or None if the connection must be dropped.
        """
        try:
            status = self.statefulsets.get_status(self.namespace, self.name)
        except OrchestrationError as e:
            logger.error(f"Failed to get status for StatefulSet. Closing connection from {client_addr}: {e}")
            return None

        logger.debug(
            f"StatefulSet {self.namespace}/{self.name} status: desired={status.desired}, "
            f"current={status.current}, ready={status.ready}"
        )

        if status.ready == 0:
            if not is_first:
                logger.error(
                    f"Non-first connection but 0 ready replicas for StatefulSet {self.namespace}/{self.name}. "
                    f"Closing connection from {client_addr} (active connections: {self.register.count})"
                )
                return None
            if not self._scale_up(client_addr):
                return None

        target = self.config.backend_address
        logger.debug(f"Attempting to proxy connection from {client_addr} to {self._backend_label()}")
        try:
            backend = self._connect(target, timeout=self.config.dial_timeout)
        except OSError as e:
            logger.error(f"Failed to connect to target {self._backend_label()}. "
                         f"Closing connection from {client_addr}: {e}")
            return None
        try:
            backend.settimeout(None)
        except OSError as e:
            logger.error(f"Failed to configure connection to target {self._backend_label()}. "
                         f"Closing connection from {client_addr}: {e}")
            backend.close()
            return None
        logger.debug(f"Successfully connected to target {self._backend_label()} for {client_addr}")
        return backend

    def _scale_up(self, client_addr: str) -> bool:
        logger.info(
            f"First connection and 0 ready replicas. Initiating scale up of StatefulSet "
            f"{self.namespace}/{self.name} to {TARGET_REPLICAS} replica."
        )
        try:
            self.statefulsets.set_desired_replicas(self.namespace, self.name, TARGET_REPLICAS)
        except OrchestrationError as e:
            logger.error(f"Failed to scale StatefulSet to {TARGET_REPLICAS}. Closing connection from {client_addr}: {e}")
            return False

        logger.info(f"Successfully initiated scaling. Waiting for {TARGET_REPLICAS} ready replica...")
        try:
            wait_for_ready(
                self.statefulsets,
                self.namespace,
                self.name,
                TARGET_REPLICAS,
                self.config.ready_timeout,
                interval=self.ready_poll_interval,
            )
        except ReadinessTimeoutError as e:
            logger.error(f"Error waiting for StatefulSet to become ready. Closing connection from {client_addr}: {e}")
            return False
        return True
