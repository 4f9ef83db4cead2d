"""Connection accounting and idle scale-down timer.

This module tracks the number of active proxied connections and owns the single
pending scale-down timer that is armed when the last connection closes.
"""

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from zeroscaler.config import format_duration

logger = logging.getLogger(__name__)


class ConnectionRegister:
    """Thread-safe counter of active proxied connections.

    Each mutation returns whether it was the first open or the last close, based on
    the value right after the mutation.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def opened(self) -> bool:
        """Record a new connection.

        Returns:
            True if this is now the only active connection.
        """
        with self._lock:
            self._count += 1
            return self._count == 1

    def closed(self) -> bool:
        """Record the end of a connection.

        Returns:
            True if no active connections remain.

        Raises:
            RuntimeError: If no connection is open.
        """
        with self._lock:
            if self._count == 0:
                raise RuntimeError("Connection closed without a matching open")
            self._count -= 1
            return self._count == 0


class Timer(Protocol):
    """The part of threading.Timer the scale-down timer relies on."""

    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


class ScaleDownTimer:
    """The single pending scale-down action.

    The timer is armed when the last connection closes and cancelled when a new
    first connection arrives. When it fires it checks the live connection count
    again and only scales down if it is still zero.
    """

    def __init__(
        self,
        register: ConnectionRegister,
        idle_timeout: float,
        scale_down: Callable[[], None],
        timer_factory: TimerFactory = threading.Timer,
    ):
        """Initialize the scale-down timer.

        Args:
            register: The connection register to check before scaling down.
            idle_timeout: Seconds without connections before scaling down.
            scale_down: Action that scales the workload to zero.
            timer_factory: Creates the underlying timer, threading.Timer by default.
        """
        self.register = register
        self.idle_timeout = idle_timeout
        self._scale_down = scale_down
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Timer | None = None

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def cancel(self) -> bool:
        """Cancel the pending timer, if any.

        Returns:
            True if a pending timer was cancelled.
        """
        with self._lock:
            if self._timer is None:
                return False
            logger.info("First active connection. Cancelling scale-down timer.")
            self._timer.cancel()
            self._timer = None
            return True

    def arm(self) -> bool:
        """Replace any pending timer with a new one for the idle timeout.

        Nothing is armed if a connection opened since the count reached zero.

        Returns:
            True if a timer was armed.
        """
        with self._lock:
            if self._timer is not None:
                logger.debug("Stopping existing scale-down timer before starting a new one")
                self._timer.cancel()
                self._timer = None

            if self.register.count != 0:
                logger.debug("Connections became active again, not starting scale-down timer")
                return False

            logger.info(f"Last connection closed. Starting scale-down timer ({format_duration(self.idle_timeout)})")
            timer: Timer | None = None

            def fire() -> None:
                self._fired(timer)

            timer = self._timer_factory(self.idle_timeout, fire)
            timer.daemon = True
            self._timer = timer
            timer.start()
            return True

    def _fired(self, timer: Timer | None) -> None:
        with self._lock:
            if timer is None or self._timer is not timer:
                # Cancelled or replaced after the timer thread had already started
                return
            self._timer = None
            active = self.register.count

        if active != 0:
            logger.info(f"Scale-down timer fired, but {active} connections are active. Scale down aborted.")
            return

        logger.info("Scale-down timer fired with no active connections. Initiating scale down to 0.")
        try:
            self._scale_down()
        except Exception as e:
            logger.error(f"Scale down after idle timeout failed: {e}")
