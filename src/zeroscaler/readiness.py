"""Readiness polling for the scaled StatefulSet.

This module waits for a StatefulSet to settle on a ready replica count after a
scale-up.
"""

import logging
import time
from collections.abc import Callable

from zeroscaler.config import format_duration
from zeroscaler.kubernetes.statefulsets import (
    OrchestrationError,
    ReplicaStatus,
    StatefulSetClient,
    WorkloadNotFoundError,
)

logger = logging.getLogger(__name__)

# Interval between readiness checks, in seconds
DEFAULT_POLL_INTERVAL = 5.0


class ReadinessTimeoutError(Exception):
    """Raised when a StatefulSet does not become ready in time."""

    def __init__(self, namespace: str, name: str, expected_ready: int, timeout: float):
        super().__init__(
            f"Timed out after {format_duration(timeout)} waiting for StatefulSet {namespace}/{name} "
            f"to have {expected_ready} ready replicas"
        )
        self.namespace = namespace
        self.name = name
        self.expected_ready = expected_ready
        self.timeout = timeout


def poll_until(
    condition: Callable[[], bool],
    interval: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Evaluate a condition immediately, then at a fixed interval, until it holds or time runs out.

    Args:
        condition: Callable returning True once the wait is over. Exceptions propagate.
        interval: Seconds to sleep between evaluations.
        timeout: Seconds after which polling gives up.
        sleep: Sleep function, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.

    Returns:
        True if the condition held before the deadline, False otherwise.
    """
    deadline = clock() + timeout
    while True:
        if condition():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(interval, remaining))


def is_stable(status: ReplicaStatus, expected_ready: int) -> bool:
    """Check whether a StatefulSet has settled with at least the expected ready replicas.

    Enough ready replicas is not sufficient on its own: the current and ready counts
    must also match the desired count, so a rollout still in progress is not taken
    as ready.
    """
    return (
        status.ready >= expected_ready
        and status.current == status.desired
        and status.ready == status.desired
        and status.desired >= expected_ready
    )


def wait_for_ready(
    statefulsets: StatefulSetClient,
    namespace: str,
    name: str,
    expected_ready: int,
    timeout: float,
    interval: float = DEFAULT_POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ReplicaStatus:
    """Wait until a StatefulSet is stable with the expected number of ready replicas.

    A StatefulSet that cannot be read, including one that does not exist yet, is
    treated as not ready and polling continues until the timeout.

    Args:
        statefulsets: Client used to read the StatefulSet status.
        namespace: Namespace of the StatefulSet.
        name: Name of the StatefulSet.
        expected_ready: Ready replicas to wait for.
        timeout: Seconds to wait before giving up.
        interval: Seconds between status checks.
        sleep: Sleep function, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.

    Returns:
        The status that satisfied the wait.

    Raises:
        ReadinessTimeoutError: If the StatefulSet is not ready before the timeout.
    """
    last_status: list[ReplicaStatus] = []

    def check() -> bool:
        try:
            status = statefulsets.get_status(namespace, name)
        except WorkloadNotFoundError as e:
            # TODO: tell a permanently wrong name apart from one still being created
            logger.warning(f"Polling: {e}. Retrying...")
            return False
        except OrchestrationError as e:
            logger.warning(f"Polling: error getting StatefulSet status for {namespace}/{name}: {e}. Retrying...")
            return False

        logger.debug(
            f"Polling: StatefulSet {namespace}/{name} - desired: {status.desired}, current: {status.current}, "
            f"ready: {status.ready} (expecting ready: {expected_ready})"
        )
        if is_stable(status, expected_ready):
            last_status.append(status)
            return True
        if status.ready >= expected_ready:
            logger.debug(
                f"Polling: StatefulSet {namespace}/{name} has {status.ready} ready replicas but current "
                f"({status.current}) or desired ({status.desired}) is not yet stable. Continuing..."
            )
        return False

    if not poll_until(check, interval, timeout, sleep=sleep, clock=clock):
        raise ReadinessTimeoutError(namespace, name, expected_ready, timeout)

    logger.info(f"StatefulSet {namespace}/{name} is ready with {last_status[-1].ready} replicas")
    return last_status[-1]
