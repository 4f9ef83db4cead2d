"""Tests for the readiness polling module."""

import unittest
from unittest import mock

from zeroscaler.kubernetes.statefulsets import (
    OrchestrationError,
    ReplicaStatus,
    StatefulSetClient,
    WorkloadNotFoundError,
)
from zeroscaler.readiness import ReadinessTimeoutError, is_stable, poll_until, wait_for_ready


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestPollUntil(unittest.TestCase):
    """Test cases for the poll_until combinator."""

    def setUp(self):
        self.clock = FakeClock()

    def test_checks_immediately(self):
        """Test that a condition already true returns without sleeping."""
        condition = mock.Mock(return_value=True)

        self.assertTrue(poll_until(condition, 5, 60, sleep=self.clock.sleep, clock=self.clock))

        condition.assert_called_once_with()
        self.assertEqual(self.clock.sleeps, [])

    def test_polls_at_interval(self):
        """Test that the condition is re-checked after each interval."""
        condition = mock.Mock(side_effect=[False, False, True])

        self.assertTrue(poll_until(condition, 5, 60, sleep=self.clock.sleep, clock=self.clock))

        self.assertEqual(condition.call_count, 3)
        self.assertEqual(self.clock.sleeps, [5, 5])

    def test_times_out(self):
        """Test that polling gives up once the timeout has elapsed."""
        condition = mock.Mock(return_value=False)

        self.assertFalse(poll_until(condition, 5, 12, sleep=self.clock.sleep, clock=self.clock))

        # Checks at t=0, 5, 10 and a last one at the deadline
        self.assertEqual(condition.call_count, 4)
        self.assertEqual(self.clock.sleeps, [5, 5, 2])
        self.assertEqual(self.clock.now, 12)

    def test_zero_timeout_checks_once(self):
        condition = mock.Mock(return_value=False)

        self.assertFalse(poll_until(condition, 5, 0, sleep=self.clock.sleep, clock=self.clock))

        condition.assert_called_once_with()

    def test_condition_errors_propagate(self):
        condition = mock.Mock(side_effect=RuntimeError("boom"))

        with self.assertRaises(RuntimeError):
            poll_until(condition, 5, 60, sleep=self.clock.sleep, clock=self.clock)


class TestIsStable(unittest.TestCase):
    """Test cases for the stability predicate."""

    def test_stable(self):
        self.assertTrue(is_stable(ReplicaStatus(desired=1, current=1, ready=1), 1))

    def test_not_enough_ready(self):
        self.assertFalse(is_stable(ReplicaStatus(desired=1, current=1, ready=0), 1))

    def test_current_differs_from_desired(self):
        """Test that a rollout still in progress is not stable."""
        self.assertFalse(is_stable(ReplicaStatus(desired=1, current=2, ready=1), 1))

    def test_ready_differs_from_desired(self):
        self.assertFalse(is_stable(ReplicaStatus(desired=2, current=2, ready=1), 1))

    def test_desired_below_expected(self):
        """Test that a StatefulSet scaled below the expected count is not stable."""
        self.assertFalse(is_stable(ReplicaStatus(desired=0, current=0, ready=0), 1))

    def test_zero_expected(self):
        self.assertTrue(is_stable(ReplicaStatus(desired=0, current=0, ready=0), 0))


class TestWaitForReady(unittest.TestCase):
    """Test cases for wait_for_ready."""

    def setUp(self):
        self.clock = FakeClock()
        self.statefulsets = mock.Mock(spec=StatefulSetClient)

    def wait(self, timeout=300):
        return wait_for_ready(
            self.statefulsets, "default", "buildkitd", 1, timeout, interval=5, sleep=self.clock.sleep, clock=self.clock
        )

    def test_waits_for_full_stabilization(self):
        """Test that the wait only ends once ready, current and desired all match."""
        self.statefulsets.get_status.side_effect = [
            ReplicaStatus(desired=1, current=0, ready=0),
            ReplicaStatus(desired=1, current=1, ready=0),
            ReplicaStatus(desired=1, current=1, ready=1),
        ]

        status = self.wait()

        self.assertEqual(status, ReplicaStatus(desired=1, current=1, ready=1))
        self.assertEqual(self.statefulsets.get_status.call_count, 3)
        self.statefulsets.get_status.assert_called_with("default", "buildkitd")
        self.assertEqual(self.clock.sleeps, [5, 5])

    def test_not_found_keeps_waiting(self):
        """Test that a StatefulSet that does not exist yet is treated as not ready."""
        self.statefulsets.get_status.side_effect = [
            WorkloadNotFoundError("not found", "default", "buildkitd"),
            ReplicaStatus(desired=1, current=1, ready=1),
        ]

        status = self.wait()

        self.assertEqual(status.ready, 1)
        self.assertEqual(self.statefulsets.get_status.call_count, 2)

    def test_api_error_keeps_waiting(self):
        self.statefulsets.get_status.side_effect = [
            OrchestrationError("forbidden", "default", "buildkitd"),
            ReplicaStatus(desired=1, current=1, ready=1),
        ]

        self.assertEqual(self.wait().ready, 1)

    def test_timeout(self):
        """Test that a StatefulSet that never becomes ready raises ReadinessTimeoutError."""
        self.statefulsets.get_status.return_value = ReplicaStatus(desired=1, current=1, ready=0)

        with self.assertRaises(ReadinessTimeoutError) as ctx:
            self.wait(timeout=20)

        self.assertEqual(ctx.exception.name, "buildkitd")
        self.assertEqual(ctx.exception.expected_ready, 1)
        self.assertIn("20s", str(ctx.exception))
        self.assertEqual(self.clock.now, 20)

    def test_timeout_when_never_found(self):
        self.statefulsets.get_status.side_effect = WorkloadNotFoundError("not found", "default", "buildkitd")

        with self.assertRaises(ReadinessTimeoutError):
            self.wait(timeout=10)


if __name__ == "__main__":
    unittest.main()
