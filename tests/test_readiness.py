#tests/test_readiness.py

"""Test readiness gate polling."""

import asyncio

from deployment_engine.core.models import ServiceDescriptor
from deployment_engine.readiness.gate import AsyncReadinessGate, ReadinessGate, ReadinessOutcome


class TestReadinessGate:
    """Test bounded polling."""

    def test_ready_immediately(self, clock):
        """Test a passing probe returns without sleeping."""
        gate = ReadinessGate(sleep=clock.sleep, clock=clock)

        assert gate.await_ready(lambda: True, 2, 60) == ReadinessOutcome.READY
        assert clock.sleeps == []

    def test_ready_after_retries(self, clock):
        """Test polling continues until the probe passes."""
        answers = iter([False, False, True])
        gate = ReadinessGate(sleep=clock.sleep, clock=clock)

        assert gate.await_ready(lambda: next(answers), 2, 60) == ReadinessOutcome.READY
        assert clock.sleeps == [2, 2]

    def test_always_failing_probe_times_out(self, clock):
        """Test a failing probe gives up after roughly the timeout."""
        attempts = []

        def probe():
            attempts.append(clock.now)
            return False

        gate = ReadinessGate(sleep=clock.sleep, clock=clock)

        assert gate.await_ready(probe, 2, 10) == ReadinessOutcome.TIMED_OUT
        assert clock.now == 10
        assert len(attempts) == 6

    def test_probe_exception_counts_as_not_ready(self, clock):
        """Test a raising probe is retried, not propagated."""
        calls = []

        def probe():
            calls.append(1)
            if len(calls) < 2:
                raise ConnectionError("refused")
            return True

        gate = ReadinessGate(sleep=clock.sleep, clock=clock)

        assert gate.await_ready(probe, 1, 5) == ReadinessOutcome.READY

    def test_await_all_reports_every_failure(self, clock):
        """Test aggregation does not stop at the first unready service."""
        services = [
            ServiceDescriptor("postgres", lambda: False),
            ServiceDescriptor("redis", lambda: True),
            ServiceDescriptor("nginx", lambda: False),
        ]
        gate = ReadinessGate(sleep=clock.sleep, clock=clock)

        report = gate.await_all(services, interval_seconds=2, timeout_seconds=4)

        assert report.ready == ["redis"]
        assert report.not_ready == ["postgres", "nginx"]
        assert not report.all_ready


class TestAsyncReadinessGate:
    """Test the asyncio variant."""

    def test_times_out(self):
        """Test the async gate returns TIMED_OUT without hanging."""
        gate = AsyncReadinessGate()

        outcome = asyncio.run(gate.await_ready(lambda: False, interval_seconds=0.01, timeout_seconds=0.05))

        assert outcome == ReadinessOutcome.TIMED_OUT

    def test_await_all(self):
        """Test concurrent gating of several services."""
        gate = AsyncReadinessGate()
        services = [ServiceDescriptor("a", lambda: True), ServiceDescriptor("b", lambda: False)]

        report = asyncio.run(gate.await_all(services, interval_seconds=0.01, timeout_seconds=0.05))

        assert report.ready == ["a"]
        assert report.not_ready == ["b"]
