# deployment_engine/readiness/gate.py
"""
Readiness Gate - bounded polling of side-effect-free probes.

The polling loop blocks the caller for at most ``timeout_seconds`` and
sleeps a fixed interval between attempts. Clock and sleep are injectable
so the same contract can be driven by tests or an event loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from deployment_engine.core.models import Probe, ServiceDescriptor

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 2
DEFAULT_TIMEOUT_SECONDS = 60
ALL_SERVICES_TIMEOUT_SECONDS = 120


class ReadinessOutcome(Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass
class ReadinessReport:
    """Aggregated result of waiting on several services."""

    outcomes: Dict[str, ReadinessOutcome] = field(default_factory=dict)

    @property
    def ready(self) -> List[str]:
        return [n for n, o in self.outcomes.items() if o == ReadinessOutcome.READY]

    @property
    def not_ready(self) -> List[str]:
        return [n for n, o in self.outcomes.items() if o == ReadinessOutcome.TIMED_OUT]

    @property
    def all_ready(self) -> bool:
        return not self.not_ready


def _attempt(probe: Probe) -> bool:
    # A probe that blows up is simply "not ready yet"
    try:
        return bool(probe())
    except Exception as e:
        logger.debug(f"Probe raised {type(e).__name__}: {e}")
        return False


class ReadinessGate:

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock

    def await_ready(
        self,
        probe: Probe,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        name: Optional[str] = None,
    ) -> ReadinessOutcome:
        label = name or getattr(probe, "__name__", "dependency")
        start = self._clock()

        while True:
            if _attempt(probe):
                logger.info(f"✅ {label} is ready")
                return ReadinessOutcome.READY

            elapsed = self._clock() - start
            if elapsed >= timeout_seconds:
                logger.error(f"❌ {label} not ready after {timeout_seconds}s")
                return ReadinessOutcome.TIMED_OUT

            logger.debug(f"Waiting for {label}... ({int(elapsed)}s/{timeout_seconds}s)")
            self._sleep(min(interval_seconds, max(timeout_seconds - elapsed, 0)))

    def await_all(
        self,
        services: Iterable[ServiceDescriptor],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = ALL_SERVICES_TIMEOUT_SECONDS,
    ) -> ReadinessReport:
        """Gate every service with its own timeout; never stops at the first failure."""
        report = ReadinessReport()
        for service in services:
            report.outcomes[service.name] = self.await_ready(
                service.probe,
                interval_seconds=interval_seconds,
                timeout_seconds=timeout_seconds,
                name=service.label,
            )
        if report.not_ready:
            logger.error(f"Services not ready: {', '.join(report.not_ready)}")
        return report


class AsyncReadinessGate:
    """Same contract as ReadinessGate, cooperative under asyncio."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock

    async def await_ready(
        self,
        probe: Probe,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        name: Optional[str] = None,
    ) -> ReadinessOutcome:
        label = name or getattr(probe, "__name__", "dependency")
        start = self._clock()

        while True:
            ok = await asyncio.to_thread(_attempt, probe)
            if ok:
                logger.info(f"✅ {label} is ready")
                return ReadinessOutcome.READY

            elapsed = self._clock() - start
            if elapsed >= timeout_seconds:
                logger.error(f"❌ {label} not ready after {timeout_seconds}s")
                return ReadinessOutcome.TIMED_OUT

            await asyncio.sleep(min(interval_seconds, max(timeout_seconds - elapsed, 0)))

    async def await_all(
        self,
        services: Iterable[ServiceDescriptor],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = ALL_SERVICES_TIMEOUT_SECONDS,
    ) -> ReadinessReport:
        services = list(services)
        outcomes = await asyncio.gather(*[
            self.await_ready(s.probe, interval_seconds, timeout_seconds, name=s.label)
            for s in services
        ])
        return ReadinessReport(outcomes={s.name: o for s, o in zip(services, outcomes)})
