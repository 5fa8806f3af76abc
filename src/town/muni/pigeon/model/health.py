import asyncio
from dataclasses import dataclass


@dataclass(frozen=True)
class HealthStatus:
    errors: int
    threshold: int

    @property
    def healthy(self) -> bool:
        return self.errors <= self.threshold


class HealthGauge:
    """
    Error-rate gauge backing the readiness probe.

    Unexpected exceptions raised while serving a request (store outages, resolver bugs) are recorded with
    `womp`. The health task calls `tick` periodically, which forgives `decay` errors at a time. Once the
    recorded errors exceed `health_threshold`, `/internal/ready` reports 503 until enough ticks have passed.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100, decay: int = 1) -> None:
        self._errors = value
        self.health_threshold = health_threshold
        self.decay = decay
        self._lock = asyncio.Lock()

    async def womp(self, d=1) -> int:
        async with self._lock:
            self._errors += int(d)
            return self._errors

    async def tick(self) -> int:
        """Forgive up to `decay` errors and return the remaining count."""
        async with self._lock:
            self._errors = max(0, self._errors - self.decay)
            return self._errors

    async def status(self) -> HealthStatus:
        async with self._lock:
            return HealthStatus(errors=self._errors, threshold=self.health_threshold)

    async def is_healthy(self) -> bool:
        return (await self.status()).healthy

    async def value(self) -> int:
        return (await self.status()).errors
