"""
Circuit breaker for error-prone downstream calls.

State lives in the shared key-value store under circuit_breaker:{name}, so
every worker instance observes the same breaker.

States:
  CLOSED    normal operation, work proceeds and outcomes are sampled
  OPEN      error ratio exceeded the threshold; work is skipped until cool-down elapses
  HALF_OPEN cool-down elapsed; the next outcome decides whether to close or re-open
"""
from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Callable, Coroutine, TypeVar

from shared.config import Settings, get_settings
from shared.errors import CircuitOpen
from shared.utils.logging import get_logger
from shared.utils.metrics import CIRCUIT_OPENED
from shared.utils.redis_manager import CIRCUIT_BREAKER_KEY, KeyValueStore, fmt_key

logger = get_logger(__name__)

T = TypeVar("T")

CircuitBreakerOpen = CircuitOpen


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Error-ratio circuit breaker over a rolling window of outcomes.

    Args:
        name: Identifier for logging and the store key.
        store: Key-value store holding the breaker record.
        settings: Thresholds (ratio, minimum samples, window, cool-down).
        clock: Wall-clock source in epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        name: str,
        store: KeyValueStore,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        s = settings or get_settings()
        self.name = name
        self.error_ratio = s.circuit_error_ratio
        self.min_samples = s.circuit_min_samples
        self.window_size = s.circuit_window_size
        self.cooldown_s = s.circuit_cooldown_s
        self._store = store
        self._clock = clock
        self._key = fmt_key(CIRCUIT_BREAKER_KEY, name=name)

    async def _load(self) -> dict[str, Any]:
        raw = await self._store.get(self._key)
        if not raw:
            return {"samples": [], "opened_at": None, "reason": None}
        return json.loads(raw)

    async def _save(self, record: dict[str, Any]) -> None:
        # Outlives the cool-down so an open breaker is never forgotten early.
        ttl = int(self.cooldown_s) * 2 + 60
        await self._store.put(self._key, json.dumps(record), ttl)

    def _state_of(self, record: dict[str, Any]) -> CircuitState:
        opened_at = record.get("opened_at")
        if opened_at is None:
            return CircuitState.CLOSED
        if self._clock() - opened_at >= self.cooldown_s:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    async def state(self) -> CircuitState:
        return self._state_of(await self._load())

    async def stats(self) -> dict[str, Any]:
        record = await self._load()
        samples = record.get("samples", [])
        return {
            "name": self.name,
            "state": self._state_of(record).value,
            "samples": len(samples),
            "errors": samples.count(0),
            "reason": record.get("reason"),
        }

    async def allow(self) -> bool:
        """True unless the breaker is open and still cooling down."""
        return await self.state() != CircuitState.OPEN

    async def retry_after(self) -> float:
        record = await self._load()
        opened_at = record.get("opened_at")
        if opened_at is None:
            return 0.0
        return max(self.cooldown_s - (self._clock() - opened_at), 0.0)

    async def record_success(self) -> None:
        record = await self._load()
        if self._state_of(record) == CircuitState.HALF_OPEN:
            logger.info("circuit_breaker_closed", name=self.name)
            record = {"samples": [], "opened_at": None, "reason": None}
        record["samples"] = (record.get("samples", []) + [1])[-self.window_size:]
        await self._save(record)

    async def record_failure(self, reason: str = "") -> None:
        record = await self._load()
        state = self._state_of(record)
        if state == CircuitState.HALF_OPEN:
            record["opened_at"] = self._clock()
            record["reason"] = reason
            await self._save(record)
            CIRCUIT_OPENED.labels(name=self.name).inc()
            logger.warning("circuit_breaker_reopened", name=self.name, error=reason)
            return

        samples = (record.get("samples", []) + [0])[-self.window_size:]
        record["samples"] = samples
        errors = samples.count(0)
        if (
            state == CircuitState.CLOSED
            and len(samples) >= self.min_samples
            and errors / len(samples) > self.error_ratio
        ):
            record["opened_at"] = self._clock()
            record["reason"] = reason
            CIRCUIT_OPENED.labels(name=self.name).inc()
            logger.warning(
                "circuit_breaker_opened",
                name=self.name,
                errors=errors,
                samples=len(samples),
                error=reason,
            )
        await self._save(record)

    async def reset(self) -> None:
        await self._store.forget(self._key)

    async def call(
        self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run func through the breaker; raises CircuitOpen without calling it while open."""
        if not await self.allow():
            raise CircuitBreakerOpen(self.name, max(await self.retry_after(), 1.0))
        try:
            result = await func(*args, **kwargs)
        except CircuitBreakerOpen:
            raise
        except Exception as exc:
            await self.record_failure(str(exc))
            raise
        await self.record_success()
        return result
