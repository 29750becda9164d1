from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
import json
import logging
import random
import time
from typing import Awaitable, Callable, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from schoolhub.core.config import Settings, get_settings
from schoolhub.core.errors import IntegrationUnavailableError
from schoolhub.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"

    @property
    def gauge(self) -> float:
        return {"closed": 0.0, "half_open": 0.5, "open": 1.0}[self.value]


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            timeout_ms=settings.ext_call_timeout_ms,
            max_attempts=settings.ext_retry_max_attempts,
            backoff_ms=settings.ext_retry_backoff_ms,
        )

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    def single_attempt(self) -> "RetryPolicy":
        return replace(self, max_attempts=1, backoff_ms=0)

    def delay_s(self, attempt: int) -> float:
        # Exponential backoff with +/-50% jitter so concurrent callers spread out.
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


async def retry_async(
    call: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retryable: Callable[[Exception], bool],
    name: str,
) -> T:
    attempts = max(policy.max_attempts, 1)
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(call(), timeout=policy.timeout_s)
        except Exception as exc:  # noqa: BLE001 - re-raised unless the caller marks it transient
            if attempt >= attempts or not retryable(exc):
                raise
            increment_counter(f"retries_total.{name}")
            logger.info("external_call_retry name=%s attempt=%d error=%s", name, attempt, exc.__class__.__name__)
            await asyncio.sleep(policy.delay_s(attempt))
            attempt += 1


class _RedisHandle:
    # redis.asyncio clients are bound to the loop that created them.
    def __init__(self) -> None:
        self._client: Redis | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def get(self, url: str) -> Redis | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        if self._client is None or self._loop is not loop:
            try:
                self._client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
            except ValueError as exc:
                logger.warning("breaker_redis_invalid_url", exc_info=exc)
                return None
            self._loop = loop
        return self._client


_redis_handle = _RedisHandle()


async def breaker_redis() -> Redis | None:
    """Redis client shared by breakers so API instances agree on breaker state."""
    url = (get_settings().redis_url or "").strip()
    if not url:
        return None
    return _redis_handle.get(url)


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int
    open_seconds: int
    half_open_trials: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BreakerConfig":
        settings = settings or get_settings()
        return cls(
            failure_threshold=settings.cb_failure_threshold,
            open_seconds=settings.cb_open_seconds,
            half_open_trials=settings.cb_half_open_trials,
        )


@dataclass(frozen=True)
class _Snapshot:
    state: BreakerState = BreakerState.CLOSED
    failures: int = 0
    opened_at: float | None = None
    trials: int = 0

    def encode(self) -> str:
        return json.dumps(
            {"state": self.state.value, "failures": self.failures, "opened_at": self.opened_at, "trials": self.trials}
        )

    @classmethod
    def decode(cls, raw: str) -> "_Snapshot":
        payload = json.loads(raw)
        return cls(
            state=BreakerState(payload["state"]),
            failures=int(payload.get("failures", 0)),
            opened_at=payload.get("opened_at"),
            trials=int(payload.get("trials", 0)),
        )


class CircuitBreaker:
    """Fail fast while the media service keeps failing.

    State lives in Redis under ``<cb_redis_prefix>:<name>`` when a client is
    given, and in process memory otherwise. Redis errors never fail the
    guarded call; the in-process copy is used until Redis answers again.
    """

    def __init__(
        self,
        name: str,
        *,
        redis: Redis | None = None,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._name = name
        self._redis = redis
        self._config = config or BreakerConfig.from_settings()
        self._clock = clock or time.monotonic
        self._local = _Snapshot()

    @property
    def name(self) -> str:
        return self._name

    @property
    def key(self) -> str:
        return f"{get_settings().cb_redis_prefix}:{self._name}"

    async def _read(self) -> _Snapshot:
        if self._redis is None:
            return self._local
        try:
            raw = await self._redis.get(self.key)
        except (RedisError, OSError) as exc:
            logger.warning("breaker_read_failed name=%s", self._name, exc_info=exc)
            return self._local
        if not raw:
            return self._local
        try:
            return _Snapshot.decode(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("breaker_state_corrupt name=%s", self._name)
            return self._local

    async def _write(self, snapshot: _Snapshot) -> None:
        self._local = snapshot
        if self._redis is None:
            return
        try:
            await self._redis.set(self.key, snapshot.encode(), ex=max(self._config.open_seconds * 4, 60))
        except (RedisError, OSError) as exc:
            logger.warning("breaker_write_failed name=%s", self._name, exc_info=exc)

    def _move(self, snapshot: _Snapshot, target: BreakerState) -> _Snapshot:
        if snapshot.state is not target:
            logger.warning("breaker_transition name=%s from=%s to=%s", self._name, snapshot.state.value, target.value)
            increment_counter(f"breaker_transitions_total.{self._name}.{target.value}")
            set_gauge(f"breaker_state.{self._name}", target.gauge)
        opened_at = self._clock() if target is BreakerState.OPEN else None
        return _Snapshot(state=target, opened_at=opened_at)

    def _unavailable(self) -> IntegrationUnavailableError:
        return IntegrationUnavailableError(f"{self._name} is temporarily unavailable")

    async def allow(self) -> None:
        """Raise ``IntegrationUnavailableError`` unless a call may go out now."""
        snapshot = await self._read()
        if snapshot.state is BreakerState.OPEN:
            elapsed = None if snapshot.opened_at is None else self._clock() - snapshot.opened_at
            if elapsed is None or elapsed < self._config.open_seconds:
                raise self._unavailable()
            snapshot = self._move(snapshot, BreakerState.HALF_OPEN)
        if snapshot.state is BreakerState.HALF_OPEN:
            if snapshot.trials >= self._config.half_open_trials:
                raise self._unavailable()
            await self._write(replace(snapshot, trials=snapshot.trials + 1))

    async def succeeded(self) -> None:
        snapshot = await self._read()
        if snapshot.state is not BreakerState.CLOSED:
            await self._write(self._move(snapshot, BreakerState.CLOSED))
        elif snapshot.failures:
            await self._write(_Snapshot())

    async def failed(self) -> None:
        snapshot = await self._read()
        # A failed trial reopens at once; a closed breaker opens at the threshold.
        if snapshot.state is BreakerState.HALF_OPEN or snapshot.failures + 1 >= self._config.failure_threshold:
            await self._write(self._move(snapshot, BreakerState.OPEN))
        else:
            await self._write(replace(snapshot, failures=snapshot.failures + 1))
