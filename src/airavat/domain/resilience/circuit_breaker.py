"""Circuit breaker for calls to external dependencies.

Each protected dependency (payment gateway, shipping carrier, search index,
email/SMS provider...) gets one named :class:`CircuitBreaker`, normally
obtained from a :class:`CircuitBreakerRegistry`.

State Transitions:
- CLOSED: calls pass through. ``failure_threshold`` consecutive failures
  open the circuit.
- OPEN: calls are rejected until ``reset_timeout`` seconds have passed since
  the circuit opened. The first call after that moves the circuit to
  HALF_OPEN.
- HALF_OPEN: at most ``half_open_max_calls`` trial calls run concurrently.
  ``success_threshold`` consecutive successes close the circuit, a single
  failure reopens it.

Transitions are plain attribute writes with no await in between, so
concurrent ``execute`` calls on one instance never observe a half-applied
state. Every call runs under a hard ``timeout`` and is cancelled when it
loses that race.

State changes may be mirrored to a shared store for cross-process
visibility. The mirror is advisory: it is written best-effort and never
read back.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from airavat.core.exceptions import CircuitBreakerError, DependencyTimeoutError
from airavat.core.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

T = TypeVar("T")

NO_FALLBACK: Any = object()


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerConfig(BaseModel):
    """Validated breaker settings. Durations are in seconds."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=3, ge=1)
    timeout: float = Field(default=30.0, gt=0)
    reset_timeout: float = Field(default=60.0, gt=0)
    half_open_max_calls: int = Field(default=3, ge=1)


class CircuitStateMirror(ABC):
    """Publishes circuit state snapshots to a store shared by all processes."""

    @abstractmethod
    async def publish(self, name: str, snapshot: Dict[str, Any]) -> None:
        """Store ``snapshot`` for breaker ``name``. May raise on store errors."""


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class CircuitBreaker:
    """Per-dependency Closed/Open/Half-Open state machine.

    Args:
        name: Stable dependency name, used in logs, errors and the mirror key.
        config: Thresholds and timeouts.
        clock: Wall-clock source in seconds; injectable for tests.
        mirror: Optional shared-store publisher for state changes.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        mirror: Optional[CircuitStateMirror] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._mirror = mirror
        self._metrics = metrics
        self._mirror_tasks: Set[asyncio.Task] = set()

        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.consecutive_successes = 0
        self.opened_at: Optional[float] = None
        self.next_attempt_at: Optional[float] = None
        self.last_failure_at: Optional[float] = None
        self.last_state_change: float = clock()
        self._half_open_in_flight = 0
        # Trials only release slots taken in the current half-open period.
        self._half_open_period = 0

        self.total_calls = 0
        self.successful_calls = 0
        self.failed_calls = 0
        self.rejected_calls = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_closed(self) -> bool:
        return self.state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self.state is CircuitState.HALF_OPEN

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        fallback: Any = NO_FALLBACK,
        **kwargs: Any,
    ) -> T:
        """Execute an async function with circuit breaker protection.

        Args:
            func: The async function to execute.
            *args: Positional arguments for the function.
            fallback: Value returned instead of failing. A callable is
                invoked with no arguments (and awaited if it returns an
                awaitable).
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of ``func`` or the fallback.

        Raises:
            CircuitBreakerError: The circuit rejected the call and no
                fallback was given.
            DependencyTimeoutError: The call exceeded ``config.timeout``.
            Exception: Errors raised by ``func`` when no fallback was given.
        """
        self.total_calls += 1
        now = self._clock()

        if self.state is CircuitState.OPEN:
            if now < self.next_attempt_at:
                return await self._reject(fallback, retry_after=math.ceil(self.next_attempt_at - now))
            self._half_open()

        trial_period = None
        if self.state is CircuitState.HALF_OPEN:
            if self._half_open_in_flight >= self.config.half_open_max_calls:
                return await self._reject(fallback, retry_after=1)
            self._half_open_in_flight += 1
            trial_period = self._half_open_period

        try:
            result = await self._call_with_timeout(func, *args, **kwargs)
        except Exception as exc:
            self._on_failure(exc)
            if fallback is NO_FALLBACK:
                raise
            return await self._resolve_fallback(fallback)
        finally:
            if trial_period is not None and trial_period == self._half_open_period:
                self._half_open_in_flight -= 1

        self._on_success()
        return result

    async def _call_with_timeout(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except asyncio.TimeoutError as exc:
            raise DependencyTimeoutError(self.name, self.config.timeout) from exc

    async def _reject(self, fallback: Any, retry_after: int) -> Any:
        self.rejected_calls += 1
        if self._metrics is not None:
            self._metrics.record_circuit_rejection(self.name)
        logger.warning(
            "circuit_breaker_rejected",
            name=self.name,
            state=self.state.value,
            retry_after=retry_after,
            has_fallback=fallback is not NO_FALLBACK,
        )
        if fallback is NO_FALLBACK:
            raise CircuitBreakerError(self.name, retry_after=retry_after)
        return await self._resolve_fallback(fallback)

    @staticmethod
    async def _resolve_fallback(fallback: Any) -> Any:
        if callable(fallback):
            value = fallback()
            if inspect.isawaitable(value):
                value = await value
            return value
        return fallback

    # ------------------------------------------------------------------
    # Outcome handling
    # ------------------------------------------------------------------

    def _on_success(self) -> None:
        self.successful_calls += 1
        self.consecutive_failures = 0

        if self.state is CircuitState.HALF_OPEN:
            self.consecutive_successes += 1
            if self.consecutive_successes >= self.config.success_threshold:
                self._close()

    def _on_failure(self, error: BaseException) -> None:
        self.failed_calls += 1
        self.consecutive_failures += 1
        self.last_failure_at = self._clock()

        logger.error(
            "circuit_breaker_call_failed",
            name=self.name,
            state=self.state.value,
            failure_count=self.consecutive_failures,
            threshold=self.config.failure_threshold,
            error=str(error),
            error_type=type(error).__name__,
        )

        if self.state is CircuitState.HALF_OPEN:
            self._open()
        elif self.state is CircuitState.CLOSED and self.consecutive_failures >= self.config.failure_threshold:
            self._open()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _open(self) -> None:
        previous = self.state
        now = self._clock()
        self.state = CircuitState.OPEN
        self.consecutive_successes = 0
        self.opened_at = now
        self.next_attempt_at = now + self.config.reset_timeout
        logger.warning(
            "circuit_breaker_opened",
            name=self.name,
            previous_state=previous.value,
            failure_count=self.consecutive_failures,
            next_attempt_at=_iso(self.next_attempt_at),
        )
        self._state_changed(previous)

    def _half_open(self) -> None:
        previous = self.state
        self.state = CircuitState.HALF_OPEN
        self.consecutive_successes = 0
        self._half_open_period += 1
        self._half_open_in_flight = 0
        logger.info("circuit_breaker_half_open", name=self.name)
        self._state_changed(previous)

    def _close(self) -> None:
        previous = self.state
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.consecutive_successes = 0
        self.opened_at = None
        self.next_attempt_at = None
        logger.info("circuit_breaker_closed", name=self.name, previous_state=previous.value)
        self._state_changed(previous)

    def _state_changed(self, previous: CircuitState) -> None:
        self.last_state_change = self._clock()
        if self._metrics is not None and previous is not self.state:
            self._metrics.record_circuit_transition(self.name, previous.value, self.state.value)
        self._publish()

    def _publish(self) -> None:
        if self._mirror is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._publish_snapshot(self.get_status()))
        self._mirror_tasks.add(task)
        task.add_done_callback(self._mirror_tasks.discard)

    async def _publish_snapshot(self, snapshot: Dict[str, Any]) -> None:
        try:
            await self._mirror.publish(self.name, snapshot)
        except Exception as e:
            logger.error("circuit_state_mirror_failed", name=self.name, error=str(e))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of state, configuration and counters. Never mutates state."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.consecutive_failures,
            "success_count": self.consecutive_successes,
            "failure_threshold": self.config.failure_threshold,
            "success_threshold": self.config.success_threshold,
            "timeout": self.config.timeout,
            "reset_timeout": self.config.reset_timeout,
            "opened_at": _iso(self.opened_at),
            "next_attempt_at": _iso(self.next_attempt_at),
            "last_failure_at": _iso(self.last_failure_at),
            "last_state_change": _iso(self.last_state_change),
            "metrics": {
                "total_calls": self.total_calls,
                "successful_calls": self.successful_calls,
                "failed_calls": self.failed_calls,
                "rejected_calls": self.rejected_calls,
            },
        }

    def reset(self) -> None:
        """Force the circuit CLOSED and clear failure tracking."""
        previous = self.state
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.consecutive_successes = 0
        self.opened_at = None
        self.next_attempt_at = None
        self.last_failure_at = None
        self._half_open_in_flight = 0
        self._half_open_period += 1
        logger.info("circuit_breaker_reset", name=self.name, previous_state=previous.value)
        self._state_changed(previous)

    def trip(self) -> None:
        """Force the circuit OPEN, isolating the dependency for ``reset_timeout``."""
        logger.warning("circuit_breaker_tripped", name=self.name)
        self._open()


class CircuitBreakerRegistry:
    """Named breakers, created on first use.

    ``presets`` maps dependency names to their configuration; names without
    a preset use ``defaults``.
    """

    def __init__(
        self,
        defaults: Optional[CircuitBreakerConfig] = None,
        presets: Optional[Mapping[str, CircuitBreakerConfig]] = None,
        *,
        clock: Callable[[], float] = time.time,
        mirror: Optional[CircuitStateMirror] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.defaults = defaults or CircuitBreakerConfig()
        self.presets: Dict[str, CircuitBreakerConfig] = dict(presets or {})
        self._clock = clock
        self._mirror = mirror
        self._metrics = metrics
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use.

        ``config`` only applies when the breaker does not exist yet.
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                config or self.presets.get(name, self.defaults),
                clock=self._clock,
                mirror=self._mirror,
                metrics=self._metrics,
            )
            self._breakers[name] = breaker
            logger.debug("circuit_breaker_registered", name=name)
        return breaker

    def get_breaker(self, name: str) -> Optional[CircuitBreaker]:
        """Return an existing breaker without creating one."""
        return self._breakers.get(name)

    def names(self):
        return list(self._breakers)

    def get_status(self, name: str) -> Optional[Dict[str, Any]]:
        breaker = self._breakers.get(name)
        return breaker.get_status() if breaker else None

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def open_circuits(self):
        return [name for name, breaker in self._breakers.items() if breaker.is_open]

    def reset(self, name: str) -> bool:
        """Reset one breaker. Returns False when ``name`` is unknown."""
        breaker = self._breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()


def circuit_breaker(
    registry: CircuitBreakerRegistry, name: Optional[str] = None
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator routing every call of an async function through a named breaker.

    Args:
        registry: The registry owning the breaker.
        name: Breaker name; defaults to the function's name.

    Returns:
        A decorator that wraps an async function with circuit breaker logic.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        breaker_name = name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await registry.get(breaker_name).execute(func, *args, **kwargs)

        return wrapper

    return decorator
