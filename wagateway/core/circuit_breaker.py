"""Circuit breaker guarding one vendor endpoint."""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from wagateway.core.errors import VendorError
from wagateway.observability.logging import get_logger

T = TypeVar("T")
log = get_logger("circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Probing whether the vendor recovered


class CircuitOpenError(VendorError):
    """Raised instead of calling the vendor while the circuit is open."""

    pass


class CircuitBreaker:
    """
    Stops hammering a vendor that keeps failing.

    States:
    - CLOSED: calls pass through, failures are counted inside ``window`` seconds
    - OPEN: calls fail immediately with CircuitOpenError
    - HALF_OPEN: after ``recovery_timeout`` calls are let through again;
      ``success_threshold`` successes close the circuit, one failure reopens it

    Only exceptions accepted by ``is_failure`` count against the vendor; the
    rest (a 404 for a resource that does not exist yet) mean the vendor
    answered and are recorded as successes.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        window: float = 60.0,
        recovery_timeout: float = 30.0,
        success_threshold: int = 2,
        is_failure: Callable[[BaseException], bool] | None = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window = window
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.is_failure = is_failure or (lambda exc: True)

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async with self._lock:
            self._update_state()
            if self._state == CircuitState.OPEN:
                raise CircuitOpenError(f"circuit {self.name} is open", operation=getattr(func, "__name__", None))

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.is_failure(e):
                await self._on_failure()
            else:
                await self._on_success()
            raise
        await self._on_success()
        return result

    def _update_state(self) -> None:
        now = time.monotonic()
        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and (now - self._opened_at) >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            if self._last_failure_time is not None and (now - self._last_failure_time) > self.window:
                self._failure_count = 0

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
                    self._opened_at = None
                    log.info("circuit_closed", circuit=self.name)

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._failure_count = 0
        log.warning("circuit_opened", circuit=self.name, recovery_timeout=self.recovery_timeout)
