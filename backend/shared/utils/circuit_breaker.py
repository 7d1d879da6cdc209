"""
Circuit breaker pattern for provider adapters.

States:
  CLOSED:    normal operation, calls pass through
  OPEN:      too many failures (or a non-retryable status), calls are skipped
  HALF_OPEN: after cooldown, allow a single probe call to test recovery
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)

# Status-specific cooldowns: auth/not-found errors will not heal on their own,
# rate limits clear after the provider's window.
NON_RETRYABLE_COOLDOWN_S = 30 * 60
RATE_LIMIT_COOLDOWN_S = 5 * 60


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when the circuit is open and calls are being rejected."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN. Retry after {retry_after:.0f}s.")


def cooldown_for_status(status_code: Optional[int], retry_after: Optional[float] = None) -> Optional[float]:
    """Seconds to force the circuit open for a failed call, or None to just count the failure."""
    if status_code in (401, 403, 404):
        return float(NON_RETRYABLE_COOLDOWN_S)
    if status_code == 429:
        return float(retry_after) if retry_after else float(RATE_LIMIT_COOLDOWN_S)
    return None


class CircuitBreaker:
    """
    Async circuit breaker.

    Args:
        name: Identifier for logging.
        failure_threshold: Consecutive failures before opening the circuit; 0 disables counting.
        recovery_timeout_s: Seconds to wait in OPEN state before probing.
        half_open_max: Max concurrent calls allowed in HALF_OPEN state.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 60.0,
        half_open_max: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self.half_open_max = half_open_max
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float = 0.0
        self._open_for: float = recovery_timeout_s
        self._half_open_calls = 0
        self._reason = ""
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self._open_for:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def stats(self) -> dict[str, Any]:
        retry_after = None
        if self.state == CircuitState.OPEN:
            retry_after = round(self._open_for - (self._clock() - self._opened_at), 1)
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "retry_after_s": retry_after,
            "reason": self._reason or None,
        }

    async def before_call(self) -> None:
        """Admit a call or raise ``CircuitBreakerOpen``."""
        current_state = self.state

        if current_state == CircuitState.OPEN:
            retry_after = self._open_for - (self._clock() - self._opened_at)
            raise CircuitBreakerOpen(self.name, max(retry_after, 1.0))

        if current_state == CircuitState.HALF_OPEN:
            async with self._lock:
                if self._half_open_calls >= self.half_open_max:
                    raise CircuitBreakerOpen(self.name, 5.0)
                self._half_open_calls += 1

    async def record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                logger.info("circuit_breaker_closed", name=self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
            self._success_count += 1
            self._reason = ""

    async def record_failure(self, error: str, cooldown_s: Optional[float] = None) -> None:
        async with self._lock:
            self._failure_count += 1
            was_probing = self.state == CircuitState.HALF_OPEN

            if cooldown_s is not None:
                self._open(cooldown_s, error)
                logger.warning(
                    "circuit_breaker_tripped",
                    name=self.name,
                    cooldown_s=cooldown_s,
                    error=error,
                )
            elif was_probing:
                self._open(self.recovery_timeout_s, error)
                logger.warning("circuit_breaker_reopened", name=self.name, error=error)
            elif self.failure_threshold > 0 and self._failure_count >= self.failure_threshold:
                self._open(self.recovery_timeout_s, error)
                logger.warning(
                    "circuit_breaker_opened",
                    name=self.name,
                    failures=self._failure_count,
                    error=error,
                )

    async def trip(self, seconds: float, reason: str = "") -> None:
        """Force the circuit OPEN for ``seconds`` regardless of the failure count."""
        async with self._lock:
            self._open(seconds, reason)
            logger.warning("circuit_breaker_tripped", name=self.name, cooldown_s=seconds, error=reason)

    async def release(self) -> None:
        """Give back a HALF_OPEN probe slot for a call that never reached the provider."""
        async with self._lock:
            if self._half_open_calls > 0:
                self._half_open_calls -= 1

    def _open(self, seconds: float, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._open_for = seconds
        self._half_open_calls = 0
        self._reason = reason
