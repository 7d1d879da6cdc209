"""
Exponential backoff for watched prefetch queries.
Pure functions: no clock, no I/O.
"""
from __future__ import annotations

from shared.models.domain import BackoffState

MIN_DELAY_S = 1


def compute_backoff_delay(failures: int, base_s: float = 60, max_s: float = 3600) -> int:
    """
    Delay after ``failures`` consecutive failures: ``min(max, base * 2^(failures-1))``.

    Floored at one second; zero (or negative) failures yield the floor.
    """
    if failures <= 0:
        return MIN_DELAY_S
    # Cap the exponent so huge failure counts never overflow into floats.
    exponent = min(failures - 1, 63)
    delay = min(max_s, base_s * (2 ** exponent))
    return max(MIN_DELAY_S, int(delay))


def register_failure(
    state: BackoffState | None,
    data_type: str,
    now: float,
    base_s: float = 60,
    max_s: float = 3600,
) -> BackoffState:
    """Return the state after one more failure of the query."""
    failures = (state.consecutive_failures if state else 0) + 1
    delay = compute_backoff_delay(failures, base_s, max_s)
    return BackoffState(
        data_type=data_type,
        consecutive_failures=failures,
        next_allowed_at=now + delay,
    )


def is_allowed(state: BackoffState | None, now: float) -> bool:
    """True when the query may run on this tick."""
    if state is None or state.next_allowed_at is None:
        return True
    return now >= state.next_allowed_at
