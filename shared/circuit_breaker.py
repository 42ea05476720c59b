"""
Circuit breakers for outbound calls.

Each remote collaborator gets a named pybreaker breaker so that a dead
service fails fast instead of stalling every booking action:

- transition_api: remote machine instance (failure triggers the legacy fallback)
- calendar: calendar status sync (fire-and-forget)
- email: notification dispatch (fire-and-forget)

Usage:
    from shared.circuit_breaker import calendar_breaker, call_with_breaker

    await call_with_breaker(calendar_breaker, client.put_status, event_id, prefix)
"""

import logging
import time
from typing import Any, Callable

import pybreaker

logger = logging.getLogger(__name__)


class BreakerStateLogger(pybreaker.CircuitBreakerListener):
    """Log breaker state changes and counted failures."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        if new_state.name == "open":
            logger.warning(
                f"Circuit breaker '{cb.name}' OPENED - failing fast for {cb.reset_timeout}s"
            )
        else:
            logger.info(
                f"Circuit breaker '{cb.name}' state: {old_state.name} -> {new_state.name}"
            )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        logger.warning(
            f"Circuit breaker '{cb.name}' recorded failure: {type(exc).__name__}: {exc}"
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}
# Consecutive failures seen by call_with_breaker, per breaker name
_failure_counts: dict[str, int] = {}
# Monotonic time each breaker was opened by call_with_breaker
_opened_at: dict[str, float] = {}
_listener = BreakerStateLogger()


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 30,
    exclude: list[type] | None = None,
) -> pybreaker.CircuitBreaker:
    """
    Get or create a named circuit breaker (one instance per name).

    Args:
        name: Breaker identifier
        fail_max: Consecutive failures before opening
        reset_timeout: Seconds before a half-open trial call
        exclude: Exception types that do not count as failures
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=exclude or [],
            listeners=[_listener],
        )
        logger.info(
            f"Created circuit breaker '{name}' | fail_max={fail_max} | reset_timeout={reset_timeout}s"
        )
    return _breakers[name]


transition_breaker = get_circuit_breaker("transition_api", fail_max=5, reset_timeout=30)
calendar_breaker = get_circuit_breaker("calendar", fail_max=5, reset_timeout=15)
email_breaker = get_circuit_breaker("email", fail_max=5, reset_timeout=60)


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable,
    *args,
    **kwargs,
) -> Any:
    """
    Await func(*args, **kwargs) under breaker protection.

    pybreaker's call_async() needs Tornado, so for asyncio the breaker is
    consulted and updated by hand: fail fast while OPEN, open after fail_max
    consecutive system errors, allow one trial call once reset_timeout has
    passed, close again after a successful trial.

    Raises:
        pybreaker.CircuitBreakerError: If the circuit is open
        Exception: Whatever func raised
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        opened_at = _opened_at.get(breaker.name)
        if opened_at is not None and time.monotonic() - opened_at >= breaker.reset_timeout:
            breaker.half_open()

    if breaker.current_state == pybreaker.STATE_OPEN:
        logger.warning(f"Circuit breaker '{breaker.name}' is OPEN, failing fast")
        raise pybreaker.CircuitBreakerError(breaker)

    try:
        result = await func(*args, **kwargs)
    except Exception as e:
        if breaker.is_system_error(e):
            _failure_counts[breaker.name] = _failure_counts.get(breaker.name, 0) + 1
            _listener.failure(breaker, e)
            if (
                breaker.current_state == pybreaker.STATE_HALF_OPEN
                or _failure_counts[breaker.name] >= breaker.fail_max
            ):
                breaker.open()
                _opened_at[breaker.name] = time.monotonic()
                _failure_counts[breaker.name] = 0
        raise

    _failure_counts[breaker.name] = 0
    if breaker.current_state == pybreaker.STATE_HALF_OPEN:
        breaker.close()
    return result


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """Breaker states for health checks: {name: {state, fail_counter, reset_timeout}}."""
    return {
        name: {
            "state": breaker.current_state,
            "fail_counter": _failure_counts.get(name, 0),
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }


def reset_breakers() -> None:
    """Close every breaker and clear failure counts."""
    for breaker in _breakers.values():
        if breaker.current_state != pybreaker.STATE_CLOSED:
            breaker.close()
    _failure_counts.clear()
    _opened_at.clear()
