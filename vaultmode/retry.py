"""
Bounded polling with a typed timeout outcome.

Used to wait for the Vault process to become reachable after a restart. Polling is
always bounded by an attempt count; running out of attempts is reported as
PollOutcome.TIMED_OUT rather than raised, so callers decide how to surface it.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

LOGGER = logging.getLogger("vaultmode.retry")


class PollOutcome(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    attempts: int
    waited: float
    last_error: str | None = None
    value: Any = None

    @property
    def ready(self) -> bool:
        return self.outcome is PollOutcome.READY


def backoff_delays(attempts: int, interval: float, backoff: float = 1.0, max_interval: float | None = None) -> list[float]:
    """
    Delays slept between consecutive attempts.

    backoff=1.0 gives a fixed interval; backoff=2.0 doubles the delay after each
    attempt, capped at max_interval.

    Example:
    -------
        >>> backoff_delays(4, 1.0, backoff=2.0)
        [1.0, 2.0, 4.0]

    """
    delays = []
    delay = interval
    for _ in range(max(0, attempts - 1)):
        delays.append(min(delay, max_interval) if max_interval is not None else delay)
        delay *= backoff
    return delays


def poll_until(
    check: Callable[[], Any],
    attempts: int,
    interval: float,
    backoff: float = 1.0,
    max_interval: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "condition",
) -> PollResult:
    """
    Call check() until it returns a truthy value or attempts run out.

    Exceptions raised by check() count as a failed attempt; their message is kept
    as last_error.

    Args:
    ----
        check: Callable returning a truthy value when ready
        attempts: Maximum number of calls (>= 1)
        interval: Initial delay between calls in seconds
        backoff: Delay multiplier (1.0 = fixed interval)
        max_interval: Optional cap for the delay
        sleep: Sleep function (tests pass a no-op)
        description: Used in log messages

    Returns:
    -------
        PollResult with READY and the truthy value, or TIMED_OUT

    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    delays = backoff_delays(attempts, interval, backoff, max_interval)
    waited = 0.0
    last_error: str | None = None

    for attempt in range(1, attempts + 1):
        try:
            value = check()
        except Exception as e:
            value = None
            last_error = str(e)

        if value:
            LOGGER.debug(f"{description} ready after {attempt} attempt(s)")
            return PollResult(PollOutcome.READY, attempt, waited, last_error, value)

        if attempt < attempts:
            LOGGER.info(f"Attempt {attempt}/{attempts}: {description} not ready yet...")
            delay = delays[attempt - 1]
            sleep(delay)
            waited += delay

    LOGGER.warning(f"{description} not ready after {attempts} attempts")
    return PollResult(PollOutcome.TIMED_OUT, attempts, waited, last_error)
