"""Exponential backoff for retrying conditions."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Iterator

from .errors import sanitize_exception

logger = logging.getLogger(__name__)


class BackoffExhausted(Exception):
    """Raised when a condition was not met within the allowed attempts."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff profile.

    Attributes:
        duration: Delay after the first failed attempt, in seconds
        factor: Multiplier applied to the delay after every attempt
        jitter: Each delay is extended by up to ``jitter * delay``
        steps: Maximum number of attempts
    """

    duration: float
    factor: float = 2.0
    jitter: float = 1.0
    steps: int = 10

    def delays(self, rand: Callable[[], float] = random.random) -> Iterator[float]:
        """Yield the sleep before each retry (``steps - 1`` values)."""
        duration = self.duration
        for _ in range(self.steps - 1):
            delay = duration
            if self.jitter > 0:
                delay = duration + rand() * self.jitter * duration
            yield delay
            duration *= self.factor


# 10ms, 20ms, ... with full jitter, 10 attempts
REFRESH_BACKOFF = Backoff(duration=0.01, factor=2.0, jitter=1.0, steps=10)

# 1s, 2s, ... with full jitter, 10 attempts
POLL_BACKOFF = Backoff(duration=1.0, factor=2.0, jitter=1.0, steps=10)


def exponential_backoff(
    condition: Callable[[], bool],
    backoff: Backoff,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "condition",
) -> None:
    """Run ``condition`` until it returns True, sleeping between attempts.

    An attempt that raises is logged and retried like one that returns
    False.

    Raises:
        BackoffExhausted: If no attempt succeeded; carries the last error raised
    """
    last_error: Exception | None = None
    delays = backoff.delays()
    for attempt in range(1, backoff.steps + 1):
        try:
            if condition():
                return
        except Exception as e:
            last_error = e
            logger.warning(
                f"{description} failed (attempt {attempt}/{backoff.steps}): {sanitize_exception(e)}"
            )
        if attempt < backoff.steps:
            sleep(next(delays))

    message = f"timed out waiting for {description} after {backoff.steps} attempts"
    if last_error is not None:
        raise BackoffExhausted(message, last_error) from last_error
    raise BackoffExhausted(message)
