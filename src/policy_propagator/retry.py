"""Bounded retry for remote object store operations.

Every listing or mutating call the propagator makes goes through a
:class:`Retrier`.  The operation is attempted up to ``attempts`` times
with an exponential delay (starting at ``delay``, capped at ``max_delay``)
between attempts.  Only the last error is surfaced; exhaustion is not an
error kind of its own, callers decide what giving up means.

Errors deriving from :class:`Unrecoverable` are raised immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Unrecoverable(Exception):
    """Base for errors that retrying cannot fix (bad input, not bad luck)."""


class Retrier:
    """Runs an operation with a fixed attempt budget and capped backoff."""

    def __init__(
        self,
        attempts: int = 3,
        delay: float = 2.0,
        max_delay: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError(f"attempts must be positive, got {attempts}")
        self._attempts = attempts
        self._delay = delay
        self._max_delay = max_delay
        self._sleep = sleep

    @property
    def attempts(self) -> int:
        return self._attempts

    def delay_for(self, attempt: int) -> float:
        """Delay after the *attempt*-th failure (1-based)."""
        return min(self._delay * (2 ** (attempt - 1)), self._max_delay)

    def execute(self, operation: Callable[[], T], description: str) -> T:
        """Call *operation* until it succeeds or the attempts run out.

        Returns the operation's result; re-raises the last error on
        exhaustion.
        """
        for attempt in range(1, self._attempts + 1):
            try:
                return operation()
            except Unrecoverable:
                raise
            except Exception as exc:
                if attempt == self._attempts:
                    raise
                logger.info("%s (attempt %d/%d failed: %s)", description, attempt, self._attempts, exc)
                self._sleep(self.delay_for(attempt))
        raise AssertionError("unreachable")
