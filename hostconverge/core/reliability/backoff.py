"""
Bounded retry with exponential backoff and jitter.

Used for package-manager lock contention: the lock is held by another
process (unattended-upgrades, a concurrent apt) and usually frees up
within seconds.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from hostconverge.adapters.shell.runner import CommandResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between."""

    attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.3

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter and delay:
            delay += random.uniform(0, delay * self.jitter)
        return delay


def retry_on_lock(
    fn: Callable[[], CommandResult],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    describe: str = "",
) -> tuple[CommandResult, int]:
    """Call ``fn`` until it stops reporting lock contention.

    Returns:
        (last result, attempts made). If every attempt was contended the
        last result still carries ``lock_contention=True``.
    """
    attempt = 0
    while True:
        attempt += 1
        result = fn()
        if not result.lock_contention:
            return result, attempt
        if attempt >= policy.attempts:
            logger.warning(
                "%s: package lock still held after %d attempts",
                describe or result.command,
                attempt,
            )
            return result, attempt
        delay = policy.delay_for(attempt)
        logger.info(
            "%s: package lock held, retrying in %.1fs (attempt %d/%d)",
            describe or result.command,
            delay,
            attempt + 1,
            policy.attempts,
        )
        sleep(delay)
