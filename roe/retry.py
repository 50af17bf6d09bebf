"""Bounded exponential backoff for collaborator calls."""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from .config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(policy: RetryPolicy) -> list[float]:
    """Sleep durations between attempts (one fewer than ``attempts``)."""
    delays = []
    for attempt in range(1, policy.attempts):
        delays.append(min(policy.max_delay_s, policy.base_delay_s * (2 ** (attempt - 1))))
    return delays


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``policy.attempts`` is exhausted.

    The last exception is re-raised unchanged.
    """
    delays = backoff_delays(policy)
    for attempt in range(1, policy.attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= policy.attempts:
                logger.warning("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            delay = delays[attempt - 1]
            logger.debug("%s attempt %d failed (%s); retrying in %.2fs", label, attempt, exc, delay)
            sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["backoff_delays", "call_with_retry"]
