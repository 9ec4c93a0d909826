"""
Retry logic with capped exponential backoff for remote job calls.

A failed call is retried only when it is transient: no HTTP status at all
(network failure or timeout), 429, or any 5xx. Everything else fails fast.
"""

import time
from typing import Callable, Optional, TypeVar

from .config import RebuildError

T = TypeVar("T")

MAX_BACKOFF_MULTIPLIER = 16


class CallError(RebuildError):
    """
    A single remote call failed.

    Attributes:
        path: API path that was called
        status: HTTP status, or 0 when no response was received
        detail: Best-effort message extracted from the response
    """

    def __init__(self, path: str, status: int, detail: str):
        self.path = path
        self.status = int(status or 0)
        self.detail = detail
        super().__init__(f"{path} -> {self.status}: {detail}" if self.status else f"{path} -> {detail}")

    @property
    def retriable(self) -> bool:
        return is_retriable_status(self.status)


def is_retriable_status(status: Optional[int]) -> bool:
    """
    Check if a call outcome should be retried.

    Args:
        status: HTTP status code; 0 or None for a network failure/timeout

    Returns:
        True for network failures, 429 and 5xx
    """
    if not status:
        return True
    code = int(status)
    return code == 429 or 500 <= code <= 599


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry `attempt` (1-indexed): base * min(16, 2^(attempt-1))."""
    return base_delay * min(MAX_BACKOFF_MULTIPLIER, 2 ** (attempt - 1))


def call_with_retry(
    func: Callable[[], T],
    max_retries: int,
    base_delay: float,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, CallError, float], None]] = None,
) -> T:
    """
    Run `func` until it succeeds, fails permanently or exhausts its retries.

    Args:
        func: Zero-argument callable raising CallError on failure
        max_retries: Retries allowed after the first attempt (0 = no retries)
        base_delay: Backoff base in seconds
        sleep: Suspend primitive (injectable for tests)
        on_retry: Optional callback(attempt, error, delay) before each pause

    Raises:
        CallError: The non-retriable error, or the last error once
            attempts exceed max_retries
    """
    attempt = 0
    while True:
        try:
            return func()
        except CallError as e:
            attempt += 1
            if not e.retriable or attempt > max_retries:
                raise
            delay = backoff_delay(attempt, base_delay)
            if on_retry:
                on_retry(attempt, e, delay)
            sleep(delay)
