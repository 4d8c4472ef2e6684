"""Cancellation tokens accepted by every read operation."""

import threading
import time
from typing import Optional

from retrieval_engine.errors import Cancelled


class CancellationToken:
    """
    Cooperative cancellation with an optional deadline.

    A token is cancelled either explicitly through `cancel()` or implicitly once
    its deadline (a `time.monotonic()` timestamp) has passed. Scans call
    `raise_if_cancelled()` between batches.
    """

    def __init__(self, deadline: Optional[float] = None):
        self.deadline = deadline
        self._event = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled("The operation was cancelled before it completed.")


def check(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()
