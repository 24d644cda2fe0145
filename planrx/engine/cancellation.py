import threading
import time
from typing import Optional

from planrx.models.errors import ComputationCancelled


class Deadline:
    """Cooperative cancellation token: a time limit, an explicit cancel, or both."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._expires_at = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        self._cancelled = threading.Event()

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self) -> None:
        if self._cancelled.is_set():
            raise ComputationCancelled("Computation cancelled by caller")
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            raise ComputationCancelled("Computation exceeded its deadline")
