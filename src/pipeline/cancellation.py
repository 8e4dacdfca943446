# ========================
# src/pipeline/cancellation.py
# ========================

"""
Cancellation Signal

A CancelToken is handed to every engine operation. Stages poll it while
iterating rows, so a cancelled or timed-out run stops mid-stage instead of
only at stage boundaries.
"""

import threading
import time
from typing import Optional

from .errors import OperationCancelledError

DEFAULT_POLL_INTERVAL = 1024


class CancelToken:
    """
    Manual cancellation flag with an optional deadline.

    Args:
        timeout (float): Seconds from creation until the token expires
        poll_interval (int): Rows between two checks inside a stage loop
    """

    def __init__(self, timeout: Optional[float] = None, poll_interval: int = DEFAULT_POLL_INTERVAL):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self.poll_interval = max(1, int(poll_interval))
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.reason = self.reason or "deadline exceeded"
            return True
        return False

    def check(self, step: str) -> None:
        """Raise OperationCancelledError if the token is cancelled or expired."""
        if self.cancelled:
            raise OperationCancelledError(step, f"operation {self.reason}")

    def poll(self, step: str, index: int) -> None:
        """Check the token every ``poll_interval`` rows."""
        if index % self.poll_interval == 0:
            self.check(step)


def check_cancelled(cancel: Optional[CancelToken], step: str) -> None:
    if cancel is not None:
        cancel.check(step)
