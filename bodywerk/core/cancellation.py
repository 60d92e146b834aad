"""
Cooperative cancellation for long-running engine operations

Every engine operation accepts a CancellationToken. Tokens are checked
before each upstream request and every deliberate delay waits on the
token's event, so cancelling short-circuits pending sleeps immediately.
An in-flight HTTP request is allowed to finish; the operation then
resolves with Cancelled.
"""

import threading
import time
import uuid
from typing import Any, Dict, Optional

from .exceptions import Cancelled


class CancellationToken:
    """
    Cancellation signal shared between a caller and one engine operation

    The facade hands these out as operation handles. A token can be
    cancelled from any thread; the operation notices at its next
    suspension point.
    """

    def __init__(self, name: Optional[str] = None):
        self.id = uuid.uuid4().hex
        self.name = name or "operation"
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        self._event.set()

    def raise_if_cancelled(self, details: Optional[Dict[str, Any]] = None) -> None:
        """Raise Cancelled if the signal has been set."""
        if self._event.is_set():
            raise Cancelled(f"{self.name} was cancelled", details=details)

    def sleep(self, seconds: float) -> None:
        """
        Wait for the given delay unless cancelled first

        Args:
            seconds: Delay in seconds, non-positive values only check the signal

        Raises:
            Cancelled: If the token is cancelled before or during the wait
        """
        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(seconds):
            self.raise_if_cancelled()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancellationToken({self.name!r}, {state})"


def interruptible_sleep(seconds: float, token: Optional[CancellationToken] = None) -> None:
    """
    Sleep that honours an optional cancellation token

    This is the default sleeper injected into the gateway, enricher and
    publish pipeline. Tests replace it with a fake clock.
    """
    if token is not None:
        token.sleep(seconds)
    elif seconds > 0:
        time.sleep(seconds)


__all__ = ["CancellationToken", "interruptible_sleep"]
