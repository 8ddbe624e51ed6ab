"""Deadline and cancellation carried through every network call."""
from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import RequestCancelledError


class RequestContext:
    """Caller-owned cancellation token with an optional deadline.

    A context is cancelled either explicitly through :meth:`cancel` (safe to
    call from another thread) or implicitly once its deadline has passed.
    Network code calls :meth:`check` before and after every HTTP request and
    uses :meth:`timeout_for` to bound the transport timeout.

    Example::

        ctx = RequestContext(timeout=5)
        api = client.authenticate(npsso, ctx=ctx)
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        """
        Args:
            timeout: Seconds from now until the deadline, or ``None`` for no
                     deadline.
        """
        self._cancelled = threading.Event()
        self._deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )

    @classmethod
    def background(cls) -> 'RequestContext':
        """A context that is never cancelled unless :meth:`cancel` is called."""
        return cls()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set() or self.deadline_exceeded

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or ``None``."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout_for(self, default: float) -> float:
        """Transport timeout for the next request, capped by the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def check(self, stage: str) -> None:
        """Raise :class:`RequestCancelledError` if the context is done.

        Args:
            stage: Short description of the step, used in the message.
        """
        if self._cancelled.is_set():
            raise RequestCancelledError(f"{stage} cancelled")
        if self.deadline_exceeded:
            raise RequestCancelledError(f"{stage} cancelled: deadline exceeded")
