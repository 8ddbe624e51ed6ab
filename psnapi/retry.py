"""
retry.py
========
Bounded, jittered retries for transient PSN failures.

The session itself makes a single attempt per call.  Callers that want to
ride out rate limiting or flaky networks wrap a call explicitly::

    policy = RetryPolicy(max_retries=3, initial_delay=1.0)
    games = call_with_retry(policy, api.get_user_games, "me")

Only :class:`RateLimitedError` and :class:`TransportError` are retried;
everything else propagates on the first attempt.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .context import RequestContext
from .errors import RateLimitedError, RequestCancelledError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRYABLE_ERRORS: Tuple[Type[Exception], ...] = (RateLimitedError, TransportError)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    ``max_retries`` counts retries, not attempts: ``max_retries=3`` allows up
    to four calls.  Delays are in seconds.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be non-negative")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")

    def calculate_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number *attempt* (1-based).

        A server ``Retry-After`` hint replaces the computed backoff but is
        still capped at ``max_delay``.
        """
        if attempt <= 0:
            return 0.0
        if retry_after is not None:
            return min(max(0.0, retry_after), self.max_delay)

        delay = min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter and delay > 0:
            # 10% jitter
            spread = delay * 0.1
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay


def call_with_retry(
    policy: RetryPolicy,
    func: Callable[..., T],
    *args,
    ctx: Optional[RequestContext] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> T:
    """Call ``func(*args, ctx=ctx, **kwargs)``, retrying transient failures.

    Retries stop early when the next delay would run past the context
    deadline; the last error is then re-raised.

    Raises:
        The last :data:`RETRYABLE_ERRORS` instance once retries are
        exhausted, any other exception immediately, or
        :class:`RequestCancelledError` if *ctx* is cancelled between tries.
    """
    attempt = 0
    while True:
        try:
            return func(*args, ctx=ctx, **kwargs)
        except RETRYABLE_ERRORS as exc:
            attempt += 1
            if attempt > policy.max_retries:
                raise

            retry_after = getattr(exc, 'retry_after', None)
            delay = policy.calculate_delay(attempt, retry_after)
            if ctx is not None:
                remaining = ctx.remaining()
                if remaining is not None and delay >= remaining:
                    raise
            logger.info("PSN: %s, retrying in %.1fs (attempt %d/%d)",
                        exc, delay, attempt, policy.max_retries)
            sleep(delay)
            if ctx is not None and ctx.cancelled:
                raise RequestCancelledError("retry cancelled") from exc
