"""
Shared retry policy for Shopify HTTP calls.

Retryable: no response at all (status 0: connection reset, DNS, timeout),
HTTP 429 and 5xx, and GraphQL THROTTLED errors. Anything else surfaces
immediately. Delays grow as base * 2**attempt plus up to max_jitter seconds.
"""
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from catalog_sync.shopify.errors import RemoteTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_status(status: int) -> bool:
    """True for status 0 (no response), 429 and 5xx."""
    return status == 0 or status == 429 or 500 <= status < 600


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 2.0
    max_jitter: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)
    jitter: Callable[[], float] = field(default=random.random, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (zero-based)."""
        return self.base_delay * (2 ** attempt) + self.jitter() * self.max_jitter

    def call(self, fn: Callable[[], T], *, description: str = "request") -> T:
        """
        Invoke fn until it succeeds or the attempt budget runs out.

        fn signals a retryable failure by raising RemoteTransientError; any
        other exception propagates on the first occurrence.
        """
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return fn()
            except RemoteTransientError as exc:
                if attempt == attempts - 1:
                    logger.error(
                        "%s failed after %d attempts: %s", description, attempts, exc
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description, attempt + 1, attempts, exc, delay,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
