"""
Fallback/Retry Layer
Bounded exponential backoff for transient provider and store failures,
plus the one-shot session refresh wrapper used around auth lookups
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from ..config import config
from ..errors import TransientError, SessionExpiredError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RequestContext:
    """
    Per-request retry state

    Created for each incoming request (or job run) and passed down
    explicitly; attempts are never shared between requests.
    """
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    deadline: Optional[float] = None  # time.monotonic() value
    attempts: int = 0

    @classmethod
    def with_timeout(cls, seconds: float, request_id: Optional[str] = None) -> "RequestContext":
        ctx = cls(deadline=time.monotonic() + seconds)
        if request_id:
            ctx.request_id = request_id
        return ctx

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 2.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_attempts=config.SYNC_MAX_ATTEMPTS,
            base_delay=config.SYNC_RETRY_BASE_DELAY,
            max_delay=config.SYNC_RETRY_MAX_DELAY,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows `attempt` (1-based)"""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    context: RequestContext,
    description: str = "operation",
) -> T:
    """
    Run an operation, retrying TransientError with bounded backoff

    Only TransientError subclasses are retried; everything else propagates
    on the first failure. Stops early when the next backoff would run past
    the context deadline. The last transient error is re-raised.
    """
    attempt = 0
    while True:
        attempt += 1
        context.attempts += 1
        try:
            return operation()
        except TransientError as e:
            if attempt >= policy.max_attempts:
                logger.warning(
                    f"{description} failed after {attempt} attempts: {e}",
                    extra={"request_id": context.request_id}
                )
                raise

            delay = policy.delay_for(attempt)
            remaining = context.remaining()
            if remaining is not None and remaining <= delay:
                logger.warning(
                    f"{description} deadline reached after {attempt} attempts: {e}",
                    extra={"request_id": context.request_id}
                )
                raise

            logger.info(
                f"{description} transient failure (attempt {attempt}/{policy.max_attempts}), "
                f"retrying in {delay:.2f}s: {e}",
                extra={"request_id": context.request_id}
            )
            policy.sleep(delay)


def with_session_refresh(operation: Callable[[], T], refresh: Callable[[], None]) -> T:
    """
    Run an auth-session lookup, refreshing the session once on expiry

    A second SessionExpiredError propagates; callers fall back to cached data.
    """
    try:
        return operation()
    except SessionExpiredError:
        logger.info("Session expired, attempting refresh")
        refresh()
        return operation()
