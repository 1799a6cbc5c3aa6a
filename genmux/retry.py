import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import TransportError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff policy."""

    max_retries: int = 2
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N (1-based)."""
        delay = min(self.initial_delay * (self.multiplier ** (retry_number - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * random.random()
        return min(delay, self.max_delay)


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    provider: str,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, TransportError, float], None]] = None,
) -> T:
    """
    Run an async vendor call, retrying retryable transport failures.

    Every exception is classified with `classify_error`. Non-retryable errors
    (and retryable ones once the budget is spent) are raised as the mapped
    genmux error, chained to the original exception.

    Args:
        operation: Zero-argument coroutine factory performing the call.
        provider: Provider tag, used for classification and logging.
        policy: Retry budget and backoff.
        sleep: Awaitable sleep, injectable for tests.
        on_retry: Optional callback(retry_number, error, delay).

    Returns:
        The operation's result.
    """
    retries = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            mapped = classify_error(exc, provider)
            retryable = isinstance(mapped, TransportError) and mapped.retryable
            if not retryable or retries >= policy.max_retries:
                if isinstance(mapped, TransportError):
                    mapped.attempts = retries + 1
                if mapped is exc:
                    raise
                raise mapped from exc

            retries += 1
            delay = policy.delay_for(retries)
            logger.warning(
                "%s call failed (%s), retry %d/%d in %.2fs",
                provider, mapped.kind, retries, policy.max_retries, delay,
            )
            if on_retry is not None:
                on_retry(retries, mapped, delay)
            await sleep(delay)
