"""
Retry with backoff for transient gateway failures.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy: ``base_delay * multiplier ** (attempt - 1)`` capped at ``max_delay``."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_ratio: float = 0.1


class RetryError(Exception):
    """All attempts failed; ``last_exception`` is the final cause."""

    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


async def retry_async(func: Callable[..., Awaitable[Any]],
                      *args,
                      exceptions: tuple = (Exception,),
                      config: Optional[RetryConfig] = None,
                      sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                      **kwargs) -> Any:
    """Call ``func`` until it succeeds or ``config.max_attempts`` is reached.

    Only ``exceptions`` are retried; anything else propagates immediately.
    Exhaustion raises :class:`RetryError` carrying the last failure.
    """
    config = config or RetryConfig()
    if config.max_attempts < 1:
        raise ValueError("RetryConfig.max_attempts must be at least 1")

    name = getattr(func, "__name__", repr(func))
    logger = get_logger(f"sync.retry.{name}")

    attempt = 1
    while True:
        try:
            result = await func(*args, **kwargs)
        except exceptions as e:
            if attempt >= config.max_attempts:
                logger.error("Giving up", attempts=attempt, function=name, error=str(e))
                raise RetryError(
                    f"{name} failed after {attempt} attempts", last_exception=e, attempts=attempt
                ) from e
            delay = _calculate_delay(attempt, config)
            logger.warning("Attempt failed, backing off", attempt=attempt, delay=delay, function=name, error=str(e))
            await sleep(delay)
            attempt += 1
            continue

        if attempt > 1:
            logger.info("Recovered after retry", attempt=attempt, function=name)
        return result


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Backoff before ``attempt + 1``."""
    delay = min(config.base_delay * config.multiplier ** (attempt - 1), config.max_delay)
    if config.jitter:
        spread = delay * config.jitter_ratio
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)
