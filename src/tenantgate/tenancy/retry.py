from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable

from tenantgate.configs.logging_config import get_logger

log = get_logger(__name__)


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted."""


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    attempts: int = 3,
    initial_delay: float = 0.1,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
    **kwargs: Any,
) -> Any:
    """
    Await `func(*args, **kwargs)`, retrying transient failures.

    Only exceptions listed in `retry_on` are retried; anything else propagates
    on the first occurrence. Delay grows as initial_delay * base**(n-1), capped
    at max_delay, with 50%-150% jitter when enabled.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            result = await func(*args, **kwargs)
            if attempt > 1:
                log.info("retry.recovered label=%s attempt=%s/%s", label, attempt, attempts)
            return result
        except retry_on as e:
            if attempt >= attempts:
                log.error(
                    "retry.exhausted label=%s attempts=%s error=%s: %s",
                    label,
                    attempts,
                    type(e).__name__,
                    e,
                )
                raise RetryExhaustedError(f"{label} failed after {attempts} attempts") from e

            delay = min(initial_delay * (exponential_base ** (attempt - 1)), max_delay)
            if jitter:
                delay = delay * (0.5 + random.random())
            log.warning(
                "retry.attempt_failed label=%s attempt=%s/%s delay_s=%.3f error=%s",
                label,
                attempt,
                attempts,
                delay,
                type(e).__name__,
            )
            await asyncio.sleep(delay)
