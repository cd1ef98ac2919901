import asyncio
import logging
import random
from typing import Type, List, Optional, Callable, Awaitable, Any

logger = logging.getLogger(__name__)


async def call_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    retry_on: Optional[List[Type[BaseException]]] = None,
    jitter: bool = True,
    **kwargs,
) -> Any:
    """
    Await ``func`` with exponential backoff between failed attempts.

    Args:
        max_attempts: Maximum number of attempts (1 disables retrying).
        initial_delay: Initial delay in seconds.
        max_delay: Maximum delay in seconds.
        backoff_factor: Multiplier for the delay.
        retry_on: Exception types to retry on. If None, retries on all Exceptions.
        jitter: Whether to add random jitter to the delay.
    """
    retry_types = tuple(retry_on or [Exception])
    delay = initial_delay
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_types as e:
            logger.warning(f"Attempt {attempt}/{max_attempts} failed for {name}: {e}")

            if attempt >= max_attempts:
                raise

            current_delay = delay * (0.5 + random.random()) if jitter else delay
            await asyncio.sleep(min(current_delay, max_delay))
            delay *= backoff_factor
