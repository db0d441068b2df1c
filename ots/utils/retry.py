"""Retry utilities for transient or regenerable failures."""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def async_retry(
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    backoff_max: float = 60.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[Exception, int], None] | None = None,
):
    """Decorator for retrying async functions with exponential backoff.

    Each attempt re-invokes the wrapped coroutine function from scratch, so
    anything generated inside it (such as a secret ID) is regenerated.

    Args:
        max_attempts: Maximum number of attempts
        backoff_base: Base for exponential backoff (seconds)
        backoff_max: Maximum backoff time (seconds); 0 disables sleeping
        exceptions: Tuple of exception types to retry on
        on_retry: Optional callback function called on each retry

    Returns:
        Decorated function that retries on failure

    Example:
        @async_retry(max_attempts=5, exceptions=(OperationalError,))
        async def connect(engine):
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: "
                            f"{type(e).__name__}"
                        )
                        raise

                    backoff = min(backoff_base ** (attempt - 1), backoff_max)

                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed: "
                        f"{type(e).__name__}. Retrying in {backoff:.1f}s..."
                    )

                    if on_retry:
                        on_retry(e, attempt)

                    await asyncio.sleep(backoff)

            raise RuntimeError(f"{func.__name__} called with max_attempts < 1")

        return wrapper

    return decorator
