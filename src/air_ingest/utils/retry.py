from typing import Callable, Any, Optional, Tuple, Type
import asyncio
import random
import functools
from ..utils.logging import get_logger
from ..utils.exceptions import FetchError, PayloadError

logger = get_logger(__name__)


def is_transient(exc: Exception) -> bool:
    """Client errors (4xx) and malformed bodies will not go away by asking again"""
    if isinstance(exc, PayloadError):
        return False
    if isinstance(exc, FetchError) and exc.status is not None:
        return exc.status == 429 or exc.status >= 500
    return True


def async_retry_with_backoff(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Callable[[Exception], bool] = is_transient
) -> Callable:
    """
    Decorator for async functions to retry with exponential backoff.

    Only used for one-shot lookups (metadata discovery). The polling loops
    do not retry inside a tick, they wait for the next one.

    Args:
        max_retries (int): Maximum number of retry attempts
        base_delay (float): Initial delay between retries in seconds
        max_delay (float): Maximum delay between retries in seconds
        exponential_base (float): Base for exponential backoff calculation
        jitter (bool): Whether to add random jitter (±25%) to the delay
        exceptions (tuple): Exception types to catch
        should_retry (callable): Predicate deciding if a caught error is worth another attempt
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            last_exception: Optional[Exception] = None

            while attempt <= max_retries:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    attempt += 1

                    if attempt > max_retries or not should_retry(e):
                        logger.error(
                            f"{func.__qualname__} failed after {attempt} attempt(s): {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
                    if jitter:
                        delay += random.uniform(-delay * 0.25, delay * 0.25)
                    delay = max(0.0, min(delay, max_delay))

                    logger.warning(
                        f"Attempt {attempt} failed for {func.__qualname__}: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

            raise last_exception or RuntimeError("Unexpected retry failure")

        return wrapper

    return decorator
