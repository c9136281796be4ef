from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Coroutine, ParamSpec, TypeVar, cast

from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import TransientError

P = ParamSpec("P")
T = TypeVar("T")


def retry_transient(
    max_attempts: int = 3,
    base_wait: float = 1.0,
    max_wait: float = 30.0,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]
]:
    """
    Decorator for retrying ``TransientError`` with exponential backoff.

    Args:
        max_attempts: Total attempts, the first call included (default: 3)
        base_wait: Multiplier for the exponential wait in seconds (default: 1.0)
        max_wait: Cap on a single wait in seconds (default: 30.0)

    Any other exception propagates immediately. When attempts run out the last
    ``TransientError`` is re-raised as-is.
    """
    logger = logging.getLogger(__name__)

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]],
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        @wraps(func)
        @retry(
            stop=stop_after_attempt(max(max_attempts, 1)),
            wait=wait_exponential(multiplier=base_wait, max=max_wait, exp_base=2),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return cast(T, await func(*args, **kwargs))

        return wrapper

    return decorator
