# foodsync/utils/timeouts.py
# Hard deadline for async calls

import asyncio
import logging
from functools import wraps
from typing import Callable

logger = logging.getLogger(__name__)


def with_timeout(seconds: float):
    """
    Decorator to add timeout to async functions.

    Usage:
        @with_timeout(10.0)
        async def slow_operation():
            ...

        # or with a deadline only known at runtime
        await with_timeout(self.timeout)(self._post)(path, body)
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs),
                    timeout=seconds
                )
            except asyncio.TimeoutError:
                logger.error(f"Timeout ({seconds}s) exceeded for {func.__name__}")
                raise

        return wrapper
    return decorator
