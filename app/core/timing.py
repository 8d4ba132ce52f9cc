import asyncio
import logging
from typing import Awaitable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def ensure_time_span(operation: Awaitable[T], interval: float) -> T:
    """
    Await `operation`, but don't return before `interval` seconds passed.

    A fast result is held back for the rest of `interval`. Operations
    slower than `interval` get no extra delay. Errors are raised right
    away and `interval <= 0` never sleeps.

    Args:
        operation: Awaitable doing the actual I/O.
        interval: Minimum duration in seconds (wall clock).

    Returns:
        Whatever `operation` returned.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()

    result = await operation

    remaining = interval - (loop.time() - started)
    if remaining > 0:
        logger.debug(f"Holding result back for {remaining:.3f}s")
        await asyncio.sleep(remaining)
    return result
