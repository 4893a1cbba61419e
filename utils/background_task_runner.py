"""
Thread offloading for blocking database work called from async code

Services use synchronous SQLAlchemy sessions; async handlers and scheduler
jobs hand those calls to a worker thread so the event loop keeps serving.
"""

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


async def run_io_task(fn: Callable, *args, **kwargs) -> Any:
    """
    Execute a blocking function in the default thread pool.

    Exceptions propagate to the awaiting caller unchanged.
    """
    logger.debug(f"run_io_task: offloading {getattr(fn, '__qualname__', fn)}")
    return await asyncio.to_thread(fn, *args, **kwargs)


__all__ = ["run_io_task"]
