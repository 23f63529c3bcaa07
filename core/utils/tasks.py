"""Background task helpers for Qt signal handlers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected
_background_tasks: set[asyncio.Future] = set()


def spawn(coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Future]:
    """
    Schedule a coroutine on the running event loop from synchronous code.

    Returns None (and closes the coroutine) when no loop is running.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop; dropping %s", coro.__qualname__)
        coro.close()
        return None

    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
