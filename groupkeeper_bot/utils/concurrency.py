from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_blocking(
    func: Callable[..., T],
    *args: Any,
    loop: asyncio.AbstractEventLoop | None = None,
    **kwargs: Any,
) -> T:
    """Run a blocking callable in the default executor."""
    event_loop = loop or asyncio.get_running_loop()
    return await event_loop.run_in_executor(None, partial(func, *args, **kwargs))
