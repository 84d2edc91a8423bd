"""Owned worker threads for blocking engine and command calls."""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from dxregress.errors import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlockingCallRunner:
    """Runs blocking callables on a private thread pool.

    Once :meth:`close` (or :meth:`drain`) has been called no new work is
    accepted; calls already handed to a worker thread run to completion.
    """

    def __init__(self, *, max_workers: int = 8, thread_name_prefix: str = "dxregress") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def run(self, func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        if self._closed.is_set():
            raise CancellationError("blocking call runner is closed; no new calls are accepted")
        loop = asyncio.get_running_loop()
        call = functools.partial(func, *args, **kwargs)
        return await loop.run_in_executor(self._executor, call)

    def close(self) -> None:
        """Stop accepting calls; queued calls that have not started are dropped."""

        if self._closed.is_set():
            return
        self._closed.set()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def drain(self) -> None:
        """Stop accepting calls and block until in-flight calls finish."""

        self._closed.set()
        logger.debug("draining blocking calls")
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> BlockingCallRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.drain()


__all__ = ["BlockingCallRunner"]
