from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable


logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], Awaitable[None] | None]


class SyncScheduler:
    """Coalesces change notifications into at most one pending pass.

    `request()` queues a pass on the next loop iteration; further requests
    before it starts are merged into it. A request made while a pass is running
    queues exactly one more pass. Until `enable()` is called, requests are only
    remembered, so a view that is still wiring itself up is not called early.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self._callbacks: list[ChangeCallback] = []
        self._enabled = enabled
        self._deferred = False
        self._scheduled = False
        self._task: asyncio.Task[None] | None = None
        self.passes = 0

    def add_listener(self, callback: ChangeCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def enable(self) -> None:
        self._enabled = True
        if self._deferred:
            self._deferred = False
            self.request()

    def request(self) -> None:
        if not self._enabled:
            self._deferred = True
            return
        if self._scheduled:
            return
        self._scheduled = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(0)
        self._scheduled = False
        self.passes += 1
        for callback in list(self._callbacks):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Unable to synchronize views")

    async def drain(self) -> None:
        """Wait until no pass is pending or running."""

        while self._task is not None and not self._task.done():
            await self._task
