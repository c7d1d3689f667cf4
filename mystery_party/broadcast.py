from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from fastapi import WebSocket

from mystery_party.api.models import GameRecord, SyncEvent


logger = logging.getLogger(__name__)


def sync_event(games: list[GameRecord]) -> dict[str, object]:
    return SyncEvent(games=games).model_dump(mode="json", by_alias=True)


def sse_frame(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class SnapshotHub:
    """In-process fan-out of full game snapshots.

    Contract:
      - `publish(games)` is synchronous and never blocks; it is registered as a
        `GameStore` listener, so it runs right after every successful `put`.
      - every subscriber receives the full `{"type": "sync", "games": [...]}`
        event, never a diff.
      - SSE subscribers get a queue via `subscribe()`; WebSockets are attached
        with `connect()` and pruned when a send fails.

    Only one process is covered; multi-process deployments share state through
    `RedisBackend` and its change channel instead.
    """

    def __init__(self) -> None:
        self._queues: set[asyncio.Queue[dict[str, object]]] = set()
        self._sockets: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._sockets)

    # ----------------------------
    # SSE queues
    # ----------------------------
    def subscribe(self) -> asyncio.Queue[dict[str, object]]:
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue()
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, object]]) -> None:
        self._queues.discard(queue)

    # ----------------------------
    # WebSockets
    # ----------------------------
    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._sockets.add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._sockets.discard(websocket)

    async def _send_to_sockets(self, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._sockets)

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._sockets.discard(ws)

    # ----------------------------
    # Fan-out
    # ----------------------------
    def publish(self, games: list[GameRecord]) -> None:
        payload = sync_event(games)
        for queue in list(self._queues):
            queue.put_nowait(payload)

        if not self._sockets:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; skipping websocket broadcast")
            return
        task = loop.create_task(self._send_to_sockets(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


async def stream_snapshots(
    hub: SnapshotHub,
    *,
    snapshot: Callable[[], list[GameRecord]],
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    poll_interval: float = 15.0,
) -> AsyncIterator[str]:
    """SSE body: the current snapshot first, then one frame per store change.

    The queue is subscribed before `snapshot()` is read, so a write landing in
    between shows up as an extra frame instead of being lost.

    `poll_interval` bounds how long we wait before re-checking `is_disconnected`.
    """

    queue = hub.subscribe()
    try:
        yield sse_frame(sync_event(snapshot()))
        while True:
            if is_disconnected is not None and await is_disconnected():
                return
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                # Comment frame keeps proxies from closing an idle stream.
                yield ": keep-alive\n\n"
                continue
            yield sse_frame(payload)
    finally:
        hub.unsubscribe(queue)
