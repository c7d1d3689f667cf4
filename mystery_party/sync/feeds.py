"""Push/pull feeds that keep a SyncClient's mirror current.

Three transports, best first:
  - `SseFeed`: server-sent full snapshots from `/api/stream`.
  - `StoreSignalFeed` / `RedisSignalFeed`: payload-less "store changed" signals
    (same process, or sibling processes sharing Redis); each signal triggers a
    pull.
  - `PollingFeed`: fixed-interval pulls when nothing can push.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress

import httpx
import redis

from mystery_party.api.models import GameRecord
from mystery_party.game_store import GameStore
from mystery_party.settings import settings_from_env
from mystery_party.storage import GAMES_CHANGED_CHANNEL
from mystery_party.sync.client import SyncClient
from mystery_party.sync.transport import TransportError


logger = logging.getLogger(__name__)

DEFAULT_RETRY_SECONDS = 3.0
DEFAULT_POLL_SECONDS = 5.0


class Feed:
    """Background-task lifecycle shared by every feed."""

    name = "feed"

    def __init__(self, client: SyncClient) -> None:
        self.client = client
        self._task: asyncio.Task[None] | None = None

    async def run(self) -> None:
        raise NotImplementedError

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run(), name=self.name)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _pull(self) -> None:
        # refresh() already logged the failure; the next signal or tick tries again.
        with suppress(TransportError):
            await self.client.refresh()


class SseDecoder:
    """Incremental `text/event-stream` parser; returns event data when complete."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        if line == "":
            if not self._data:
                return None
            data, self._data = "\n".join(self._data), []
            return data
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if field == "data":
            self._data.append(value[1:] if value.startswith(" ") else value)
        return None


class SseFeed(Feed):
    name = "sse-feed"

    def __init__(
        self,
        http: httpx.AsyncClient,
        client: SyncClient,
        *,
        path: str = "/api/stream",
        retry_delay: float = DEFAULT_RETRY_SECONDS,
    ) -> None:
        super().__init__(client)
        self.http = http
        self.path = path
        self.retry_delay = retry_delay
        self.connections = 0

    def handle_event(self, data: str) -> bool:
        """Apply one event's data. Returns True when it carried a snapshot."""

        try:
            payload = json.loads(data)
        except ValueError:
            logger.error("Failed to process realtime update: %.80s", data)
            return False
        if not isinstance(payload, dict) or payload.get("type") != "sync":
            return False
        games = payload.get("games")
        if not isinstance(games, list):
            return False
        self.client.apply_snapshot(games)
        return True

    async def _consume(self) -> None:
        self.connections += 1
        decoder = SseDecoder()
        # Leaving the context closes the connection, so a retry never overlaps it.
        async with self.http.stream("GET", self.path, headers={"Accept": "text/event-stream"}, timeout=None) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                data = decoder.feed(line.rstrip("\r"))
                if data is not None:
                    self.handle_event(data)

    async def run(self) -> None:
        while True:
            try:
                await self._consume()
            except (httpx.HTTPError, httpx.StreamError) as e:
                logger.info("Realtime stream failed (%s); retrying in %.1fs", e, self.retry_delay)
            else:
                logger.info("Realtime stream closed; reconnecting in %.1fs", self.retry_delay)
            await asyncio.sleep(self.retry_delay)


class StoreSignalFeed(Feed):
    """Pull whenever a `GameStore` in this process reports a write."""

    name = "store-signal-feed"

    def __init__(self, store: GameStore, client: SyncClient) -> None:
        super().__init__(client)
        self.store = store

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        changed = asyncio.Event()

        def _signal(_games: list[GameRecord]) -> None:
            # The snapshot is ignored on purpose: this transport only says "changed".
            loop.call_soon_threadsafe(changed.set)

        unsubscribe = self.store.subscribe(_signal)
        try:
            while True:
                await changed.wait()
                changed.clear()
                await self._pull()
        finally:
            unsubscribe()


class RedisSignalFeed(Feed):
    """Pull whenever any process writes through `RedisBackend`."""

    name = "redis-signal-feed"

    def __init__(
        self,
        r: redis.Redis,
        client: SyncClient,
        *,
        channel: str = GAMES_CHANGED_CHANNEL,
        poll_timeout: float = 1.0,
        retry_delay: float = DEFAULT_RETRY_SECONDS,
    ) -> None:
        super().__init__(client)
        self.r = r
        self.channel = channel
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay

    async def _listen(self) -> None:
        pubsub = self.r.pubsub(ignore_subscribe_messages=True)
        try:
            pubsub.subscribe(self.channel)
            while True:
                message = await asyncio.to_thread(pubsub.get_message, timeout=self.poll_timeout)
                if message is not None and message.get("type") == "message":
                    await self._pull()
        finally:
            pubsub.close()

    async def run(self) -> None:
        while True:
            try:
                await self._listen()
            except redis.RedisError as e:
                logger.info("Change channel failed (%s); retrying in %.1fs", e, self.retry_delay)
            await asyncio.sleep(self.retry_delay)


class PollingFeed(Feed):
    name = "polling-feed"

    def __init__(self, client: SyncClient, *, interval: float = DEFAULT_POLL_SECONDS) -> None:
        super().__init__(client)
        self.interval = interval

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self._pull()


def choose_feed(
    client: SyncClient,
    *,
    http: httpx.AsyncClient | None = None,
    store: GameStore | None = None,
    r: redis.Redis | None = None,
    retry_delay: float | None = None,
    poll_interval: float | None = None,
) -> Feed:
    """Best available feed: SSE, then store signals, then polling.

    Delays not given here come from `MYSTERY_STREAM_RETRY_SECONDS` and
    `MYSTERY_POLL_SECONDS`.
    """

    settings = settings_from_env()
    if retry_delay is None:
        retry_delay = settings.stream_retry_seconds
    if poll_interval is None:
        poll_interval = settings.poll_seconds

    if http is not None:
        return SseFeed(http, client, retry_delay=retry_delay)
    if store is not None:
        return StoreSignalFeed(store, client)
    if r is not None:
        return RedisSignalFeed(r, client, retry_delay=retry_delay)
    return PollingFeed(client, interval=poll_interval)
