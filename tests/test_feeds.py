from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import fakeredis
import httpx
import pytest

from mystery_party.broadcast import SnapshotHub, sse_frame, stream_snapshots, sync_event
from mystery_party.game_store import GameStore
from mystery_party.records import normalize_game
from mystery_party.sync import LocalTransport, SyncClient
from mystery_party.sync.feeds import (
    PollingFeed,
    RedisSignalFeed,
    SseDecoder,
    SseFeed,
    StoreSignalFeed,
    choose_feed,
)


async def _eventually(predicate: Callable[[], bool], *, timeout: float = 2.0, tick: Callable[[], None] | None = None) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        if tick is not None:
            tick()
        await asyncio.sleep(0.02)


def _snapshot_body(*codes: str) -> bytes:
    games = [normalize_game({"code": c}) for c in codes]
    return (": hello\n\n" + sse_frame(sync_event(games))).encode("utf-8")


def test_sse_decoder_joins_data_lines_and_skips_comments() -> None:
    decoder = SseDecoder()

    assert decoder.feed(": keep-alive") is None
    assert decoder.feed("") is None
    assert decoder.feed("event: sync") is None
    assert decoder.feed("data: {\"a\":") is None
    assert decoder.feed("data:1}") is None
    assert decoder.feed("") == "{\"a\":\n1}"


@pytest.mark.asyncio
async def test_handle_event_applies_only_sync_snapshots(store: GameStore) -> None:
    client = SyncClient(LocalTransport(store))
    async with httpx.AsyncClient() as http:
        feed = SseFeed(http, client)

        assert feed.handle_event("{not json") is False
        assert feed.handle_event(json.dumps({"type": "ping"})) is False
        assert feed.handle_event(json.dumps({"type": "sync", "games": "nope"})) is False
        assert client.ready is False

        assert feed.handle_event(json.dumps({"type": "sync", "games": [{"code": "abcde"}, {"name": "no code"}]})) is True

    assert client.ready is True
    assert [g.code for g in await client.list_games()] == ["ABCDE"]


@pytest.mark.asyncio
async def test_stream_snapshots_sends_initial_then_changes(hub: SnapshotHub) -> None:
    initial = [normalize_game({"code": "FIRST"})]
    frames = stream_snapshots(hub, snapshot=lambda: initial, poll_interval=0.05)

    first = await frames.__anext__()
    assert first.startswith("data: ")
    assert json.loads(first[len("data: "):])["games"][0]["code"] == "FIRST"
    assert hub.subscriber_count == 1

    assert await frames.__anext__() == ": keep-alive\n\n"

    hub.publish([normalize_game({"code": "SECND"}), *initial])
    changed = json.loads((await frames.__anext__())[len("data: "):])
    assert changed["type"] == "sync"
    assert [g["code"] for g in changed["games"]] == ["SECND", "FIRST"]

    await frames.aclose()
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_does_not_lose_writes_made_before_it_starts(store: GameStore, hub: SnapshotHub) -> None:
    frames = stream_snapshots(hub, snapshot=store.snapshot, poll_interval=0.05)
    store.put("ABCDE", {})

    first = json.loads((await frames.__anext__())[len("data: "):])
    assert [g["code"] for g in first["games"]] == ["ABCDE"]

    store.put("FGHIJ", {"createdAt": 1})
    second = json.loads((await frames.__anext__())[len("data: "):])
    assert sorted(g["code"] for g in second["games"]) == ["ABCDE", "FGHIJ"]

    await frames.aclose()


@pytest.mark.asyncio
async def test_stream_snapshots_stops_when_client_disconnects(hub: SnapshotHub) -> None:
    async def _gone() -> bool:
        return True

    frames = [f async for f in stream_snapshots(hub, snapshot=list, is_disconnected=_gone)]

    assert len(frames) == 1
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_store_writes_reach_hub_subscribers(store: GameStore, hub: SnapshotHub) -> None:
    queue = hub.subscribe()
    store.put("ABCDE", {})

    event = queue.get_nowait()
    assert event["type"] == "sync"
    assert [g["code"] for g in event["games"]] == ["ABCDE"]
    hub.unsubscribe(queue)


@pytest.mark.asyncio
async def test_sse_feed_applies_streamed_snapshots_and_reconnects(store: GameStore) -> None:
    calls: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) == 1:
            raise httpx.ConnectError("server restarting", request=request)
        return httpx.Response(200, content=_snapshot_body("ABCDE", "FGHIJ"), headers={"Content-Type": "text/event-stream"})

    client = SyncClient(LocalTransport(store))
    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler), base_url="http://testserver") as http:
        feed = SseFeed(http, client, retry_delay=0.01)
        feed.start()
        try:
            await _eventually(lambda: feed.connections >= 3)
        finally:
            await feed.stop()

    assert calls[0] == "/api/stream"
    assert client.ready is True
    assert sorted(g.code for g in await client.list_games()) == ["ABCDE", "FGHIJ"]


@pytest.mark.asyncio
async def test_store_signal_feed_pulls_after_each_write(store: GameStore) -> None:
    client = SyncClient(LocalTransport(store))
    await client.ensure_loaded()
    feed = StoreSignalFeed(store, client)
    feed.start()
    await asyncio.sleep(0)

    try:
        store.put("ABCDE", {"name": "fresh"})
        await _eventually(lambda: "ABCDE" in {g.code for g in client._mirror.values()})
    finally:
        await feed.stop()

    assert (await client.get_game("ABCDE")).name == "fresh"


@pytest.mark.asyncio
async def test_redis_signal_feed_pulls_after_writes_from_any_process(
    redis_store: tuple[GameStore, fakeredis.FakeRedis],
) -> None:
    store, r = redis_store
    client = SyncClient(LocalTransport(store))
    await client.ensure_loaded()
    feed = RedisSignalFeed(r, client, poll_timeout=0.05, retry_delay=0.01)
    feed.start()

    try:
        # Keep writing until the subscription is live and one signal lands.
        await _eventually(
            lambda: "ABCDE" in client._mirror,
            timeout=5.0,
            tick=lambda: store.put("ABCDE", {"name": "from redis"}),
        )
    finally:
        await feed.stop()

    assert (await client.get_game("ABCDE")).name == "from redis"


@pytest.mark.asyncio
async def test_polling_feed_refreshes_on_interval(store: GameStore) -> None:
    client = SyncClient(LocalTransport(store))
    await client.ensure_loaded()
    feed = PollingFeed(client, interval=0.01)
    feed.start()

    try:
        store.put("ABCDE", {})
        await _eventually(lambda: "ABCDE" in client._mirror)
    finally:
        await feed.stop()

    assert feed._task is None


@pytest.mark.asyncio
async def test_choose_feed_prefers_push_over_polling(store: GameStore) -> None:
    client = SyncClient(LocalTransport(store))
    r = fakeredis.FakeRedis(decode_responses=True)

    async with httpx.AsyncClient() as http:
        assert isinstance(choose_feed(client, http=http, store=store, r=r), SseFeed)
    assert isinstance(choose_feed(client, store=store, r=r), StoreSignalFeed)
    assert isinstance(choose_feed(client, r=r), RedisSignalFeed)

    polling = choose_feed(client, poll_interval=1.5)
    assert isinstance(polling, PollingFeed)
    assert polling.interval == 1.5


@pytest.mark.asyncio
async def test_choose_feed_reads_delays_from_environment(store: GameStore, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MYSTERY_STREAM_RETRY_SECONDS", "0.25")
    monkeypatch.setenv("MYSTERY_POLL_SECONDS", "7")
    client = SyncClient(LocalTransport(store))

    async with httpx.AsyncClient() as http:
        sse = choose_feed(client, http=http)
        assert isinstance(sse, SseFeed)
        assert sse.retry_delay == 0.25
        assert choose_feed(client, http=http, retry_delay=1.0).retry_delay == 1.0

    polling = choose_feed(client)
    assert isinstance(polling, PollingFeed)
    assert polling.interval == 7.0
