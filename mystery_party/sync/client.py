from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from contextlib import suppress
from typing import Any

from mystery_party.api.models import GameRecord
from mystery_party.game_store import Transform, clean_code, sort_games
from mystery_party.records import normalize_game
from mystery_party.sync.scheduler import ChangeCallback, SyncScheduler
from mystery_party.sync.transport import GameTransport, TransportError


logger = logging.getLogger(__name__)


class SyncClient:
    """Local, eventually-consistent mirror of the game store for one view.

    Contract:
      - the mirror is a read cache; the store's answer to a write always
        replaces whatever was computed locally.
      - a failed write never stays applied: the optimistic value is dropped and
        a full refresh is forced before the error reaches the caller.
      - reads never raise; absence and transport failures both yield `None`.
      - callers should await one `update_game` before issuing the next for the
        same code; concurrent updates are not ordered.
    """

    def __init__(self, transport: GameTransport, *, scheduler: SyncScheduler | None = None) -> None:
        self.transport = transport
        self.scheduler = scheduler or SyncScheduler()
        self._mirror: dict[str, GameRecord] = {}
        self._ready = False
        self._load_task: asyncio.Task[dict[str, GameRecord]] | None = None

    @property
    def ready(self) -> bool:
        return self._ready

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        return self.scheduler.add_listener(callback)

    # ----------------------------
    # Snapshots
    # ----------------------------
    def apply_snapshot(self, games: Iterable[GameRecord | Mapping[str, Any]]) -> None:
        snapshot: dict[str, GameRecord] = {}
        for raw in games:
            game = normalize_game(raw)
            if game.code:
                snapshot[game.code] = game
        self._mirror = snapshot
        self._ready = True
        self.scheduler.request()

    async def refresh(self) -> dict[str, GameRecord]:
        try:
            games = await self.transport.fetch_all()
        except TransportError:
            logger.error("Failed to refresh games from server", exc_info=True)
            if not self._ready:
                self._mirror = {}
                self._ready = True
            raise
        self.apply_snapshot(games)
        return dict(self._mirror)

    def _clear_load_task(self, task: asyncio.Task[dict[str, GameRecord]]) -> None:
        if self._load_task is task:
            self._load_task = None

    async def ensure_loaded(self) -> dict[str, GameRecord]:
        if self._ready:
            return dict(self._mirror)
        if self._load_task is None:
            self._load_task = asyncio.get_running_loop().create_task(self.refresh())
            self._load_task.add_done_callback(self._clear_load_task)
        try:
            await asyncio.shield(self._load_task)
        except TransportError:
            logger.warning("Continuing with empty game cache after load failure")
        return dict(self._mirror)

    # ----------------------------
    # Reads
    # ----------------------------
    async def get_game(self, code: str) -> GameRecord | None:
        await self.ensure_loaded()
        key = clean_code(code)
        if not key:
            return None
        cached = self._mirror.get(key)
        if cached is not None:
            return cached.model_copy(deep=True)
        try:
            game = await self.transport.fetch(key)
        except TransportError:
            logger.error("Failed to fetch game %s", key, exc_info=True)
            return None
        if game is None:
            return None
        self._mirror[key] = game
        self.scheduler.request()
        return game.model_copy(deep=True)

    async def list_games(self) -> list[GameRecord]:
        games = await self.ensure_loaded()
        return sort_games([g.model_copy(deep=True) for g in games.values()])

    # ----------------------------
    # Writes
    # ----------------------------
    async def update_game(self, code: str, transform: Transform) -> GameRecord | None:
        await self.ensure_loaded()
        key = clean_code(code)
        current = self._mirror.get(key)
        if current is None:
            return None

        draft = current.model_copy(deep=True)
        # Rule violations raised by the transform propagate before anything changes.
        result = transform(draft)
        optimistic = normalize_game(draft if result is None else result, code_override=key)
        self._mirror[key] = optimistic

        try:
            saved = await self.transport.save(key, optimistic)
        except Exception:
            logger.error("Failed to persist game update for %s", key, exc_info=True)
            if self._mirror.get(key) is optimistic:
                self._mirror[key] = current
            with suppress(TransportError):
                await self.refresh()
            raise

        self._mirror[key] = saved
        self.scheduler.request()
        return saved.model_copy(deep=True)

    async def create_if_absent(self, code: str) -> GameRecord:
        key = clean_code(code)
        if not key:
            raise ValueError("Game code is required")
        await self.ensure_loaded()
        existing = self._mirror.get(key)
        if existing is not None:
            return existing.model_copy(deep=True)

        created = normalize_game({"code": key})
        self._mirror[key] = created
        try:
            saved = await self.transport.save(key, created)
        except Exception:
            if self._mirror.get(key) is created:
                del self._mirror[key]
            raise

        self._mirror[key] = saved
        self.scheduler.request()
        return saved.model_copy(deep=True)

    async def ensure_game(self, code: str) -> GameRecord:
        return await self.create_if_absent(code)
