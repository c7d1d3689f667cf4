from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from mystery_party.api.models import GameRecord
from mystery_party.game_store import GameStore, PersistenceError
from mystery_party.records import normalize_game


logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """The store could not be reached or refused the request."""


class GameTransport(Protocol):
    async def fetch_all(self) -> list[GameRecord]: ...

    async def fetch(self, code: str) -> GameRecord | None: ...

    async def save(self, code: str, game: GameRecord) -> GameRecord: ...


def _records_from_payload(items: Any) -> list[GameRecord]:
    if not isinstance(items, list):
        return []
    out: list[GameRecord] = []
    for item in items:
        game = normalize_game(item)
        if game.code:
            out.append(game)
    return out


class HttpTransport:
    """Talks to the `/api/games` endpoints of a mystery-party server."""

    def __init__(self, client: httpx.AsyncClient, *, base_path: str = "/api/games") -> None:
        self.client = client
        self.base_path = base_path.rstrip("/")

    def _url(self, code: str) -> str:
        return f"{self.base_path}/{quote(code, safe='')}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _field(resp: httpx.Response, key: str, kind: type) -> Any:
        # A 2xx from a proxy or a misrouted host may carry HTML or some other shape.
        try:
            payload = resp.json()
        except ValueError as e:
            raise TransportError(f"Response from {resp.request.url} is not JSON") from e
        if not isinstance(payload, dict) or not isinstance(payload.get(key), kind):
            raise TransportError(f"Response from {resp.request.url} has no {key!r} {kind.__name__}")
        return payload[key]

    async def fetch_all(self) -> list[GameRecord]:
        resp = await self._request("GET", self.base_path, headers={"Cache-Control": "no-store"})
        if resp.is_error:
            raise TransportError(f"Request failed with status {resp.status_code}")
        return _records_from_payload(self._field(resp, "games", list))

    async def fetch(self, code: str) -> GameRecord | None:
        resp = await self._request("GET", self._url(code))
        if resp.status_code == 404:
            return None
        if resp.is_error:
            raise TransportError(f"Unable to load game {code}: {resp.status_code}")
        return normalize_game(self._field(resp, "game", dict), code_override=code)

    async def save(self, code: str, game: GameRecord) -> GameRecord:
        body = {**game.to_wire(), "code": code}
        resp = await self._request("PUT", self._url(code), json=body)
        if resp.is_error:
            raise TransportError(f"Unable to save game {code}: {resp.status_code}")
        return normalize_game(self._field(resp, "game", dict), code_override=code)


class LocalTransport:
    """Direct access to a `GameStore` living in the same process."""

    def __init__(self, store: GameStore) -> None:
        self.store = store

    async def fetch_all(self) -> list[GameRecord]:
        return self.store.list()

    async def fetch(self, code: str) -> GameRecord | None:
        return self.store.get(code)

    async def save(self, code: str, game: GameRecord) -> GameRecord:
        try:
            return self.store.put(code, game)
        except PersistenceError as e:
            raise TransportError(str(e)) from e
