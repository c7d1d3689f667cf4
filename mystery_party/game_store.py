from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel

from mystery_party.api.models import GameRecord
from mystery_party.records import is_valid_code, normalize_game
from mystery_party.storage import GameBackend


logger = logging.getLogger(__name__)

Transform = Callable[[GameRecord], GameRecord | Mapping[str, Any] | None]
SnapshotListener = Callable[[list[GameRecord]], None]


class InvalidGameCode(ValueError):
    pass


class PersistenceError(RuntimeError):
    """The durable write did not happen; the stored value is unchanged."""


def clean_code(code: object) -> str:
    return code.strip().upper() if isinstance(code, str) else ""


def sort_games(games: list[GameRecord]) -> list[GameRecord]:
    # Newest first; ties by code.
    return sorted(games, key=lambda g: (-g.created_at, g.code))


def _as_wire_dict(record: Any) -> dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json", by_alias=True)
    if isinstance(record, Mapping):
        return dict(record)
    return {}


class GameStore:
    """Authoritative owner of `code -> GameRecord`.

    Contract:
      - every record written or returned has been through `normalize_game`.
      - `put` returns only after the backend durably wrote the value, then
        notifies subscribers with the full snapshot.
      - `update` is a plain read-modify-write. Two concurrent updates of the same
        code can both read the old value; the later `put` wins and the earlier
        change is lost. Callers needing stronger guarantees must serialize.
    """

    def __init__(self, backend: GameBackend) -> None:
        self.backend = backend
        self._listeners: list[SnapshotListener] = []

    # ----------------------------
    # Reads
    # ----------------------------
    def get(self, code: str) -> GameRecord | None:
        key = clean_code(code)
        if not is_valid_code(key):
            return None
        try:
            raw = self.backend.read(key)
        except Exception:
            logger.exception("Failed to read game %s", key)
            return None
        if raw is None:
            return None
        return normalize_game(raw, code_override=key)

    def list(self) -> list[GameRecord]:
        try:
            raw_games = self.backend.read_all()
        except Exception:
            logger.exception("Failed to read games")
            return []
        return sort_games([normalize_game(raw, code_override=code) for code, raw in raw_games.items()])

    def snapshot(self) -> list[GameRecord]:
        return self.list()

    # ----------------------------
    # Writes
    # ----------------------------
    def put(self, code: str, record: GameRecord | Mapping[str, Any]) -> GameRecord:
        key = clean_code(code)
        if not is_valid_code(key):
            raise InvalidGameCode(f"Game code must be 3-6 letters or digits, got {code!r}")

        data = _as_wire_dict(record)
        if not data.get("createdAt") and not data.get("created_at"):
            prior = self.get(key)
            if prior is not None:
                data["createdAt"] = prior.created_at

        game = normalize_game(data, code_override=key)
        try:
            self.backend.write(key, game.to_wire())
        except Exception as e:
            logger.error("Failed to save game %s: %s", key, e)
            raise PersistenceError(f"Unable to save game {key}") from e

        self._notify()
        return game

    def update(self, code: str, transform: Transform) -> GameRecord | None:
        current = self.get(code)
        if current is None:
            return None
        draft = current.model_copy(deep=True)
        result = transform(draft)
        # In-place transforms may return None; the mutated draft is the result then.
        return self.put(code, draft if result is None else result)

    def ensure(self, code: str) -> GameRecord:
        existing = self.get(code)
        if existing is not None:
            return existing
        return self.put(code, {"code": clean_code(code)})

    # ----------------------------
    # Change notification
    # ----------------------------
    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        games = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(games)
            except Exception:
                logger.exception("Game store listener failed")
