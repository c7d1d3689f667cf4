from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import redis


logger = logging.getLogger(__name__)

GAMES_HASH_KEY = "mystery:games"
GAMES_CHANGED_CHANNEL = "mystery:games:changed"


class GameBackend(Protocol):
    """Durable mapping of game code -> wire-format (camelCase) record dict.

    `write` must either persist the value or raise; callers treat a return as
    "durably written".
    """

    def read(self, code: str) -> dict[str, Any] | None: ...

    def read_all(self) -> dict[str, dict[str, Any]]: ...

    def write(self, code: str, payload: dict[str, Any]) -> None: ...


class MemoryBackend:
    """Non-durable backend for tests and throwaway sessions."""

    def __init__(self, games: dict[str, dict[str, Any]] | None = None) -> None:
        self._games: dict[str, dict[str, Any]] = dict(games or {})

    def read(self, code: str) -> dict[str, Any] | None:
        return self._games.get(code)

    def read_all(self) -> dict[str, dict[str, Any]]:
        return dict(self._games)

    def write(self, code: str, payload: dict[str, Any]) -> None:
        self._games[code] = payload


class JsonFileBackend:
    """All games in one JSON document, rewritten in full on every write.

    The file is replaced atomically (temp file + rename), and the in-memory copy
    only changes after the rename succeeded, so memory never runs ahead of disk.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._games = self._load()

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No game file at %s; starting with an empty game list", self.path)
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Starting with empty game list (%s unreadable: %s)", self.path, e)
            return {}
        if not isinstance(parsed, dict):
            logger.warning("Starting with empty game list (%s is not a JSON object)", self.path)
            return {}
        return {str(k): v for k, v in parsed.items() if isinstance(v, dict)}

    def read(self, code: str) -> dict[str, Any] | None:
        return self._games.get(code)

    def read_all(self) -> dict[str, dict[str, Any]]:
        return dict(self._games)

    def write(self, code: str, payload: dict[str, Any]) -> None:
        games = {**self._games, code: payload}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(games, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._games = games


class RedisBackend:
    """Games shared by several server processes through Redis.

    Each write also publishes an empty message on `GAMES_CHANGED_CHANNEL` so
    sibling processes can pull (the payload-less "storage event").
    """

    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    def read(self, code: str) -> dict[str, Any] | None:
        raw = self.r.hget(GAMES_HASH_KEY, code)
        if not raw:
            return None
        return json.loads(raw)

    def read_all(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for code, raw in self.r.hgetall(GAMES_HASH_KEY).items():
            key = code.decode("utf-8") if isinstance(code, bytes) else str(code)
            try:
                out[key] = json.loads(raw)
            except ValueError:
                logger.warning("Skipping unreadable game %s in redis", key)
        return out

    def write(self, code: str, payload: dict[str, Any]) -> None:
        self.r.hset(GAMES_HASH_KEY, code, json.dumps(payload))
        self.r.publish(GAMES_CHANGED_CHANNEL, "")
