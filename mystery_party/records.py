"""GameRecord construction and repair.

`normalize_game` is the single validated-construction step for game data. Every
record read from disk/Redis, received over HTTP or produced by a client-side
transform passes through it before it is stored or shown, so the rest of the
code can rely on every field being present and well typed.
"""

from __future__ import annotations

import math
import random
import re
import string
import time
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from mystery_party.api.models import Elimination, GamePhase, GameRecord, Player, Vote


CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CODE_RE = re.compile(r"^[A-Z0-9]{3,6}$")
_ID_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase

_rng = random.SystemRandom()


def now_ms() -> int:
    return int(time.time() * 1000)


def random_pin() -> str:
    return str(_rng.randint(1000, 9999))


def random_code(length: int = 5) -> str:
    return "".join(_rng.choice(CODE_ALPHABET) for _ in range(length))


def new_elimination_id(ts: int | None = None) -> str:
    # Time + random suffix; collisions are possible but negligible.
    suffix = "".join(_rng.choice(_ID_SUFFIX_ALPHABET) for _ in range(5))
    return f"{ts if ts is not None else now_ms()}-{suffix}"


def is_valid_code(code: str) -> bool:
    return bool(_CODE_RE.match(code))


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _ms(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(value)


def _mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, Mapping):
        return value
    return {}


def _field(raw: Mapping[str, Any], camel: str) -> Any:
    """Read a camelCase key, falling back to its snake_case spelling."""

    if camel in raw:
        return raw[camel]
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", camel).lower()
    return raw.get(snake)


def _normalize_player(key: str, raw: Any) -> Player:
    data = _mapping(raw)
    return Player(
        name=_text(data.get("name")) or key,
        pin=_text(data.get("pin")) or random_pin(),
        target=_text(data.get("target")),
    )


def _normalize_elimination(raw: Any, *, now: int) -> Elimination:
    data = _mapping(raw)
    return Elimination(
        id=_text(data.get("id")) or new_elimination_id(now),
        murderer=_text(data.get("murderer")),
        victim=_text(data.get("victim")),
        notes=_text(data.get("notes")),
        timestamp=_ms(data.get("timestamp")) or now,
        photo_data=_text(_field(data, "photoData")),
        confirmed=bool(data.get("confirmed")),
        confirmed_by=_text(_field(data, "confirmedBy")),
        confirmed_at=_ms(_field(data, "confirmedAt")),
    )


def _normalize_vote(raw: Any, *, now: int) -> Vote:
    data = _mapping(raw)
    return Vote(suspect=_text(data.get("suspect")), timestamp=_ms(data.get("timestamp")) or now)


def _normalize_phase(value: Any) -> GamePhase:
    if isinstance(value, str) and value in {p.value for p in GamePhase}:
        return GamePhase(value)
    return GamePhase.murders


def normalize_game(raw: Any = None, *, code_override: str | None = None) -> GameRecord:
    """Build a complete GameRecord from arbitrary (possibly partial) input.

    Never raises. Containers are rebuilt, so the result shares no mutable state
    with `raw`. Pins and elimination ids already present are kept; only missing
    ones are generated.
    """

    data = _mapping(raw)
    now = now_ms()

    code = _text(code_override) or _text(data.get("code"))

    players_raw = data.get("players")
    players: dict[str, Player] = {}
    if isinstance(players_raw, Mapping):
        for key, entry in players_raw.items():
            players[str(key)] = _normalize_player(str(key), entry)

    murders_raw = data.get("murders")
    murders: list[Elimination] = []
    if isinstance(murders_raw, (list, tuple)):
        murders = [_normalize_elimination(entry, now=now) for entry in murders_raw]

    votes_raw = data.get("votes")
    votes: dict[str, Vote] = {}
    if isinstance(votes_raw, Mapping):
        for voter, entry in votes_raw.items():
            votes[str(voter)] = _normalize_vote(entry, now=now)

    return GameRecord(
        code=code.upper(),
        name=_text(data.get("name")),
        players=players,
        murders=murders,
        votes=votes,
        correct_answer=_text(_field(data, "correctAnswer")),
        started=bool(data.get("started")),
        phase=_normalize_phase(data.get("phase")),
        created_at=_ms(_field(data, "createdAt")) or now,
    )
