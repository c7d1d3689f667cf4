from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GamePhase(StrEnum):
    murders = "murders"
    investigation = "investigation"
    voting = "voting"
    results = "results"


PHASES: tuple[GamePhase, ...] = tuple(GamePhase)

PHASE_LABELS: dict[GamePhase, str] = {
    GamePhase.murders: "Murders in Progress",
    GamePhase.investigation: "Investigation",
    GamePhase.voting: "Voting",
    GamePhase.results: "Results Revealed",
}


class _WireModel(BaseModel):
    # Persisted/wire JSON is camelCase; Python attributes stay snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Player(_WireModel):
    name: str
    pin: str
    # Name of the player this player must eliminate; "" when unassigned.
    target: str = ""


class Elimination(_WireModel):
    id: str
    murderer: str = ""
    victim: str = ""
    notes: str = ""
    timestamp: int
    # Embedded image payload (data URI) or "".
    photo_data: str = ""
    confirmed: bool = False
    confirmed_by: str = ""
    confirmed_at: int | None = None


class Vote(_WireModel):
    # "" means undecided.
    suspect: str = ""
    timestamp: int


class GameRecord(_WireModel):
    code: str
    name: str = ""
    players: dict[str, Player] = Field(default_factory=dict)
    murders: list[Elimination] = Field(default_factory=list)
    votes: dict[str, Vote] = Field(default_factory=dict)
    correct_answer: str = ""
    # Registration lock; independent of the phase enumeration.
    started: bool = False
    phase: GamePhase = GamePhase.murders
    created_at: int

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class GameResponse(BaseModel):
    game: GameRecord


class GameListResponse(BaseModel):
    games: list[GameRecord]


class SyncEvent(BaseModel):
    type: str = "sync"
    games: list[GameRecord]


class ErrorResponse(BaseModel):
    error: str


class HostLoginRequest(BaseModel):
    password: str = ""
