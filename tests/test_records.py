from __future__ import annotations

import pytest

from mystery_party.api.models import GamePhase, GameRecord
from mystery_party.records import (
    CODE_ALPHABET,
    is_valid_code,
    new_elimination_id,
    normalize_game,
    random_code,
    random_pin,
)


def test_normalize_fills_every_field_from_nothing() -> None:
    game = normalize_game(None)

    assert isinstance(game, GameRecord)
    assert game.code == ""
    assert game.name == ""
    assert game.players == {}
    assert game.murders == []
    assert game.votes == {}
    assert game.correct_answer == ""
    assert game.started is False
    assert game.phase == GamePhase.murders
    assert game.created_at > 0


def test_normalize_repairs_bad_types_and_phase() -> None:
    game = normalize_game(
        {
            "code": "abcde",
            "players": ["not", "a", "mapping"],
            "murders": {"not": "a list"},
            "votes": "nope",
            "phase": "intermission",
            "started": 1,
            "createdAt": "yesterday",
            "name": 42,
        }
    )

    assert game.code == "ABCDE"
    assert game.players == {}
    assert game.murders == []
    assert game.votes == {}
    assert game.phase == GamePhase.murders
    assert game.started is True
    assert game.name == "42"
    assert game.created_at > 0


def test_code_override_wins_and_is_uppercased() -> None:
    game = normalize_game({"code": "OTHER"}, code_override="xyz12")
    assert game.code == "XYZ12"


def test_missing_pins_and_ids_are_generated() -> None:
    game = normalize_game(
        {
            "players": {"Amy": {}, "Bo": {"pin": "4321", "target": "Amy"}},
            "murders": [{"murderer": "Amy", "victim": "Bo"}],
            "votes": {"Amy": {"suspect": "Bo"}},
        }
    )

    assert game.players["Amy"].name == "Amy"
    assert len(game.players["Amy"].pin) == 4
    assert game.players["Amy"].pin.isdigit()
    assert game.players["Bo"].pin == "4321"
    assert game.players["Bo"].target == "Amy"

    murder = game.murders[0]
    assert murder.id
    assert murder.timestamp > 0
    assert murder.confirmed is False
    assert murder.confirmed_at is None
    assert murder.photo_data == ""

    assert game.votes["Amy"].suspect == "Bo"
    assert game.votes["Amy"].timestamp > 0


def test_normalize_is_idempotent_and_keeps_generated_values() -> None:
    raw = {
        "code": "ABCDE",
        "players": {"Amy": {}, "Bo": {"target": "Amy"}},
        "murders": [{"murderer": "Amy", "victim": "Bo", "confirmedAt": 5}],
        "votes": {"Bo": {}},
        "phase": "voting",
    }

    once = normalize_game(raw)
    twice = normalize_game(once)
    via_wire = normalize_game(once.to_wire())

    assert twice.to_wire() == once.to_wire()
    assert via_wire.to_wire() == once.to_wire()
    # Generated pins/ids are stable once present.
    assert twice.players["Amy"].pin == once.players["Amy"].pin
    assert twice.murders[0].id == once.murders[0].id


def test_normalize_does_not_alias_caller_containers() -> None:
    raw = {"code": "ABCDE", "players": {"Amy": {"pin": "1111"}}, "murders": [], "votes": {}}
    game = normalize_game(raw)

    game.players["Amy"].target = "Bo"
    game.murders.append(normalize_game({"murders": [{}]}).murders[0])

    assert raw["players"]["Amy"] == {"pin": "1111"}
    assert raw["murders"] == []


def test_wire_format_is_camel_case() -> None:
    wire = normalize_game({"code": "ABC", "murders": [{}]}).to_wire()

    assert {"correctAnswer", "createdAt"} <= set(wire)
    assert {"photoData", "confirmedBy", "confirmedAt"} <= set(wire["murders"][0])


def test_snake_case_input_is_accepted() -> None:
    game = normalize_game({"correct_answer": "Bo", "created_at": 123})
    assert game.correct_answer == "Bo"
    assert game.created_at == 123


@pytest.mark.parametrize("value", [float("nan"), float("inf"), -5, True, None])
def test_bad_timestamps_fall_back_to_now(value: object) -> None:
    assert normalize_game({"createdAt": value}).created_at > 1_000_000_000_000


def test_random_helpers() -> None:
    pin = random_pin()
    assert pin.isdigit() and 1000 <= int(pin) <= 9999

    code = random_code()
    assert len(code) == 5
    assert set(code) <= set(CODE_ALPHABET)
    assert is_valid_code(code)

    eid = new_elimination_id(1700000000000)
    ts, suffix = eid.split("-")
    assert ts == "1700000000000"
    assert len(suffix) == 5


@pytest.mark.parametrize(
    ("code", "valid"),
    [("ABC", True), ("ABCDEF", True), ("A1B2", True), ("AB", False), ("ABCDEFG", False), ("abc", False), ("AB-C", False)],
)
def test_is_valid_code(code: str, valid: bool) -> None:
    assert is_valid_code(code) is valid
