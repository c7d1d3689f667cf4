"""Game rules as pure transforms over GameRecord.

Every transform takes a record and returns a new one; the input is never
mutated. A rejected action raises a `RuleViolation` before anything changes, so
callers (`GameStore.update`, `SyncClient.update_game`) persist nothing.

These are the functions a view layer passes to `update_game`, e.g.::

    await client.update_game(code, lambda g: add_player(g, name="Amy"))
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from mystery_party.api.models import PHASE_LABELS, Elimination, GamePhase, GameRecord, Player, Vote
from mystery_party.fsm import PhaseMachine
from mystery_party.records import new_elimination_id, now_ms, random_pin


class RuleViolation(ValueError):
    pass


class DuplicatePlayer(RuleViolation):
    pass


class UnknownPlayer(RuleViolation):
    pass


class NotEnoughPlayers(RuleViolation):
    pass


class NoTargetAssigned(RuleViolation):
    pass


class NotTheVictim(RuleViolation):
    pass


class UnknownElimination(RuleViolation):
    pass


class WrongPin(RuleViolation):
    pass


class RegistrationLocked(RuleViolation):
    pass


class WrongHostPassword(RuleViolation):
    pass


def _draft(game: GameRecord) -> GameRecord:
    return game.model_copy(deep=True)


def _require_player(game: GameRecord, name: str) -> Player:
    player = game.players.get(name)
    if player is None:
        raise UnknownPlayer(f"Player not found: {name}")
    return player


# ----------------------------
# Game setup
# ----------------------------
def rename_game(game: GameRecord, *, name: str) -> GameRecord:
    out = _draft(game)
    out.name = name.strip()
    return out


def add_player(game: GameRecord, *, name: str) -> GameRecord:
    name = name.strip()
    if not name:
        raise RuleViolation("Player name is required")
    if name in game.players:
        raise DuplicatePlayer(f"A player named {name!r} already exists")
    out = _draft(game)
    out.players[name] = Player(name=name, pin=random_pin(), target="")
    return out


def register_player(game: GameRecord, *, name: str) -> GameRecord:
    """Self-registration from the player screen; closed once the host starts the game.

    Hosts use `add_player`, which ignores `started`.
    """

    if game.started:
        raise RegistrationLocked("The host has started the game. New players cannot join.")
    return add_player(game, name=name)


def remove_player(game: GameRecord, *, name: str) -> GameRecord:
    """Remove a player and every reference to them."""

    out = _draft(game)
    out.players.pop(name, None)
    out.murders = [m for m in out.murders if m.murderer != name and m.victim != name]
    out.votes.pop(name, None)
    for vote in out.votes.values():
        if vote.suspect == name:
            vote.suspect = ""
    for player in out.players.values():
        if player.target == name:
            player.target = ""
    if out.correct_answer == name:
        out.correct_answer = ""
    return out


def assign_random_targets(game: GameRecord, *, rng: random.Random | None = None) -> GameRecord:
    """Assign targets along one random cycle through all players.

    Each player targets the next one in a Fisher-Yates shuffle, so nobody
    targets themself and everybody is targeted exactly once.
    """

    if len(game.players) < 2:
        raise NotEnoughPlayers("Add at least two players before assigning targets")
    rng = rng or random.SystemRandom()

    order = list(game.players)
    for i in range(len(order) - 1, 0, -1):
        j = rng.randint(0, i)
        order[i], order[j] = order[j], order[i]

    out = _draft(game)
    for idx, name in enumerate(order):
        out.players[name].target = order[(idx + 1) % len(order)]
    return out


def clear_targets(game: GameRecord) -> GameRecord:
    out = _draft(game)
    for player in out.players.values():
        player.target = ""
    return out


def set_target(game: GameRecord, *, player: str, target: str) -> GameRecord:
    """Host override of a single assignment. `target=""` clears it."""

    _require_player(game, player)
    out = _draft(game)
    out.players[player].target = target
    return out


# ----------------------------
# Lifecycle
# ----------------------------
def set_phase(game: GameRecord, *, phase: GamePhase | str) -> GameRecord:
    out = _draft(game)
    out.phase = GamePhase(phase)
    return out


def advance_phase(game: GameRecord) -> GameRecord:
    out = _draft(game)
    machine = PhaseMachine(out)
    machine.advance()
    machine.sync_phase_to_model()
    return out


def set_started(game: GameRecord, *, started: bool) -> GameRecord:
    out = _draft(game)
    out.started = started
    if not started:
        out.phase = GamePhase.murders
    return out


def toggle_started(game: GameRecord) -> GameRecord:
    return set_started(game, started=not game.started)


# ----------------------------
# Player actions
# ----------------------------
def submit_elimination(game: GameRecord, *, murderer: str, notes: str = "", ts: int | None = None) -> GameRecord:
    player = _require_player(game, murderer)
    if not player.target:
        raise NoTargetAssigned("You don't have a target yet")
    ts = ts or now_ms()
    out = _draft(game)
    out.murders.append(
        Elimination(
            id=new_elimination_id(ts),
            murderer=murderer,
            victim=player.target,
            notes=notes,
            timestamp=ts,
            photo_data="",
            confirmed=False,
            confirmed_by="",
            confirmed_at=None,
        )
    )
    return out


def confirm_elimination(
    game: GameRecord,
    *,
    elimination_id: str,
    confirmed_by: str,
    murderer: str | None = None,
    photo_data: str | None = None,
    ts: int | None = None,
) -> GameRecord:
    idx = next((i for i, m in enumerate(game.murders) if m.id == elimination_id), None)
    if idx is None:
        raise UnknownElimination(f"Elimination not found: {elimination_id}")
    if game.murders[idx].victim != confirmed_by:
        raise NotTheVictim("Only the victim can confirm an elimination")

    out = _draft(game)
    entry = out.murders[idx]
    if murderer:
        entry.murderer = murderer
    if photo_data is not None:
        entry.photo_data = photo_data
    entry.confirmed = True
    entry.confirmed_by = confirmed_by
    entry.confirmed_at = ts or now_ms()
    return out


def submit_vote(game: GameRecord, *, voter: str, suspect: str, ts: int | None = None) -> GameRecord:
    out = _draft(game)
    out.votes[voter] = Vote(suspect=suspect, timestamp=ts or now_ms())
    return out


def reveal_answer(game: GameRecord, *, culprit: str) -> GameRecord:
    out = _draft(game)
    out.correct_answer = culprit
    return out


# ----------------------------
# Queries
# ----------------------------
@dataclass(frozen=True, slots=True)
class ResultsSummary:
    # (voter, suspect) sorted by voter; suspect "" means undecided.
    votes: list[tuple[str, str]]
    correct_answer: str
    winners: list[str]


def winners(game: GameRecord) -> list[str]:
    if not game.correct_answer:
        return []
    return sorted(voter for voter, vote in game.votes.items() if vote.suspect == game.correct_answer)


def results_summary(game: GameRecord) -> ResultsSummary:
    votes = sorted((voter, vote.suspect) for voter, vote in game.votes.items())
    return ResultsSummary(votes=votes, correct_answer=game.correct_answer, winners=winners(game))


def authenticate_player(game: GameRecord, *, name: str, pin: str) -> Player:
    player = game.players.get(name)
    if player is None:
        raise UnknownPlayer("Player not found. Ask the host to add you.")
    if player.pin != pin.strip():
        raise WrongPin("Incorrect PIN")
    return player


def authenticate_host(password: str, *, expected: str) -> None:
    # Shared party password, not a security boundary.
    if not expected or password.strip() != expected:
        raise WrongHostPassword("Incorrect password. Try again.")


def pending_confirmations(game: GameRecord, *, name: str) -> list[Elimination]:
    return [m for m in timeline(game) if m.victim == name and not m.confirmed]


def timeline(game: GameRecord) -> list[Elimination]:
    return sorted(game.murders, key=lambda m: m.timestamp)


def assignment_chain(game: GameRecord) -> list[tuple[str, str]]:
    return sorted((p.name, p.target) for p in game.players.values() if p.target)


def phase_label(phase: GamePhase | str) -> str:
    try:
        return PHASE_LABELS[GamePhase(phase)]
    except ValueError:
        return "Unknown"
