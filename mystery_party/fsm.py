from __future__ import annotations

from statemachine import State, StateMachine

from mystery_party.api.models import GamePhase, GameRecord
from mystery_party.records import normalize_game


class PhaseMachine(StateMachine):
    """Forward-only phase progression for one game.

    murders -> investigation -> voting -> results; advancing from `results`
    stays on `results`. Host overrides that jump to an arbitrary phase bypass
    the machine (see `protocol.set_phase`).
    """

    murders = State(GamePhase.murders.value, value=GamePhase.murders.value, initial=True)
    investigation = State(GamePhase.investigation.value, value=GamePhase.investigation.value)
    voting = State(GamePhase.voting.value, value=GamePhase.voting.value)
    results = State(GamePhase.results.value, value=GamePhase.results.value)

    advance = murders.to(investigation) | investigation.to(voting) | voting.to(results) | results.to.itself()

    def __init__(self, game: GameRecord):
        self.game = game
        super().__init__(start_value=game.phase.value)

    def sync_phase_to_model(self) -> None:
        self.game.phase = GamePhase(str(self.current_state.value))


def next_phase(phase: GamePhase | str) -> GamePhase:
    """Phase after `phase`, clamped at `results`. Unknown values count as `murders`."""

    game = normalize_game({"phase": phase})
    machine = PhaseMachine(game)
    machine.advance()
    machine.sync_phase_to_model()
    return game.phase
