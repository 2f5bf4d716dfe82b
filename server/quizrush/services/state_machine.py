"""Lifecycle of a single game.

    WAITING -> QUESTION_LIVE(0) -> QUESTION_RESULTS(0) -> QUESTION_LIVE(1)
            -> ... -> QUESTION_RESULTS(n-1) -> FINISHED

Transitions are planned against the current state and applied with a
compare-and-swap, so the caller can persist a planned transition before it
becomes visible and a trigger that lost a race (timer vs. host) is rejected
instead of applied twice.
"""

import logging
from typing import List, NamedTuple, Optional

from quizrush.errors import InvalidTransition, NoPlayers, StaleQuestion
from quizrush.models.events import (
    BaseEvent,
    GameEndEvent,
    QuestionEndEvent,
    QuestionStartEvent,
)
from quizrush.models.game import GameSession, GameStatus, MachineState, Phase
from quizrush.models.leaderboard import LeaderboardEntry
from quizrush.models.question import Question

logger = logging.getLogger(__name__)


class Transition(NamedTuple):
    before: MachineState
    after: MachineState
    event: BaseEvent


class SessionStateMachine:
    def __init__(self, session: GameSession, state: Optional[MachineState] = None):
        if not session.questions:
            raise ValueError("a game needs at least one question")
        self.session = session
        self._state = state or MachineState()

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def status(self) -> GameStatus:
        return self._state.status

    @property
    def current_question_index(self) -> Optional[int]:
        return self._state.question_index

    @property
    def current_question(self) -> Optional[Question]:
        if self._state.question_index is None:
            return None
        return self.session.questions[self._state.question_index]

    @property
    def total_questions(self) -> int:
        return len(self.session.questions)

    def _question_start(self, index: int, now: float) -> Transition:
        question = self.session.questions[index]
        after = MachineState(
            phase=Phase.QUESTION_LIVE, question_index=index, question_started_at=now
        )
        event = QuestionStartEvent(
            game_pin=self.session.pin,
            emitted_at=now,
            question_index=index,
            total_questions=self.total_questions,
            question=question.public(index),
            time_limit=self.session.time_limit,
            started_at=now,
        )
        return Transition(self._state, after, event)

    def plan_start(self, player_count: int, now: float) -> Transition:
        if self.phase is not Phase.WAITING:
            raise InvalidTransition(f"cannot start a game that is {self.phase.value}")
        if player_count < 1:
            raise NoPlayers("at least one player must join before the game starts")
        return self._question_start(0, now)

    def plan_end_question(
        self,
        now: float,
        answer_count: int = 0,
        expected_index: Optional[int] = None,
        trigger: str = "host",
    ) -> Optional[Transition]:
        """Plan closing the live question.

        Returns None when there is nothing to do: the question is already in
        its results window, or ``expected_index`` names a question that is no
        longer live (a late timer).
        """
        state = self._state
        if expected_index is not None and (
            state.phase not in (Phase.QUESTION_LIVE, Phase.QUESTION_RESULTS)
            or state.question_index != expected_index
        ):
            logger.debug(
                f"Ignoring end of question {expected_index} for game {self.session.pin}: "
                f"game is at {state.phase.value}({state.question_index})"
            )
            return None
        if state.phase is Phase.QUESTION_RESULTS:
            return None
        if state.phase is not Phase.QUESTION_LIVE:
            raise InvalidTransition(f"no question is live while the game is {state.phase.value}")

        index = state.question_index
        after = MachineState(
            phase=Phase.QUESTION_RESULTS,
            question_index=index,
            question_started_at=state.question_started_at,
        )
        event = QuestionEndEvent(
            game_pin=self.session.pin,
            emitted_at=now,
            question_index=index,
            correct_index=self.session.questions[index].correct_index,
            answer_count=answer_count,
            trigger=trigger,
        )
        return Transition(state, after, event)

    def plan_advance(self, now: float, leaderboard: List[LeaderboardEntry]) -> Transition:
        state = self._state
        if state.phase is not Phase.QUESTION_RESULTS:
            raise InvalidTransition(
                f"can only advance from a question's results, game is {state.phase.value}"
            )
        next_index = state.question_index + 1
        if next_index < self.total_questions:
            return self._question_start(next_index, now)

        after = MachineState(phase=Phase.FINISHED, question_index=state.question_index)
        event = GameEndEvent(game_pin=self.session.pin, emitted_at=now, leaderboard=leaderboard)
        return Transition(state, after, event)

    def apply(self, transition: Transition) -> BaseEvent:
        if transition.before != self._state:
            raise InvalidTransition("game state changed since the transition was planned")
        self._state = transition.after
        logger.info(
            f"Game {self.session.pin}: {transition.before.phase.value}({transition.before.question_index})"
            f" -> {transition.after.phase.value}({transition.after.question_index})"
        )
        return transition.event

    def start(self, player_count: int, now: float) -> BaseEvent:
        return self.apply(self.plan_start(player_count, now))

    def end_question(
        self,
        now: float,
        answer_count: int = 0,
        expected_index: Optional[int] = None,
        trigger: str = "host",
    ) -> Optional[BaseEvent]:
        transition = self.plan_end_question(now, answer_count, expected_index, trigger)
        if transition is None:
            return None
        return self.apply(transition)

    def advance(self, now: float, leaderboard: List[LeaderboardEntry]) -> BaseEvent:
        return self.apply(self.plan_advance(now, leaderboard))

    def accepting_question(self, question_index: int) -> Question:
        """Return the live question if it is ``question_index``, else raise StaleQuestion."""
        state = self._state
        if state.phase is not Phase.QUESTION_LIVE:
            raise StaleQuestion(
                f"question {question_index} is not accepting answers, game is {state.phase.value}"
            )
        if question_index != state.question_index:
            raise StaleQuestion(
                f"question {question_index} is not live, question {state.question_index} is"
            )
        return self.session.questions[question_index]
