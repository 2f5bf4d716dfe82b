"""Per-game record of submitted answers.

An answer is identified by (player, question index). The first valid
submission wins; later ones are rejected with DuplicateAnswer and never
touch the player's score.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

from quizrush.errors import DuplicateAnswer, InvalidOption
from quizrush.models.answer import Answer
from quizrush.models.player import Player
from quizrush.services.scoring import calculate_points
from quizrush.services.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


class AnswerLedger:
    def __init__(self, machine: SessionStateMachine):
        self._machine = machine
        self._answers: Dict[Tuple[str, int], Answer] = {}
        self._seq = 0

    def prepare(
        self,
        player: Player,
        question_index: int,
        option_index: int,
        time_taken: float,
        now: Optional[float] = None,
    ) -> Answer:
        """Validate a submission and score it without recording anything.

        Checks run in order: the question must be live (StaleQuestion), the
        player must not have answered it yet (DuplicateAnswer), and the option
        must exist (InvalidOption).
        """
        question = self._machine.accepting_question(question_index)
        if (player.id, question_index) in self._answers:
            raise DuplicateAnswer(
                f"{player.nickname} already answered question {question_index}"
            )
        if not 0 <= option_index < len(question.options):
            raise InvalidOption(
                f"option {option_index} does not exist, question has {len(question.options)} options"
            )

        is_correct = option_index == question.correct_index
        points = calculate_points(is_correct, time_taken, self._machine.session.time_limit)
        return Answer(
            player_id=player.id,
            question_index=question_index,
            option_index=option_index,
            time_taken=max(0.0, time_taken),
            is_correct=is_correct,
            points=points,
            seq=self._seq + 1,
            created_at=time.time() if now is None else now,
        )

    def commit(self, player: Player, answer: Answer) -> int:
        """Record a prepared answer and add its points. Returns the new score."""
        key = (answer.player_id, answer.question_index)
        if key in self._answers:
            raise DuplicateAnswer(
                f"{player.nickname} already answered question {answer.question_index}"
            )
        self._answers[key] = answer
        self._seq = max(self._seq, answer.seq)
        player.score += answer.points
        logger.debug(
            f"Recorded answer of {player.nickname} to question {answer.question_index}: "
            f"correct={answer.is_correct} points={answer.points} score={player.score}"
        )
        return player.score

    def submit(
        self,
        player: Player,
        question_index: int,
        option_index: int,
        time_taken: float,
        now: Optional[float] = None,
    ) -> Answer:
        answer = self.prepare(player, question_index, option_index, time_taken, now)
        self.commit(player, answer)
        return answer

    def get(self, player_id: str, question_index: int) -> Optional[Answer]:
        return self._answers.get((player_id, question_index))

    def answers_for(self, question_index: int) -> List[Answer]:
        answers = [a for (_, index), a in self._answers.items() if index == question_index]
        return sorted(answers, key=lambda a: a.seq)

    def answer_count(self, question_index: Optional[int]) -> int:
        if question_index is None:
            return 0
        return sum(1 for (_, index) in self._answers if index == question_index)

    def restore(self, answers: List[Answer]) -> None:
        for answer in answers:
            self._answers[(answer.player_id, answer.question_index)] = answer
            self._seq = max(self._seq, answer.seq)
