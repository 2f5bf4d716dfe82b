from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from quizrush.models.leaderboard import LeaderboardEntry
from quizrush.models.player import PlayerPublic
from quizrush.models.question import Question, QuestionPublic


class GameStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class Phase(str, Enum):
    WAITING = "waiting"
    QUESTION_LIVE = "question_live"
    QUESTION_RESULTS = "question_results"
    FINISHED = "finished"

    @property
    def status(self) -> GameStatus:
        if self is Phase.WAITING:
            return GameStatus.WAITING
        if self is Phase.FINISHED:
            return GameStatus.FINISHED
        return GameStatus.ACTIVE


class MachineState(BaseModel):
    """Where a game is in its lifecycle. Replaced, never mutated."""

    phase: Phase = Phase.WAITING
    question_index: Optional[int] = None
    question_started_at: Optional[float] = None

    model_config = ConfigDict(frozen=True)

    @property
    def status(self) -> GameStatus:
        return self.phase.status


class GameSession(BaseModel):
    id: str
    pin: str
    quiz_id: Optional[str] = None
    title: str
    time_limit: float
    questions: Tuple[Question, ...]
    created_at: float

    model_config = ConfigDict(frozen=True)


class GameSnapshot(BaseModel):
    """Authoritative state handed to a client before it follows the event stream."""

    type: str = "snapshot"
    game_id: str
    game_pin: str
    title: str
    status: GameStatus
    phase: Phase
    current_question_index: Optional[int] = None
    total_questions: int
    time_limit: float
    question: Optional[QuestionPublic] = None
    question_started_at: Optional[float] = None
    correct_index: Optional[int] = None
    answer_count: int = 0
    players: List[PlayerPublic]
    leaderboard: List[LeaderboardEntry]
    seq: int
