"""Events published on a game's broadcast channel.

Each event is self-contained: a client can render the new state from the
event alone. ``seq`` is assigned by the channel at publish time and orders
events within one game.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from quizrush.models.leaderboard import LeaderboardEntry
from quizrush.models.player import PlayerPublic
from quizrush.models.question import QuestionPublic


class BaseEvent(BaseModel):
    game_pin: str
    seq: int = 0
    emitted_at: float

    model_config = ConfigDict(frozen=True)


class QuestionStartEvent(BaseEvent):
    type: Literal["question_start"] = "question_start"
    question_index: int
    total_questions: int
    question: QuestionPublic
    time_limit: float
    started_at: float


class QuestionEndEvent(BaseEvent):
    type: Literal["question_end"] = "question_end"
    question_index: int
    correct_index: int
    answer_count: int
    trigger: Literal["host", "timer"] = "host"


class GameEndEvent(BaseEvent):
    type: Literal["game_end"] = "game_end"
    leaderboard: List[LeaderboardEntry]


class PlayerJoinedEvent(BaseEvent):
    type: Literal["player_joined"] = "player_joined"
    player: PlayerPublic
    player_count: int


class PlayerAnsweredEvent(BaseEvent):
    type: Literal["player_answered"] = "player_answered"
    player_id: str
    nickname: str
    question_index: int
    answer_count: int


class LeaderboardUpdateEvent(BaseEvent):
    type: Literal["leaderboard_update"] = "leaderboard_update"
    leaderboard: List[LeaderboardEntry]
    question_index: Optional[int] = None


GameEvent = Annotated[
    Union[
        QuestionStartEvent,
        QuestionEndEvent,
        GameEndEvent,
        PlayerJoinedEvent,
        PlayerAnsweredEvent,
        LeaderboardUpdateEvent,
    ],
    Field(discriminator="type"),
]

game_event_adapter = TypeAdapter(GameEvent)


def parse_event(data: dict) -> BaseEvent:
    return game_event_adapter.validate_python(data)
