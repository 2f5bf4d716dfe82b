from pydantic import BaseModel, ConfigDict


class Answer(BaseModel):
    """One player's answer to one question. Never replaced once recorded."""

    player_id: str
    question_index: int
    option_index: int
    time_taken: float
    is_correct: bool
    points: int
    seq: int
    created_at: float

    model_config = ConfigDict(frozen=True)


class AnswerResult(BaseModel):
    answer: Answer
    score: int
