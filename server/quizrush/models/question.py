from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Question(BaseModel):
    text: str
    options: Tuple[str, ...]
    correct_index: int  # Index of the correct option
    order: int = 0

    model_config = ConfigDict(frozen=True)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question text must not be empty")
        return value

    @field_validator("options")
    @classmethod
    def _enough_options(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(value) < 2:
            raise ValueError("a question needs at least two options")
        if any(not option.strip() for option in value):
            raise ValueError("options must not be empty")
        return value

    @model_validator(mode="after")
    def _correct_index_in_range(self) -> "Question":
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct_index {self.correct_index} is outside 0..{len(self.options) - 1}"
            )
        return self

    def public(self, index: int) -> "QuestionPublic":
        """Payload players may see while the question is live."""
        return QuestionPublic(index=index, text=self.text, options=self.options, order=self.order)


class QuestionPublic(BaseModel):
    index: int
    text: str
    options: Tuple[str, ...]
    order: int

    model_config = ConfigDict(frozen=True)


class Quiz(BaseModel):
    id: str
    title: str = "Untitled quiz"
    time_limit: Optional[float] = Field(default=None, gt=0)
    questions: List[Question]

    def ordered_questions(self) -> List[Question]:
        return sorted(self.questions, key=lambda q: q.order)
