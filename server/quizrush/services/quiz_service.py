import json
import logging
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError

from quizrush.config import DEFAULT_QUIZ_FILE
from quizrush.errors import QuizNotFound
from quizrush.models.question import Quiz

logger = logging.getLogger(__name__)


class QuizService:
    """Source of question sequences.

    Quizzes are authored elsewhere. A game reads its quiz once, when it is
    created, from the ``quizzes`` collection if a database is configured and
    otherwise from a JSON file mapping quiz ids to quizzes.
    """

    def __init__(
        self,
        quiz_file: str = DEFAULT_QUIZ_FILE,
        quiz_collection: Optional[AsyncIOMotorCollection] = None,
    ):
        self.quiz_file = quiz_file
        self.quiz_collection = quiz_collection
        self.quizzes = self._load_quizzes()

    def _load_quizzes(self) -> Dict[str, Any]:
        try:
            with open(self.quiz_file, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.warning(f"Quiz file {self.quiz_file} was not found.")
            return {}

    async def _find_stored_quiz(self, quiz_id: str) -> Optional[Dict[str, Any]]:
        if self.quiz_collection is None:
            return None
        return await self.quiz_collection.find_one({"id": quiz_id}, projection={"_id": 0})

    async def load_question_sequence(self, quiz_id: str) -> Quiz:
        """Return the quiz with its questions in play order."""
        data = await self._find_stored_quiz(quiz_id)
        if data is None:
            data = self.quizzes.get(quiz_id)
        if data is None:
            raise QuizNotFound(f"quiz {quiz_id} does not exist")

        try:
            quiz = Quiz.model_validate({**data, "id": quiz_id})
        except ValidationError as e:
            logger.error(f"Quiz {quiz_id} is malformed: {e}")
            raise
        if not quiz.questions:
            raise QuizNotFound(f"quiz {quiz_id} has no questions")
        return quiz.model_copy(update={"questions": quiz.ordered_questions()})
