from typing import Optional

from quizrush.config import get_settings
from quizrush.database.database import get_game_collection, get_quiz_collection
from quizrush.database.store import GameStore, MemoryGameStore, MongoGameStore
from quizrush.services.game_service import GameService
from quizrush.services.quiz_service import QuizService

# Ensuring that the game service instance always returns a singleton
_game_service_instance: Optional[GameService] = None


def _build_store() -> GameStore:
    game_collection = get_game_collection()
    if game_collection is None:
        return MemoryGameStore()
    return MongoGameStore(game_collection)


def get_game_service() -> GameService:
    global _game_service_instance
    if _game_service_instance is None:
        settings = get_settings()
        _game_service_instance = GameService(
            quiz_service=QuizService(settings.quiz_file, get_quiz_collection()),
            store=_build_store(),
            settings=settings,
        )
    return _game_service_instance
