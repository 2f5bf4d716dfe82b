import itertools

import pytest
from fastapi.testclient import TestClient

from quizrush.config import Settings
from quizrush.database.store import MemoryGameStore
from quizrush.dependencies import get_game_service
from quizrush.main import app
from quizrush.models.question import Question
from quizrush.services.game_service import GameService
from quizrush.services.quiz_service import QuizService
from quizrush.websocket.connection_manager import ConnectionManager, get_connection_manager


class FakeClock:
    """Manually advanced clock, so answer timing is exact."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_questions(count: int = 2):
    questions = [
        Question(text="What is 2 + 2?", options=("3", "4", "5", "6"), correct_index=1, order=0),
        Question(text="Capital of France?", options=("Paris", "Rome"), correct_index=0, order=1),
        Question(text="Largest planet?", options=("Mars", "Jupiter", "Venus"), correct_index=1, order=2),
    ]
    return questions[:count]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        heartbeat_interval_sec=0,
        sweep_interval_sec=3600,
        timer_retry_interval_sec=0.02,
        waiting_session_ttl_sec=100,
        finished_session_ttl_sec=10,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryGameStore()


@pytest.fixture
def quiz_service(tmp_path):
    quiz_file = tmp_path / "quizzes.json"
    quiz_file.write_text(
        """
        {
          "basics": {
            "title": "Basics",
            "time_limit": 10,
            "questions": [
              {"text": "Second?", "options": ["a", "b"], "correct_index": 1, "order": 2},
              {"text": "First?", "options": ["x", "y", "z"], "correct_index": 0, "order": 1}
            ]
          }
        }
        """
    )
    return QuizService(str(quiz_file))


@pytest.fixture
def pins():
    return (f"{n:06d}" for n in itertools.count(100000))


@pytest.fixture
def service(settings, clock, store, quiz_service, pins):
    return GameService(
        quiz_service=quiz_service,
        store=store,
        settings=settings,
        clock=clock,
        pin_generator=lambda: next(pins),
    )


@pytest.fixture
def live_service(settings, store, quiz_service, pins):
    """Game service on the real clock, for the API and timer tests."""
    return GameService(
        quiz_service=quiz_service,
        store=store,
        settings=settings,
        pin_generator=lambda: next(pins),
    )


@pytest.fixture
def manager():
    return ConnectionManager(redis_url=None, heartbeat_interval=0)


@pytest.fixture
def client(live_service, manager):
    app.dependency_overrides[get_game_service] = lambda: live_service
    app.dependency_overrides[get_connection_manager] = lambda: manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
