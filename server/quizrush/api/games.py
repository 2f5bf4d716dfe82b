from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, model_validator

from quizrush.dependencies import get_game_service
from quizrush.models.answer import AnswerResult
from quizrush.models.game import GameSnapshot
from quizrush.models.leaderboard import LeaderboardEntry
from quizrush.models.player import Player
from quizrush.models.question import Question
from quizrush.services.game_service import GameService
from quizrush.websocket.connection_manager import ConnectionManager, get_connection_manager

router = APIRouter()


class CreateGameRequest(BaseModel):
    quiz_id: Optional[str] = None
    questions: Optional[List[Question]] = Field(default=None, min_length=1)
    title: Optional[str] = None
    time_limit: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _quiz_or_questions(self) -> "CreateGameRequest":
        if self.quiz_id is None and self.questions is None:
            raise ValueError("either quiz_id or questions is required")
        return self


class JoinRequest(BaseModel):
    nickname: str


class AnswerRequest(BaseModel):
    player_id: str
    question_index: int
    option_index: int


class EndQuestionRequest(BaseModel):
    question_index: Optional[int] = None


@router.post("", response_model=GameSnapshot, status_code=status.HTTP_201_CREATED)
async def create_game(body: CreateGameRequest, game_service: GameService = Depends(get_game_service)):
    return await game_service.create_game(
        quiz_id=body.quiz_id,
        questions=body.questions,
        title=body.title,
        time_limit=body.time_limit,
    )


@router.get("/{game_pin}", response_model=GameSnapshot)
async def get_game(game_pin: str, game_service: GameService = Depends(get_game_service)):
    return await game_service.get_snapshot(game_pin)


@router.delete("/{game_pin}", status_code=status.HTTP_204_NO_CONTENT)
async def close_game(
    game_pin: str,
    game_service: GameService = Depends(get_game_service),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    await game_service.close_game(game_pin)
    await manager.cleanup_game(game_pin)


@router.post("/{game_pin}/players", response_model=Player, status_code=status.HTTP_201_CREATED)
async def join_game(
    game_pin: str, body: JoinRequest, game_service: GameService = Depends(get_game_service)
):
    return await game_service.join(game_pin, body.nickname)


@router.post("/{game_pin}/start", response_model=GameSnapshot)
async def start_game(game_pin: str, game_service: GameService = Depends(get_game_service)):
    return await game_service.start(game_pin)


@router.post("/{game_pin}/answers", response_model=AnswerResult, status_code=status.HTTP_201_CREATED)
async def submit_answer(
    game_pin: str, body: AnswerRequest, game_service: GameService = Depends(get_game_service)
):
    return await game_service.submit_answer(
        game_pin, body.player_id, body.question_index, body.option_index
    )


@router.post("/{game_pin}/end-question", response_model=GameSnapshot)
async def end_question(
    game_pin: str,
    body: Optional[EndQuestionRequest] = None,
    game_service: GameService = Depends(get_game_service),
):
    expected_index = body.question_index if body else None
    return await game_service.end_question_snapshot(game_pin, expected_index=expected_index)


@router.post("/{game_pin}/advance", response_model=GameSnapshot)
async def advance(game_pin: str, game_service: GameService = Depends(get_game_service)):
    return await game_service.advance(game_pin)


@router.get("/{game_pin}/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(game_pin: str, game_service: GameService = Depends(get_game_service)):
    return await game_service.get_leaderboard(game_pin)


@router.get("/{game_pin}/events")
async def get_events(
    game_pin: str,
    after: int = Query(default=0, ge=0),
    game_service: GameService = Depends(get_game_service),
):
    events = await game_service.events_since(game_pin, after)
    return [event.model_dump(mode="json") for event in events]


@router.get("/{game_pin}/connections")
async def get_connections(
    game_pin: str,
    game_service: GameService = Depends(get_game_service),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Who is connected to a game right now."""
    await game_service.get_snapshot(game_pin)
    return {
        "host_connected": manager.get_host_connection(game_pin) is not None,
        "player_ids": await manager.get_player_list(game_pin),
    }
