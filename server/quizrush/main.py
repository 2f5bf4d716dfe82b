import asyncio
import logging

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quizrush.api import games
from quizrush.config import get_settings
from quizrush.database.database import close_db, connect_db
from quizrush.database.store import MongoGameStore
from quizrush.dependencies import get_game_service
from quizrush.errors import GameError
from quizrush.services.game_service import GameService
from quizrush.websocket import host_ws, player_ws
from quizrush.websocket.connection_manager import ConnectionManager, get_connection_manager

load_dotenv()
settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GameError)
async def game_error_handler(request, exc: GameError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _current_game_service() -> GameService:
    provider = app.dependency_overrides.get(get_game_service, get_game_service)
    return provider()


@app.get("/")
async def read_root():
    return {"message": f"Welcome to the {settings.app_name} server!"}


@app.on_event("startup")
async def startup_event():
    await connect_db()
    game_service = _current_game_service()
    if isinstance(game_service.store, MongoGameStore):
        await game_service.store.ensure_indexes()
    app.state.sweeper = asyncio.create_task(game_service.run_sweeper())


@app.on_event("shutdown")
async def shutdown_event():
    sweeper = getattr(app.state, "sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
    await _current_game_service().shutdown()
    await get_connection_manager().close()
    await close_db()


app.include_router(games.router, prefix="/api/games", tags=["games"])


@app.websocket("/ws/join/{game_pin}")
async def websocket_endpoint(
    websocket: WebSocket,
    game_pin: str,
    game_service: GameService = Depends(get_game_service),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    await player_ws.player_websocket(websocket, game_pin, game_service, manager)


@app.websocket("/ws/host/{game_pin}")
async def host_websocket_endpoint(
    websocket: WebSocket,
    game_pin: str,
    game_service: GameService = Depends(get_game_service),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    await host_ws.host_websocket(websocket, game_pin, game_service, manager)
