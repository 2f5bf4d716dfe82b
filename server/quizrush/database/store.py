"""Durable record of games, players and answers.

The game service writes through the store before it applies a change in
memory, so a failed write leaves the game exactly as it was. Each game is one
document keyed by its PIN; players and answers are embedded and are deleted
with it.
"""

import logging
import time
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel

from quizrush.models.answer import Answer
from quizrush.models.game import GameSession, GameStatus, MachineState
from quizrush.models.player import Player

logger = logging.getLogger(__name__)


class StoredGame(BaseModel):
    session: GameSession
    state: MachineState
    players: List[Player] = []
    answers: List[Answer] = []
    updated_at: float = 0


class GameStore:
    async def create_session(self, session: GameSession, state: MachineState) -> None:
        raise NotImplementedError

    async def save_state(self, game_pin: str, state: MachineState) -> None:
        raise NotImplementedError

    async def add_player(self, game_pin: str, player: Player) -> None:
        raise NotImplementedError

    async def record_answer(self, game_pin: str, answer: Answer, new_score: int) -> None:
        """Store the answer and the player's new score in one write."""
        raise NotImplementedError

    async def delete_session(self, game_pin: str) -> None:
        raise NotImplementedError

    async def pin_in_use(self, game_pin: str) -> bool:
        """True if an unfinished game holds this PIN."""
        raise NotImplementedError

    async def load_session(self, game_pin: str) -> Optional[StoredGame]:
        raise NotImplementedError


class MemoryGameStore(GameStore):
    """Keeps games in process memory. Used when no database is configured."""

    def __init__(self):
        self.games: Dict[str, StoredGame] = {}

    def _get(self, game_pin: str) -> StoredGame:
        game = self.games.get(game_pin)
        if game is None:
            raise KeyError(f"game {game_pin} is not stored")
        return game

    async def create_session(self, session: GameSession, state: MachineState) -> None:
        self.games[session.pin] = StoredGame(session=session, state=state, updated_at=time.time())

    async def save_state(self, game_pin: str, state: MachineState) -> None:
        game = self._get(game_pin)
        game.state = state
        game.updated_at = time.time()

    async def add_player(self, game_pin: str, player: Player) -> None:
        self._get(game_pin).players.append(player.model_copy())

    async def record_answer(self, game_pin: str, answer: Answer, new_score: int) -> None:
        game = self._get(game_pin)
        game.answers.append(answer)
        for stored in game.players:
            if stored.id == answer.player_id:
                stored.score = new_score

    async def delete_session(self, game_pin: str) -> None:
        self.games.pop(game_pin, None)

    async def pin_in_use(self, game_pin: str) -> bool:
        game = self.games.get(game_pin)
        return game is not None and game.state.status is not GameStatus.FINISHED

    async def load_session(self, game_pin: str) -> Optional[StoredGame]:
        game = self.games.get(game_pin)
        return game.model_copy(deep=True) if game else None


class MongoGameStore(GameStore):
    def __init__(self, game_collection: AsyncIOMotorCollection):
        self.game_collection = game_collection

    def _get_db_projection(self):
        return {"_id": 0}

    async def ensure_indexes(self) -> None:
        await self.game_collection.create_index("game_pin", unique=True)

    def _state_fields(self, state: MachineState) -> dict:
        return {
            "phase": state.phase.value,
            "game_status": state.status.value,
            "current_question_index": state.question_index,
            "question_started_at": state.question_started_at,
            "updated_at": time.time(),
        }

    async def _update(self, game_pin: str, query: dict, update: dict) -> None:
        logger.debug(f"Updating DB for game {game_pin}: {update}")
        result = await self.game_collection.update_one({"game_pin": game_pin, **query}, update)
        logger.debug(
            f"DB update result for {game_pin}: Matched={result.matched_count}, Modified={result.modified_count}"
        )
        if result.matched_count == 0:
            raise KeyError(f"game {game_pin} is not stored")

    async def create_session(self, session: GameSession, state: MachineState) -> None:
        document = {
            "game_id": session.id,
            "game_pin": session.pin,
            "session": session.model_dump(mode="json"),
            "players": [],
            "answers": [],
            **self._state_fields(state),
        }
        # Replaces a finished game that held the same PIN; an unfinished one
        # makes the upsert collide with the unique index instead.
        result = await self.game_collection.replace_one(
            {"game_pin": session.pin, "game_status": GameStatus.FINISHED.value},
            document,
            upsert=True,
        )
        logger.info(f"Game created in DB with pin {session.pin}, Upserted ID: {result.upserted_id}")

    async def save_state(self, game_pin: str, state: MachineState) -> None:
        await self._update(game_pin, {}, {"$set": self._state_fields(state)})

    async def add_player(self, game_pin: str, player: Player) -> None:
        await self._update(game_pin, {}, {"$push": {"players": player.model_dump()}})

    async def record_answer(self, game_pin: str, answer: Answer, new_score: int) -> None:
        await self._update(
            game_pin,
            {"players.id": answer.player_id},
            {
                "$push": {"answers": answer.model_dump()},
                "$set": {"players.$.score": new_score, "updated_at": time.time()},
            },
        )

    async def delete_session(self, game_pin: str) -> None:
        await self.game_collection.delete_one({"game_pin": game_pin})
        logger.info(f"Game {game_pin} deleted from DB")

    async def pin_in_use(self, game_pin: str) -> bool:
        document = await self.game_collection.find_one(
            {"game_pin": game_pin, "game_status": {"$ne": GameStatus.FINISHED.value}},
            projection={"_id": 0, "game_pin": 1},
        )
        return document is not None

    async def load_session(self, game_pin: str) -> Optional[StoredGame]:
        document = await self.game_collection.find_one(
            {"game_pin": game_pin}, projection=self._get_db_projection()
        )
        if not document:
            return None
        return StoredGame(
            session=GameSession.model_validate(document["session"]),
            state=MachineState(
                phase=document["phase"],
                question_index=document.get("current_question_index"),
                question_started_at=document.get("question_started_at"),
            ),
            players=[Player.model_validate(p) for p in document.get("players", [])],
            answers=[Answer.model_validate(a) for a in document.get("answers", [])],
            updated_at=document.get("updated_at", 0),
        )
