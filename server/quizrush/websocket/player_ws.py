import asyncio
import json
import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect, status

from quizrush.errors import GameError
from quizrush.models.player import Player
from quizrush.services.game_service import GameService
from quizrush.websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


def _error(code: str, message: str) -> dict:
    return {"type": "error", "error": code, "message": message}


async def _receive_json(websocket: WebSocket, manager: ConnectionManager) -> Optional[dict]:
    data = await websocket.receive_text()
    try:
        payload = json.loads(data)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        await manager.send(websocket, _error("invalid_message", "Expected a JSON object"))
        return None
    return payload


async def _admit_player(
    websocket: WebSocket, game_pin: str, game_service: GameService, manager: ConnectionManager
) -> Player:
    """Wait for a join or rejoin message until one succeeds."""
    while True:
        payload = await _receive_json(websocket, manager)
        if payload is None:
            continue
        action = payload.get("action")
        try:
            if action == "join":
                return await game_service.join(game_pin, payload.get("nickname"))
            if action == "rejoin":
                return await game_service.get_player(game_pin, str(payload.get("player_id")))
        except GameError as e:
            await manager.send(websocket, {"type": "error", **e.to_dict()})
            if e.code == "game_not_found":
                raise
            continue
        await manager.send(websocket, _error("not_joined", "Send a join or rejoin message first"))


async def handle_player_action(game_service: GameService, game_pin: str, player: Player, payload: dict):
    action = payload.get("action")
    if action != "submit_answer":
        return _error("unknown_action", f"Unknown action {action!r}")

    question_index = payload.get("question_index")
    answer_index = payload.get("answer_index")
    if not isinstance(question_index, int) or not isinstance(answer_index, int):
        return _error("invalid_message", "question_index and answer_index must be integers")
    result = await game_service.submit_answer(game_pin, player.id, question_index, answer_index)
    return {
        "type": "answer_result",
        "question_index": question_index,
        "is_correct": result.answer.is_correct,
        "points": result.answer.points,
        "time_taken": result.answer.time_taken,
        "new_score": result.score,
    }


async def player_websocket(
    websocket: WebSocket,
    game_pin: str,
    game_service: GameService,
    manager: ConnectionManager,
):
    await websocket.accept()
    try:
        player = await _admit_player(websocket, game_pin, game_service, manager)
        subscription = await game_service.subscribe(game_pin)
    except GameError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except WebSocketDisconnect:
        logger.info(f"Socket left game {game_pin} before joining")
        return

    await manager.register_player(game_pin, player.id, player.nickname, websocket)
    await manager.send(websocket, {"type": "joined_game", "player": player.model_dump()})
    pump = asyncio.create_task(manager.stream(websocket, subscription))
    try:
        while True:
            payload = await _receive_json(websocket, manager)
            if payload is None:
                continue
            logger.debug(f"Player {player.nickname} message for game {game_pin}: {payload}")
            try:
                reply = await handle_player_action(game_service, game_pin, player, payload)
            except GameError as e:
                reply = {"type": "error", **e.to_dict()}
            await manager.send(websocket, reply)
    except WebSocketDisconnect:
        logger.info(f"Player {player.nickname} disconnected from game {game_pin}")
    finally:
        pump.cancel()
        subscription.close()
        await manager.remove_player(game_pin, player.id, websocket)
