import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect, status

from quizrush.errors import GameError
from quizrush.services.game_service import GameService
from quizrush.websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


async def handle_host_action(game_service: GameService, game_pin: str, payload: dict):
    action = payload.get("action")
    if action == "start_quiz":
        await game_service.start(game_pin)
    elif action == "end_question":
        await game_service.end_question(game_pin, expected_index=payload.get("question_index"))
    elif action == "next_question":
        await game_service.advance(game_pin)
    else:
        return {"type": "error", "error": "unknown_action", "message": f"Unknown action {action!r}"}
    return None


async def host_websocket(
    websocket: WebSocket,
    game_pin: str,
    game_service: GameService,
    manager: ConnectionManager,
):
    await websocket.accept()
    try:
        subscription = await game_service.subscribe(game_pin)
    except GameError as e:
        await manager.send(websocket, {"type": "error", **e.to_dict()})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if not await manager.register_host(game_pin, websocket):
        subscription.close()
        await manager.send(
            websocket,
            {"type": "error", "error": "host_connected", "message": "Host already connected."},
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    pump = asyncio.create_task(manager.stream(websocket, subscription))
    try:
        while True:
            data = await websocket.receive_text()
            try:
                payload = json.loads(data)
            except ValueError:
                await manager.send(
                    websocket, {"type": "error", "error": "invalid_message", "message": "Expected JSON"}
                )
                continue
            logger.debug(f"Host message received for game {game_pin}: {payload}")
            try:
                reply = await handle_host_action(game_service, game_pin, payload)
            except GameError as e:
                logger.warning(f"Host action {payload.get('action')} rejected in game {game_pin}: {e.message}")
                reply = {"type": "error", **e.to_dict()}
            if reply is not None:
                await manager.send(websocket, reply)
    except WebSocketDisconnect:
        logger.info(f"Host disconnected from game {game_pin}")
    finally:
        pump.cancel()
        subscription.close()
        await manager.remove_host(game_pin, websocket)
