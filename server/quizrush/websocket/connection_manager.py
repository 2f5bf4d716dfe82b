import asyncio
import json
import logging
from typing import Dict, List, Optional

import redis.asyncio as redis
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from redis.asyncio import Redis

from quizrush.config import get_settings
from quizrush.services.broadcast import Subscription

logger = logging.getLogger(__name__)

PRESENCE_TTL_SEC = 7200


class ConnectionManager:
    """
    Tracks the host and player sockets of every game and streams each
    socket's subscription to it. When a Redis URL is configured, who is
    connected is also recorded in Redis so other tools can read presence.
    """

    def __init__(self, redis_url: Optional[str] = None, heartbeat_interval: float = 25):
        self.redis_url = redis_url
        self.heartbeat_interval = heartbeat_interval
        self.redis: Optional[Redis] = None
        self.host_connections: Dict[str, WebSocket] = {}
        self.player_connections: Dict[str, Dict[str, WebSocket]] = {}
        self.heartbeat_tasks: Dict[str, Dict[str, asyncio.Task]] = {}

    async def connect_to_redis(self) -> Optional[Redis]:
        """Connect to Redis if configured and not already connected, with retries"""
        if self.redis is None and self.redis_url:
            retry_count = 0
            max_retries = 3

            while retry_count < max_retries:
                try:
                    self.redis = redis.from_url(
                        self.redis_url, encoding="utf-8", decode_responses=True
                    )
                    await self.redis.ping()
                    logger.info(f"Connected to Redis at {self.redis_url}")
                    break
                except redis.RedisError as e:
                    self.redis = None
                    retry_count += 1
                    logger.warning(f"Redis connection attempt {retry_count} failed: {e}")
                    if retry_count >= max_retries:
                        logger.error(f"Failed to connect to Redis after {max_retries} attempts")
                        raise
                    await asyncio.sleep(1)
        return self.redis

    async def close(self):
        for game_pin in list(self.heartbeat_tasks):
            for task in self.heartbeat_tasks[game_pin].values():
                task.cancel()
        self.heartbeat_tasks.clear()
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    # Heartbeats

    def _heartbeat_key(self, game_pin: str, player_id: Optional[str]) -> str:
        return f"host:{game_pin}" if player_id is None else f"player:{game_pin}:{player_id}"

    def start_heartbeat(self, game_pin: str, websocket: WebSocket, player_id: Optional[str] = None):
        if self.heartbeat_interval <= 0:
            return
        key = self._heartbeat_key(game_pin, player_id)
        task = asyncio.create_task(self._heartbeat_loop(game_pin, websocket, key))
        self.heartbeat_tasks.setdefault(game_pin, {})[key] = task

    async def _heartbeat_loop(self, game_pin: str, websocket: WebSocket, key: str):
        """Send periodic pings to keep the connection alive"""
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                if not await self.send(websocket, {"type": "ping"}):
                    logger.debug(f"Heartbeat failed for {key}, stopping")
                    return
        except asyncio.CancelledError:
            logger.debug(f"Heartbeat canceled for {key} in game {game_pin}")
            raise

    def stop_heartbeat(self, game_pin: str, player_id: Optional[str] = None):
        tasks = self.heartbeat_tasks.get(game_pin)
        if not tasks:
            return
        task = tasks.pop(self._heartbeat_key(game_pin, player_id), None)
        if task is not None:
            task.cancel()
        if not tasks:
            del self.heartbeat_tasks[game_pin]

    # Registration

    async def register_host(self, game_pin: str, websocket: WebSocket) -> bool:
        """Register the host socket of a game. Only one host may be connected."""
        existing = self.host_connections.get(game_pin)
        if existing is not None and existing.client_state == WebSocketState.CONNECTED:
            logger.warning(f"Host already connected for game {game_pin}")
            return False

        # A stale host socket is replaced along with its heartbeat
        self.stop_heartbeat(game_pin)
        self.host_connections[game_pin] = websocket
        self.start_heartbeat(game_pin, websocket)
        await self._presence("set", f"host:{game_pin}", "connected")
        logger.info(f"Host registered for game {game_pin}")
        return True

    async def remove_host(self, game_pin: str, websocket: Optional[WebSocket] = None):
        if websocket is not None and self.host_connections.get(game_pin) is not websocket:
            return
        self.stop_heartbeat(game_pin)
        self.host_connections.pop(game_pin, None)
        await self._presence("delete", f"host:{game_pin}")
        logger.info(f"Host removed for game {game_pin}")

    async def register_player(self, game_pin: str, player_id: str, nickname: str, websocket: WebSocket):
        previous = self.player_connections.setdefault(game_pin, {}).get(player_id)
        if previous is not None and previous is not websocket:
            # A reconnect replaces the old socket of the same player
            self.stop_heartbeat(game_pin, player_id)
        self.player_connections[game_pin][player_id] = websocket
        self.start_heartbeat(game_pin, websocket, player_id)
        await self._presence("hset", f"players:{game_pin}", player_id, nickname)
        logger.info(f"Player {nickname} registered for game {game_pin}")

    async def remove_player(self, game_pin: str, player_id: str, websocket: Optional[WebSocket] = None):
        players = self.player_connections.get(game_pin, {})
        if websocket is not None and players.get(player_id) is not websocket:
            return
        self.stop_heartbeat(game_pin, player_id)
        players.pop(player_id, None)
        if not players:
            self.player_connections.pop(game_pin, None)
        await self._presence("hdel", f"players:{game_pin}", player_id)
        logger.info(f"Player {player_id} removed from game {game_pin}")

    def get_host_connection(self, game_pin: str) -> Optional[WebSocket]:
        host = self.host_connections.get(game_pin)
        if host is not None and host.client_state == WebSocketState.CONNECTED:
            return host
        return None

    def connected_player_ids(self, game_pin: str) -> List[str]:
        return [
            player_id
            for player_id, ws in self.player_connections.get(game_pin, {}).items()
            if ws.client_state == WebSocketState.CONNECTED
        ]

    async def get_player_list(self, game_pin: str) -> List[str]:
        """Connected player ids, from Redis when presence is tracked there"""
        client = await self._redis_or_none()
        if client is None:
            return self.connected_player_ids(game_pin)
        try:
            return await client.hkeys(f"players:{game_pin}")
        except redis.RedisError as e:
            logger.error(f"Error getting player list from Redis for game {game_pin}: {e}")
            return self.connected_player_ids(game_pin)

    async def _redis_or_none(self) -> Optional[Redis]:
        try:
            return await self.connect_to_redis()
        except redis.RedisError:
            return None

    async def _presence(self, op: str, key: str, *args):
        client = await self._redis_or_none()
        if client is None:
            return
        try:
            await getattr(client, op)(key, *args)
            if op in ("set", "hset"):
                await client.expire(key, PRESENCE_TTL_SEC)
        except redis.RedisError as e:
            logger.error(f"Error updating presence {key} in Redis: {e}")

    # Delivery

    async def send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_text(json.dumps(message))
            return True
        except WebSocketDisconnect:
            logger.info("Socket disconnected while sending message")
        except RuntimeError as e:
            # Starlette raises RuntimeError when sending on a closed socket
            logger.debug(f"Could not send to socket: {e}")
        return False

    async def stream(self, websocket: WebSocket, subscription: Subscription):
        """Send the subscription's snapshot, then its events in order."""
        if not await self.send(websocket, subscription.snapshot.model_dump(mode="json")):
            return
        async for event in subscription:
            if not await self.send(websocket, event.model_dump(mode="json")):
                logger.info(f"Stopped streaming game {subscription.game_pin} to a closed socket")
                return
        logger.debug(f"Subscription to game {subscription.game_pin} ended")

    async def cleanup_game(self, game_pin: str):
        """Remove all connections for a game"""
        for task in self.heartbeat_tasks.pop(game_pin, {}).values():
            task.cancel()
        self.host_connections.pop(game_pin, None)
        self.player_connections.pop(game_pin, None)
        await self._presence("delete", f"host:{game_pin}")
        await self._presence("delete", f"players:{game_pin}")
        logger.info(f"Cleaned up connections of game {game_pin}")


_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance"""
    global _connection_manager
    if _connection_manager is None:
        settings = get_settings()
        _connection_manager = ConnectionManager(
            redis_url=settings.redis_url,
            heartbeat_interval=settings.heartbeat_interval_sec,
        )
    return _connection_manager
