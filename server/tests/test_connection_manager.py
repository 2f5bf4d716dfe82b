import asyncio
import json

from fastapi.websockets import WebSocketState

from quizrush.websocket.connection_manager import ConnectionManager


class RecordingSocket:
    """Stands in for a server-side websocket and keeps what was sent."""

    def __init__(self, state=WebSocketState.CONNECTED):
        self.client_state = state
        self.sent = []

    async def send_text(self, data):
        self.sent.append(json.loads(data))


def test_player_heartbeat_pings_until_removed():
    manager = ConnectionManager(heartbeat_interval=0.01)
    socket = RecordingSocket()

    async def scenario():
        await manager.register_player("123456", "p1", "Ann", socket)
        await asyncio.sleep(0.05)
        task = manager.heartbeat_tasks["123456"]["player:123456:p1"]
        await manager.remove_player("123456", "p1", socket)
        await asyncio.sleep(0.01)
        return task

    task = asyncio.run(scenario())
    assert {"type": "ping"} in socket.sent
    assert task.cancelled()
    assert manager.heartbeat_tasks == {}
    assert manager.connected_player_ids("123456") == []


def test_host_heartbeat_stops_on_remove():
    manager = ConnectionManager(heartbeat_interval=0.01)
    socket = RecordingSocket()

    async def scenario():
        assert await manager.register_host("123456", socket)
        await asyncio.sleep(0.05)
        await manager.remove_host("123456", socket)

    asyncio.run(scenario())
    assert {"type": "ping"} in socket.sent
    assert manager.heartbeat_tasks == {}
    assert manager.get_host_connection("123456") is None


def test_stale_host_is_replaced_with_its_heartbeat():
    manager = ConnectionManager(heartbeat_interval=0.01)
    stale = RecordingSocket()
    fresh = RecordingSocket()

    async def scenario():
        await manager.register_host("123456", stale)
        old_task = manager.heartbeat_tasks["123456"]["host:123456"]
        stale.client_state = WebSocketState.DISCONNECTED
        assert await manager.register_host("123456", fresh)
        # The old socket's cleanup must not touch the new registration
        await manager.remove_host("123456", stale)
        await asyncio.sleep(0.05)
        new_task = manager.heartbeat_tasks["123456"]["host:123456"]
        await manager.remove_host("123456", fresh)
        return old_task, new_task

    old_task, new_task = asyncio.run(scenario())
    assert old_task.cancelled()
    assert old_task is not new_task
    assert {"type": "ping"} in fresh.sent
    assert manager.heartbeat_tasks == {}


def test_second_connected_host_is_refused():
    manager = ConnectionManager(heartbeat_interval=0)

    async def scenario():
        assert await manager.register_host("123456", RecordingSocket())
        return await manager.register_host("123456", RecordingSocket())

    assert asyncio.run(scenario()) is False
    assert manager.heartbeat_tasks == {}
