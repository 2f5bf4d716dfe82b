"""Per-game event fan-out.

Every subscriber owns a FIFO queue and every event is stamped with the next
sequence number of its game before it is queued, so all subscribers of a game
see the same events in the same order. Publishing never awaits: a slow
subscriber only grows its own queue.

Subscribing hands back the current snapshot in the same step as registering
the queue, so nothing published in between can be missed. A recent window of
events is kept per game so reconnecting clients can replay what they missed;
replays may repeat events a client already has, clients dedupe on ``seq``.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set

from quizrush.models.events import BaseEvent
from quizrush.models.game import GameSnapshot

logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, channel: "BroadcastChannel", game_pin: str, snapshot: GameSnapshot):
        self.channel = channel
        self.game_pin = game_pin
        self.snapshot = snapshot
        self.queue: "asyncio.Queue[Optional[BaseEvent]]" = asyncio.Queue()
        self.closed = False

    def deliver(self, event: Optional[BaseEvent]) -> None:
        if not self.closed:
            self.queue.put_nowait(event)

    async def get(self) -> Optional[BaseEvent]:
        """Next event, or None once the subscription is closed."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()

    def pending(self) -> List[BaseEvent]:
        events = []
        while not self.queue.empty():
            event = self.queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        self.channel.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> BaseEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class BroadcastChannel:
    def __init__(self, history_size: int = 256):
        self.history_size = history_size
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._sequence: Dict[str, int] = {}
        self._history: Dict[str, Deque[BaseEvent]] = {}

    def last_seq(self, game_pin: str) -> int:
        return self._sequence.get(game_pin, 0)

    def publish(self, event: BaseEvent) -> BaseEvent:
        game_pin = event.game_pin
        seq = self._sequence.get(game_pin, 0) + 1
        self._sequence[game_pin] = seq
        stamped = event.model_copy(update={"seq": seq})

        history = self._history.get(game_pin)
        if history is None:
            history = self._history[game_pin] = deque(maxlen=self.history_size)
        history.append(stamped)

        subscribers = self._subscribers.get(game_pin, set())
        for subscription in subscribers:
            subscription.deliver(stamped)
        logger.debug(
            f"Published {stamped.type} #{seq} for game {game_pin} to {len(subscribers)} subscribers"
        )
        return stamped

    def subscribe(
        self, game_pin: str, snapshot_factory: Callable[[int], GameSnapshot]
    ) -> Subscription:
        """Register a subscriber and capture the state it starts from.

        ``snapshot_factory`` receives the last published sequence number and
        must build the snapshot synchronously.
        """
        snapshot = snapshot_factory(self.last_seq(game_pin))
        subscription = Subscription(self, game_pin, snapshot)
        self._subscribers.setdefault(game_pin, set()).add(subscription)
        logger.debug(f"New subscriber for game {game_pin} at seq {snapshot.seq}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        subscription.queue.put_nowait(None)
        subscribers = self._subscribers.get(subscription.game_pin)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.game_pin]

    def subscriber_count(self, game_pin: str) -> int:
        return len(self._subscribers.get(game_pin, ()))

    def events_since(self, game_pin: str, after_seq: int = 0) -> List[BaseEvent]:
        return [e for e in self._history.get(game_pin, ()) if e.seq > after_seq]

    def close_game(self, game_pin: str) -> None:
        """Close every subscription of a game and forget its history."""
        for subscription in list(self._subscribers.get(game_pin, ())):
            self.unsubscribe(subscription)
        self._subscribers.pop(game_pin, None)
        self._history.pop(game_pin, None)
        self._sequence.pop(game_pin, None)
