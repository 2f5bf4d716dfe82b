import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Set

from quizrush.config import Settings, get_settings
from quizrush.database.store import GameStore, MemoryGameStore, StoredGame
from quizrush.errors import GameNotFound, GenerationExhausted, InvalidTransition
from quizrush.models.answer import AnswerResult
from quizrush.models.events import (
    BaseEvent,
    LeaderboardUpdateEvent,
    PlayerAnsweredEvent,
    PlayerJoinedEvent,
)
from quizrush.models.game import GameSession, GameSnapshot, GameStatus, MachineState, Phase
from quizrush.models.leaderboard import LeaderboardEntry
from quizrush.models.player import Player
from quizrush.models.question import Question
from quizrush.services import leaderboard
from quizrush.services.answer_ledger import AnswerLedger
from quizrush.services.broadcast import BroadcastChannel, Subscription
from quizrush.services.membership import MembershipRegistry
from quizrush.services.quiz_service import QuizService
from quizrush.services.state_machine import SessionStateMachine, Transition

logger = logging.getLogger(__name__)


def generate_pin(length: int = 6) -> str:
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


class GameRuntime:
    """In-memory authority for one game.

    Every mutation of the game goes through ``lock``, which makes the state
    machine, roster and ledger of one game single-writer while other games
    proceed independently.
    """

    def __init__(self, session: GameSession, max_nickname_length: int, state: Optional[MachineState] = None):
        self.session = session
        self.machine = SessionStateMachine(session, state)
        self.registry = MembershipRegistry(max_nickname_length)
        self.ledger = AnswerLedger(self.machine)
        self.lock = asyncio.Lock()
        self.timer: Optional[asyncio.Task] = None
        self.last_activity = session.created_at
        self.finished_at: Optional[float] = None
        self.closed = False

    @property
    def pin(self) -> str:
        return self.session.pin


class GameService:
    def __init__(
        self,
        quiz_service: Optional[QuizService] = None,
        store: Optional[GameStore] = None,
        channel: Optional[BroadcastChannel] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        pin_generator: Optional[Callable[[], str]] = None,
    ):
        self.settings = settings or get_settings()
        self.quiz_service = quiz_service or QuizService(self.settings.quiz_file)
        self.store = store or MemoryGameStore()
        self.channel = channel or BroadcastChannel(self.settings.event_history_size)
        self.clock = clock
        self.pin_generator = pin_generator or (lambda: generate_pin(self.settings.pin_length))
        self.active_games: Dict[str, GameRuntime] = {}
        self._reserved_pins: Set[str] = set()

    # Creation and lookup

    async def _reserve_unique_pin(self) -> str:
        for attempt in range(1, self.settings.pin_max_attempts + 1):
            pin = self.pin_generator()
            existing = self.active_games.get(pin)
            if pin in self._reserved_pins or (
                existing is not None and existing.machine.phase is not Phase.FINISHED
            ):
                logger.debug(f"PIN {pin} collides with a live game (attempt {attempt})")
                continue
            self._reserved_pins.add(pin)
            if await self.store.pin_in_use(pin):
                self._reserved_pins.discard(pin)
                logger.debug(f"PIN {pin} is held by a stored game (attempt {attempt})")
                continue
            if existing is not None:
                # A finished game gives its PIN back
                await self.close_game(pin)
            return pin
        logger.error(f"Could not find a free PIN after {self.settings.pin_max_attempts} attempts")
        raise GenerationExhausted(
            f"no free game PIN after {self.settings.pin_max_attempts} attempts"
        )

    async def create_game(
        self,
        quiz_id: Optional[str] = None,
        questions: Optional[Sequence[Question]] = None,
        title: Optional[str] = None,
        time_limit: Optional[float] = None,
    ) -> GameSnapshot:
        """Create a game in the lobby from a stored quiz or from inline questions.

        The questions are copied into the game here; later edits to the quiz
        do not reach a game that already exists.
        """
        quiz_time_limit = None
        if questions is None:
            if quiz_id is None:
                raise ValueError("either quiz_id or questions is required")
            quiz = await self.quiz_service.load_question_sequence(quiz_id)
            questions = quiz.questions
            title = title or quiz.title
            quiz_time_limit = quiz.time_limit
        if not questions:
            raise ValueError("a game needs at least one question")

        frozen = tuple(Question.model_validate(q.model_dump()) for q in questions)
        pin = await self._reserve_unique_pin()
        try:
            session = GameSession(
                id=secrets.token_hex(16),
                pin=pin,
                quiz_id=quiz_id,
                title=title or "Untitled quiz",
                time_limit=time_limit or quiz_time_limit or self.settings.default_time_limit,
                questions=frozen,
                created_at=self.clock(),
            )
            runtime = GameRuntime(session, self.settings.max_nickname_length)
            await self.store.create_session(session, runtime.machine.state)
            self.active_games[pin] = runtime
        finally:
            self._reserved_pins.discard(pin)

        logger.info(
            f"Game {pin} created with {len(frozen)} questions, {session.time_limit}s per question"
        )
        return self._snapshot(runtime, self.channel.last_seq(pin))

    async def _get_runtime(self, game_pin: str) -> GameRuntime:
        runtime = self.active_games.get(game_pin)
        if runtime is not None:
            return runtime

        stored = await self.store.load_session(game_pin)
        if stored is None:
            raise GameNotFound(f"game with pin {game_pin} not found")
        # Another caller may have restored it while we were loading
        runtime = self.active_games.get(game_pin)
        if runtime is None:
            runtime = self._restore_runtime(stored)
            self.active_games[game_pin] = runtime
            logger.info(f"Loaded game {game_pin} from the store into active games.")
        return runtime

    def _restore_runtime(self, stored: StoredGame) -> GameRuntime:
        runtime = GameRuntime(stored.session, self.settings.max_nickname_length, stored.state)
        for player in stored.players:
            runtime.registry.commit(player.model_copy())
        runtime.ledger.restore(stored.answers)
        runtime.last_activity = stored.updated_at or stored.session.created_at
        state = stored.state
        if state.phase is Phase.FINISHED:
            runtime.finished_at = runtime.last_activity
        elif state.phase is Phase.QUESTION_LIVE:
            deadline = (state.question_started_at or self.clock()) + stored.session.time_limit
            self._schedule_question_timeout(
                runtime, state.question_index, max(0.0, deadline - self.clock())
            )
        return runtime

    # Read side

    def _snapshot(self, runtime: GameRuntime, seq: int) -> GameSnapshot:
        machine = runtime.machine
        phase = machine.phase
        index = machine.current_question_index
        shows_question = phase in (Phase.QUESTION_LIVE, Phase.QUESTION_RESULTS)
        question = machine.current_question if shows_question else None
        return GameSnapshot(
            game_id=runtime.session.id,
            game_pin=runtime.pin,
            title=runtime.session.title,
            status=machine.status,
            phase=phase,
            current_question_index=index if machine.status is GameStatus.ACTIVE else None,
            total_questions=machine.total_questions,
            time_limit=runtime.session.time_limit,
            question=question.public(index) if question else None,
            question_started_at=machine.state.question_started_at if shows_question else None,
            correct_index=question.correct_index if phase is Phase.QUESTION_RESULTS else None,
            answer_count=runtime.ledger.answer_count(index) if shows_question else 0,
            players=[p.public() for p in runtime.registry.players()],
            leaderboard=leaderboard.rank(runtime.registry.players()),
            seq=seq,
        )

    async def get_snapshot(self, game_pin: str) -> GameSnapshot:
        runtime = await self._get_runtime(game_pin)
        return self._snapshot(runtime, self.channel.last_seq(game_pin))

    async def subscribe(self, game_pin: str) -> Subscription:
        """Current state plus every event published after it."""
        runtime = await self._get_runtime(game_pin)
        return self.channel.subscribe(game_pin, lambda seq: self._snapshot(runtime, seq))

    async def get_leaderboard(self, game_pin: str) -> List[LeaderboardEntry]:
        runtime = await self._get_runtime(game_pin)
        return leaderboard.rank(runtime.registry.players())

    async def get_player(self, game_pin: str, player_id: str) -> Player:
        runtime = await self._get_runtime(game_pin)
        return runtime.registry.get(player_id)

    async def events_since(self, game_pin: str, after_seq: int = 0) -> List[BaseEvent]:
        await self._get_runtime(game_pin)
        return self.channel.events_since(game_pin, after_seq)

    @asynccontextmanager
    async def _exclusive(self, game_pin: str) -> AsyncIterator[GameRuntime]:
        runtime = await self._get_runtime(game_pin)
        async with runtime.lock:
            if runtime.closed:
                raise GameNotFound(f"game with pin {game_pin} was closed")
            yield runtime

    # Mutations. Each one plans under the game's lock, writes through the
    # store, and only then applies the change in memory and publishes.

    async def join(self, game_pin: str, nickname: Optional[str]) -> Player:
        async with self._exclusive(game_pin) as runtime:
            if runtime.machine.phase is not Phase.WAITING:
                raise InvalidTransition("players can only join while the game is waiting")
            now = self.clock()
            player = runtime.registry.prepare(nickname, now)
            await self.store.add_player(game_pin, player)
            runtime.registry.commit(player)
            runtime.last_activity = now
            self.channel.publish(
                PlayerJoinedEvent(
                    game_pin=game_pin,
                    emitted_at=now,
                    player=player.public(),
                    player_count=runtime.registry.count(),
                )
            )
        logger.info(f"Player {player.nickname} joined game {game_pin}")
        return player

    async def _commit_transition(self, runtime: GameRuntime, transition: Transition) -> BaseEvent:
        await self.store.save_state(runtime.pin, transition.after)
        event = runtime.machine.apply(transition)
        runtime.last_activity = event.emitted_at
        return self.channel.publish(event)

    async def start(self, game_pin: str) -> GameSnapshot:
        async with self._exclusive(game_pin) as runtime:
            transition = runtime.machine.plan_start(runtime.registry.count(), self.clock())
            event = await self._commit_transition(runtime, transition)
            self._schedule_question_timeout(runtime, event.question_index)
            return self._snapshot(runtime, event.seq)

    async def submit_answer(
        self, game_pin: str, player_id: str, question_index: int, option_index: int
    ) -> AnswerResult:
        """Record a player's answer, timed by the server clock."""
        async with self._exclusive(game_pin) as runtime:
            player = runtime.registry.get(player_id)
            now = self.clock()
            started_at = runtime.machine.state.question_started_at
            time_taken = now - started_at if started_at is not None else 0.0
            answer = runtime.ledger.prepare(player, question_index, option_index, time_taken, now)
            await self.store.record_answer(game_pin, answer, player.score + answer.points)
            score = runtime.ledger.commit(player, answer)
            runtime.last_activity = now

            self.channel.publish(
                PlayerAnsweredEvent(
                    game_pin=game_pin,
                    emitted_at=now,
                    player_id=player.id,
                    nickname=player.nickname,
                    question_index=question_index,
                    answer_count=runtime.ledger.answer_count(question_index),
                )
            )
            if answer.points:
                self._publish_leaderboard(runtime, now, question_index)
        logger.info(
            f"Player {player.nickname} answered question {question_index} of game {game_pin}: "
            f"correct={answer.is_correct} points={answer.points}"
        )
        return AnswerResult(answer=answer, score=score)

    def _publish_leaderboard(self, runtime: GameRuntime, now: float, question_index: Optional[int]) -> None:
        self.channel.publish(
            LeaderboardUpdateEvent(
                game_pin=runtime.pin,
                emitted_at=now,
                leaderboard=leaderboard.rank(runtime.registry.players()),
                question_index=question_index,
            )
        )

    async def _close_question(
        self, runtime: GameRuntime, expected_index: Optional[int], trigger: str
    ) -> Optional[BaseEvent]:
        machine = runtime.machine
        now = self.clock()
        transition = machine.plan_end_question(
            now,
            answer_count=runtime.ledger.answer_count(machine.current_question_index),
            expected_index=expected_index,
            trigger=trigger,
        )
        if transition is None:
            logger.debug(f"end_question ({trigger}) for game {runtime.pin} had nothing to do")
            return None
        event = await self._commit_transition(runtime, transition)
        self._cancel_timer(runtime)
        self._publish_leaderboard(runtime, now, event.question_index)
        logger.info(f"Question {event.question_index} of game {runtime.pin} ended by {trigger}")
        return event

    async def end_question(
        self, game_pin: str, expected_index: Optional[int] = None, trigger: str = "host"
    ) -> Optional[BaseEvent]:
        """Close the live question.

        Returns the published ``question_end`` event, or None when the
        question was already closed (the timer and the host raced) or
        ``expected_index`` is no longer the live question.
        """
        async with self._exclusive(game_pin) as runtime:
            return await self._close_question(runtime, expected_index, trigger)

    async def end_question_snapshot(
        self, game_pin: str, expected_index: Optional[int] = None
    ) -> GameSnapshot:
        """Close the live question for the host and return the state it left."""
        async with self._exclusive(game_pin) as runtime:
            await self._close_question(runtime, expected_index, "host")
            return self._snapshot(runtime, self.channel.last_seq(game_pin))

    async def advance(self, game_pin: str) -> GameSnapshot:
        async with self._exclusive(game_pin) as runtime:
            transition = runtime.machine.plan_advance(
                self.clock(), leaderboard.rank(runtime.registry.players())
            )
            event = await self._commit_transition(runtime, transition)
            if event.type == "question_start":
                self._schedule_question_timeout(runtime, event.question_index)
            else:
                self._cancel_timer(runtime)
                runtime.finished_at = event.emitted_at
                logger.info(f"Game {game_pin} finished")
            return self._snapshot(runtime, event.seq)

    async def close_game(self, game_pin: str) -> None:
        """Drop a game with its players and answers."""
        async with self._exclusive(game_pin) as runtime:
            self._cancel_timer(runtime)
            await self.store.delete_session(game_pin)
            self.channel.close_game(game_pin)
            self.active_games.pop(game_pin, None)
            runtime.closed = True
        logger.info(f"Game {game_pin} closed")

    # Timers and housekeeping

    def _schedule_question_timeout(
        self, runtime: GameRuntime, question_index: int, delay: Optional[float] = None
    ) -> None:
        self._cancel_timer(runtime)
        delay = runtime.session.time_limit if delay is None else delay
        runtime.timer = asyncio.create_task(
            self._question_timeout(runtime.pin, question_index, delay)
        )
        logger.debug(
            f"[timer-set] game={runtime.pin} question={question_index} duration={delay}s"
        )

    def _cancel_timer(self, runtime: GameRuntime) -> None:
        timer, runtime.timer = runtime.timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _question_timeout(self, game_pin: str, question_index: int, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.debug(f"[timer-fire] game={game_pin} question={question_index}")
        # end_question is a no-op once the question is closed
        while True:
            try:
                await self.end_question(game_pin, expected_index=question_index, trigger="timer")
                return
            except GameNotFound:
                logger.debug(f"[timer-abort] game={game_pin} no longer exists")
                return
            except Exception as e:
                logger.error(
                    f"[timer-error] game={game_pin} question={question_index}: {e}, retrying"
                )
            await asyncio.sleep(self.settings.timer_retry_interval_sec)

    async def reclaim_expired(self) -> List[str]:
        """Close lobbies nobody started and finished games past their hold time."""
        now = self.clock()
        expired = []
        for pin, runtime in list(self.active_games.items()):
            phase = runtime.machine.phase
            if phase is Phase.WAITING and now - runtime.last_activity > self.settings.waiting_session_ttl_sec:
                expired.append(pin)
            elif (
                phase is Phase.FINISHED
                and runtime.finished_at is not None
                and now - runtime.finished_at > self.settings.finished_session_ttl_sec
            ):
                expired.append(pin)
        for pin in expired:
            try:
                await self.close_game(pin)
            except GameNotFound:
                continue
            logger.info(f"Reclaimed expired game {pin}")
        return expired

    async def run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_sec)
            try:
                await self.reclaim_expired()
            except Exception as e:
                logger.error(f"Error while reclaiming expired games: {e}")

    async def shutdown(self) -> None:
        for runtime in self.active_games.values():
            self._cancel_timer(runtime)
