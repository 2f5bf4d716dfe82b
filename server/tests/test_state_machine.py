import pytest

from quizrush.errors import InvalidTransition, NoPlayers, StaleQuestion
from quizrush.models.game import GameSession, GameStatus, Phase
from quizrush.services.state_machine import SessionStateMachine

from conftest import make_questions


@pytest.fixture
def machine():
    session = GameSession(
        id="g1",
        pin="123456",
        title="Test",
        time_limit=10,
        questions=tuple(make_questions(2)),
        created_at=0,
    )
    return SessionStateMachine(session)


def test_starts_waiting(machine):
    assert machine.phase is Phase.WAITING
    assert machine.status is GameStatus.WAITING
    assert machine.current_question is None


def test_full_lifecycle(machine):
    event = machine.start(player_count=1, now=100)
    assert event.type == "question_start"
    assert event.question_index == 0
    assert event.started_at == 100
    assert machine.status is GameStatus.ACTIVE

    event = machine.end_question(now=105, answer_count=1)
    assert event.type == "question_end"
    assert event.correct_index == 1
    assert machine.phase is Phase.QUESTION_RESULTS

    event = machine.advance(now=110, leaderboard=[])
    assert event.type == "question_start"
    assert event.question_index == 1
    assert machine.state.question_started_at == 110

    machine.end_question(now=115)
    event = machine.advance(now=120, leaderboard=[])
    assert event.type == "game_end"
    assert machine.status is GameStatus.FINISHED


def test_question_start_hides_correct_option(machine):
    event = machine.start(player_count=1, now=0)
    assert "correct_index" not in event.model_dump()["question"]


def test_start_requires_a_player(machine):
    with pytest.raises(NoPlayers):
        machine.start(player_count=0, now=0)
    assert machine.phase is Phase.WAITING


def test_start_only_once(machine):
    machine.start(player_count=1, now=0)
    with pytest.raises(InvalidTransition):
        machine.start(player_count=1, now=1)


def test_cannot_end_question_in_lobby(machine):
    with pytest.raises(InvalidTransition):
        machine.end_question(now=0)


def test_advance_requires_results(machine):
    with pytest.raises(InvalidTransition):
        machine.advance(now=0, leaderboard=[])
    machine.start(player_count=1, now=0)
    with pytest.raises(InvalidTransition):
        machine.advance(now=1, leaderboard=[])


def test_second_end_question_is_a_no_op(machine):
    machine.start(player_count=1, now=0)
    assert machine.end_question(now=1) is not None
    assert machine.end_question(now=2) is None
    assert machine.phase is Phase.QUESTION_RESULTS


def test_late_timer_for_an_earlier_question_is_ignored(machine):
    machine.start(player_count=1, now=0)
    machine.end_question(now=1)
    machine.advance(now=2, leaderboard=[])
    assert machine.end_question(now=3, expected_index=0, trigger="timer") is None
    assert machine.phase is Phase.QUESTION_LIVE
    assert machine.current_question_index == 1


def test_planned_transition_rejected_after_state_moved(machine):
    machine.start(player_count=1, now=0)
    host = machine.plan_end_question(now=1)
    timer = machine.plan_end_question(now=1, expected_index=0, trigger="timer")
    machine.apply(host)
    with pytest.raises(InvalidTransition):
        machine.apply(timer)


def test_accepting_question(machine):
    with pytest.raises(StaleQuestion):
        machine.accepting_question(0)
    machine.start(player_count=1, now=0)
    assert machine.accepting_question(0).text == "What is 2 + 2?"
    with pytest.raises(StaleQuestion):
        machine.accepting_question(1)
    machine.end_question(now=1)
    with pytest.raises(StaleQuestion):
        machine.accepting_question(0)


def test_needs_questions():
    session = GameSession(id="g", pin="1", title="t", time_limit=1, questions=(), created_at=0)
    with pytest.raises(ValueError):
        SessionStateMachine(session)
