"""Errors raised by the game session core.

Every error carries a stable ``code`` that clients can switch on and the
HTTP status the REST layer answers with. Websocket handlers send the same
code inside an ``error`` message.
"""

from fastapi import status


class GameError(Exception):
    code = "game_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidTransition(GameError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class NoPlayers(GameError):
    code = "no_players"
    status_code = status.HTTP_409_CONFLICT


class InvalidNickname(GameError):
    code = "invalid_nickname"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NicknameTaken(GameError):
    code = "nickname_taken"
    status_code = status.HTTP_409_CONFLICT


class StaleQuestion(GameError):
    code = "stale_question"
    status_code = status.HTTP_409_CONFLICT


class DuplicateAnswer(GameError):
    code = "duplicate_answer"
    status_code = status.HTTP_409_CONFLICT


class InvalidOption(GameError):
    code = "invalid_option"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class GameNotFound(GameError):
    code = "game_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PlayerNotFound(GameError):
    code = "player_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class QuizNotFound(GameError):
    code = "quiz_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class GenerationExhausted(GameError):
    """No free PIN was found within the configured number of attempts."""

    code = "generation_exhausted"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
