from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUIZ_FILE = str(Path(__file__).parent / "services" / "default_quiz.json")


class Settings(BaseSettings):
    app_name: str = "QuizRush API"
    log_level: str = "INFO"

    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost",
    ]

    # Storage collaborators. Without a connection string the server keeps
    # games in memory and reads quizzes from the bundled JSON file.
    mongo_connection_string: Optional[str] = None
    mongo_database: str = "quizrush"
    redis_url: Optional[str] = None
    quiz_file: str = DEFAULT_QUIZ_FILE

    pin_length: int = Field(default=6, ge=4, le=6)
    pin_max_attempts: int = Field(default=10, ge=1)
    default_time_limit: float = Field(default=15, gt=0)
    max_nickname_length: int = 24

    event_history_size: int = 256
    heartbeat_interval_sec: float = 25

    # Reclaim policy for abandoned lobbies and games nobody looks at anymore
    waiting_session_ttl_sec: float = 3600
    finished_session_ttl_sec: float = 600
    sweep_interval_sec: float = 60
    timer_retry_interval_sec: float = 1.0

    model_config = SettingsConfigDict(env_file=".env", env_prefix="QUIZRUSH_")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
