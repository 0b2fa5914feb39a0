"""
Scheduler configuration.

Scheduling knobs (retention, queue quotas, candidate thresholds, optimizer
minimum, retry budgets) and connection settings come from environment
variables or a `.env` file, validated by pydantic-settings. Infrastructure
tuning that rarely changes per deployment (connection pool sizes) lives in
`config/default.yaml`; point RECALL_CONFIG_PATH elsewhere to override it.

Usage:
    from recall.config import settings, yaml_config

    settings.QUEUE_NEW_COUNT
    yaml_config.get("database", {})
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[3] / "config" / "default.yaml"


class Settings(BaseSettings):
    """Environment-driven settings of the scheduling core."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    APP_NAME: str = "Recall Scheduler"
    DEBUG: bool = False

    # Store
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "recall"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "recall"

    @property
    def POSTGRES_URL(self) -> str:
        """asyncpg URL, with the password escaped."""
        return URL.create(
            "postgresql+asyncpg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD or None,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        ).render_as_string(hide_password=False)

    # Job runner
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    CELERY_RESULT_EXPIRES: int = 86400
    JOB_SOFT_TIME_LIMIT: int = 300
    JOB_TIME_LIMIT: int = 600
    OPTIMIZATION_SOFT_TIME_LIMIT: int = 1800
    OPTIMIZATION_TIME_LIMIT: int = 3600
    # Retries on concurrency conflicts, backoff in seconds
    JOB_RETRY_ATTEMPTS: int = 3
    JOB_RETRY_MIN_WAIT: int = 2
    JOB_RETRY_MAX_WAIT: int = 30

    # FSRS memory model
    FSRS_DEFAULT_RETENTION: float = 0.9
    FSRS_MAX_INTERVAL_DAYS: int = 36500
    # Baseline of freshly assigned (NEW) cards
    FSRS_INITIAL_STABILITY: float = 1.0
    FSRS_INITIAL_DIFFICULTY: float = 5.0

    # Review recording
    REVIEW_CONFLICT_MAX_ATTEMPTS: int = 3

    # Practice queues
    QUEUE_NEW_COUNT: int = 10
    QUEUE_MAX_DUE: int = 50
    QUEUE_MIN_DUE: int = 10

    # Candidate selection (e.g. listening practice)
    CANDIDATE_RETRIEVABILITY_THRESHOLD: float = 0.36
    CANDIDATE_CONFIDENT_HORIZON_DAYS: int = 30
    CANDIDATE_LIMIT: int = 20

    # Parameter optimization
    OPTIMIZER_MIN_REVIEWS: int = 50


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Infrastructure config from RECALL_CONFIG_PATH or config/default.yaml; {} if absent."""
    path = Path(os.environ.get("RECALL_CONFIG_PATH", DEFAULT_CONFIG_PATH))
    if not path.is_file():
        return {}
    return yaml.safe_load(path.read_text()) or {}


yaml_config: dict[str, Any] = load_yaml_config()
