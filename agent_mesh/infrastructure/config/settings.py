"""Environment-bound configuration objects.

Every group loads from environment variables (and a local ``.env``) under its
own prefix, e.g. ``MESH_CONTEXT_MAX_CONTEXT_TOKENS=8192``.

Example:
    from agent_mesh.infrastructure.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    settings.context.max_context_tokens
"""

from __future__ import annotations

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


def _group_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class RetrievalSettings(BaseSettings):
    """Hybrid store defaults (search fusion and chunking)."""

    default_limit: int = 10
    semantic_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    chunk_size: int = 500
    chunk_overlap: int = 50

    model_config = _group_config("MESH_RETRIEVAL_")


class ContextSettings(BaseSettings):
    """Conversation budget and eviction policy."""

    max_context_tokens: int = 4096
    eviction_threshold: float = 0.8
    target_after_eviction: float = 0.5
    slices_in_context: int = 3
    max_local_slices: int = 10

    model_config = _group_config("MESH_CONTEXT_")


class ExecutorSettings(BaseSettings):
    """Tool execution retry policy. Durations are in seconds."""

    max_retries: int = 3
    timeout: float = 30.0
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    history_size: int = 100

    model_config = _group_config("MESH_EXECUTOR_")


class GeneratorSettings(BaseSettings):
    max_tokens: int = 2048

    model_config = _group_config("MESH_GENERATOR_")


class SchedulerSettings(BaseSettings):
    """Mesh run controls."""

    review_output: bool = True
    reflection_min_tasks: int = 3
    recursion_limit: int = 200

    model_config = _group_config("MESH_SCHEDULER_")


class LoggingSettings(BaseSettings):
    level: str = Field(default="INFO", validation_alias=AliasChoices("MESH_LOG_LEVEL", "LOG_LEVEL"))
    format: str = Field(default="console", validation_alias=AliasChoices("MESH_LOG_FORMAT", "LOG_FORMAT"))
    service_name: str = Field(default="agent-mesh", validation_alias=AliasChoices("MESH_SERVICE_NAME", "SERVICE_NAME"))

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


class Settings(BaseSettings):
    """Root settings.

    Groups:
    - retrieval: hybrid store search and chunking defaults
    - context: token budget and eviction thresholds
    - executor: tool retry policy
    - generator: text generator call limits
    - scheduler: mesh pipeline controls
    - logging: structlog setup
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
