"""Configuration for the pipeline FastAPI service."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    # Remote deal store (optional: in-memory when unset)
    DATABASE_URL: str | None = None

    # OpenAI (optional: template insights when unset)
    OPENAI_API_KEY: str | None = None
    OPENAI_CHAT_MODEL: str = "gpt-4.1-mini"

    # Auth
    PIPELINE_API_KEY: str

    # Logging
    LOG_JSON: bool = True
    DEAL_PIPELINE_LOG_LEVEL: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
