"""
Configuration management for the Deal Pipeline engine.

Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Config:
    """Configuration settings loaded from environment."""

    # OpenAI (insight generation)
    OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
    OPENAI_CHAT_MODEL: str = os.getenv('OPENAI_CHAT_MODEL', 'gpt-4.1-mini')
    INSIGHT_MAX_TOKENS: int = int(os.getenv('INSIGHT_MAX_TOKENS', '800'))

    # Remote deal store (Postgres / Supabase)
    DATABASE_URL: str = os.getenv('DATABASE_URL', '')

    # Optimistic move persistence
    PERSIST_MAX_ATTEMPTS: int = int(os.getenv('PERSIST_MAX_ATTEMPTS', '3'))
    PERSIST_BACKOFF_MIN: float = float(os.getenv('PERSIST_BACKOFF_MIN', '0.5'))
    PERSIST_BACKOFF_MAX: float = float(os.getenv('PERSIST_BACKOFF_MAX', '8.0'))

    # Record normalization defaults
    UNKNOWN_CONTACT_ID: str = os.getenv('UNKNOWN_CONTACT_ID', 'unknown')
    DEFAULT_CURRENCY: str = os.getenv('DEFAULT_CURRENCY', 'USD')

    LOG_LEVEL: str = os.getenv('DEAL_PIPELINE_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that required configuration is present.

        The engine runs without either key (in-memory gateway, template
        insights), so this only reports what a production deployment needs.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not cls.OPENAI_API_KEY:
            missing.append('OPENAI_API_KEY')
        if not cls.DATABASE_URL:
            missing.append('DATABASE_URL')
        return missing


# Singleton config instance
config = Config()
