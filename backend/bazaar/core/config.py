"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Agent Bazaar"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/bazaar.db"

    # LLM Provider Selection (drives message generation and match scoring)
    LLM_PROVIDER: Literal["lm_studio", "openrouter"] = "lm_studio"

    # LM Studio Configuration
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_DEFAULT_MODEL: str = "qwen/qwen3-1.7b"
    LM_STUDIO_TIMEOUT: int = 30  # seconds

    # LLM Request Configuration
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 2  # seconds, base for exponential backoff
    LLM_DEFAULT_TEMPERATURE: float = 0.7
    LLM_SCORING_TEMPERATURE: float = 0.1
    LLM_DEFAULT_MAX_TOKENS: int = 512

    # OpenRouter Configuration
    LLM_ENABLE_OPENROUTER: bool = False
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_DEFAULT_MODEL: str = "google/gemini-2.5-flash-lite"
    OPENROUTER_TIMEOUT: int = 60

    # A2A message protocol
    A2A_TIMEOUT_SECONDS: float = 30.0
    A2A_PROTOCOL_VERSION: str = "2.0"
    AGENT_ENDPOINT_TEMPLATE: str = "http://127.0.0.1:3000/agents/{agent_id}/a2a/"

    # Negotiation Configuration
    MAX_NEGOTIATION_ROUNDS: int = 20
    MATCH_SCORE_FLOOR: int = 50
    SELLER_PRICE_TOLERANCE: float = 0.9  # seller accepts down to 90% of expected price
    CURRENCY_UNIT: str = "HBAR"
    MAX_WORDS_PER_MESSAGE: int = 80
    HISTORY_MAX_MESSAGES: int = 10
    HISTORY_MAX_CHARS: int = 4000

    # Long-poll of search progress
    POLL_MAX_WAIT_SECONDS: float = 25.0
    POLL_INTERVAL_SECONDS: float = 0.5
    POLL_BACKOFF_FACTOR: float = 1.5
    POLL_MAX_INTERVAL_SECONDS: float = 5.0

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events
    EVENT_QUEUE_SIZE: int = 256  # per-subscriber buffered events

    class Config:
        # Project root .env first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
