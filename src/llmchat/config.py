"""Configuration settings for the application."""

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Loaded from environment variables or a .env file if not provided
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    LLM_PROVIDER: str = "gemini"  # Options: gemini, openai, anthropic, fallback
    LLM_MODEL: str | None = None  # None -> provider default
    SYSTEM_PROMPT: str | None = None
    MAX_OUTPUT_TOKENS: int | None = None
    REQUEST_TIMEOUT: float = 60.0
    DEBUG_HTTP: bool = False  # Append request JSON to provider error messages

    GEMINI_API_KEY: str | None = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/"
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None

    # Conversation memory
    HISTORY_WINDOW: int = 40

    # Tools
    GOOGLE_CALENDAR_ACCESS_TOKEN: str | None = None
    GOOGLE_CALENDAR_ID: str = "primary"


settings = Settings()
