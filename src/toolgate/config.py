"""Configuration settings for the application."""

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Loaded from environment variables or a .env file if not provided
    DEBUG: bool = False
    LOG_LEVEL: str = "warning"  # Options: debug, info, warning, error, critical

    # Chat backend
    BACKEND: str = "gemini"  # Options: gemini, anthropic, openai, ollama
    MODEL: str | None = None  # Backend default when unset
    GEMINI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    OLLAMA_ENDPOINT: str = "http://localhost:11434"
    THINKING_BUDGET: int = 1024
    MAX_OUTPUT_TOKENS: int = 4096
    REQUEST_TIMEOUT: float = 60.0

    # Turn loop and tools
    MAX_ROUNDS: int = 10
    MAX_TOOL_WORKERS: int = 4
    TARGET_DIR: str = "."
    SHELL_TIMEOUT: float = 60.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
