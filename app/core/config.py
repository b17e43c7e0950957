import os
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global configuration for environment variables."""

    APP_NAME: str = "Room Chat Relay"
    ENV: str = os.getenv("ENV", "development")

    # Server config
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8080))

    # History store: "postgres" or "memory"
    HISTORY_BACKEND: str = os.getenv("HISTORY_BACKEND", "postgres")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "room_chat")

    # Ephemeral typing store
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_PASSWORD: str | None = os.getenv("REDIS_PASSWORD") or None
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() == "true"

    # API Keys
    GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
    GEMINI_FREE_ENDPOINT: str | None = os.getenv("GEMINI_FREE_ENDPOINT")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    GROQ_API_KEY: str | None = os.getenv("GROQ_API_KEY")
    GROQ_BASE_URL: str | None = os.getenv("GROQ_BASE_URL")
    GROQ_MODEL: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")

    # AI orchestration
    AI_PROVIDERS: str = os.getenv("AI_PROVIDERS", "gemini,groq")  # tried in order
    AI_TEMPERATURE: float = float(os.getenv("AI_TEMPERATURE", "0.7"))
    AI_MAX_TOKENS: int = int(os.getenv("AI_MAX_TOKENS", "500"))
    AI_CONTEXT_MESSAGES: int = int(os.getenv("AI_CONTEXT_MESSAGES", "10"))
    REQUEST_TIMEOUT_MS: int = int(os.getenv("REQUEST_TIMEOUT_MS", "15000"))

    # Typing indicator
    TYPING_DEBOUNCE_MS: int = int(os.getenv("TYPING_DEBOUNCE_MS", "2000"))

    # Auth
    AUTH_ENABLED: bool = os.getenv("AUTH_ENABLED", "false").lower() in ("1", "true")
    JWT_SUPER_SECRET: str = os.getenv("JWT_SUPER_SECRET", "dev-secret")

    # Debug / logging
    DEBUG: bool = os.getenv("DEBUG", "True").lower() in ("1", "true")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @property
    def provider_order(self) -> List[str]:
        return [name.strip().lower() for name in self.AI_PROVIDERS.split(",") if name.strip()]


settings = Settings()
