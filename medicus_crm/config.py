"""Configuration settings for the Medicus CRM server."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_service_role_key: str | None = None
    # Legacy name, used when no service-role key is set
    supabase_key: str | None = None

    # HTTP transport
    mcp_token: str | None = None  # ?token= guard, disabled when unset
    http_host: str = "127.0.0.1"
    http_port: int = 3000
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://claude.ai",
    ]

    # Note defaults
    default_note_author: str = "Claude via MCP"
    created_by_fallback: str = "mcp"

    log_level: str = "WARNING"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
