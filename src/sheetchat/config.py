"""
SheetChat Configuration Module.

Handles all application settings and environment configuration.
Uses pydantic-settings for validation and type safety.

Architecture: Gemini Developer API (API key) for the chat model.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini API configuration."""

    model_config = SettingsConfigDict(env_prefix="GEMINI_")

    api_key: str = Field(default="", description="Gemini API Key")
    model: str = Field(default="gemini-2.5-flash", description="Model used for chat turns")
    temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=8192, ge=1)


class OrchestratorSettings(BaseSettings):
    """Tool-calling loop limits."""

    model_config = SettingsConfigDict(env_prefix="ORCHESTRATOR_")

    max_iterations: int = Field(
        default=10,
        ge=1,
        description="Maximum model submissions per turn before the turn fails",
    )
    max_files_per_turn: int = Field(default=9, ge=1, description="Maximum attached files per chat request")
    tool_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for a single query operation")
    surface_tool_results: bool = Field(
        default=True,
        description="If true, tool results are streamed to the client as tool_result events",
    )


class QuerySettings(BaseSettings):
    """Query engine payload bounds."""

    model_config = SettingsConfigDict(env_prefix="QUERY_")

    default_rows: int = Field(default=5, ge=0, description="Default n for head/tail")
    max_rows: int = Field(default=100, ge=1, description="Hard cap on rows returned by any operation")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = False
    app_log_level: str = "INFO"

    # Nested settings
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
