"""Configuration management for chatbook."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging_utils import configure_logging

DEFAULT_MODEL = "gpt-4"
DEFAULT_API_BASE = "https://api.openai.com/v1"


class ExecutionConfig(BaseModel):
    """Per-call execution options handed to the controller."""

    model_config = ConfigDict(frozen=True)

    selected_model: str = DEFAULT_MODEL
    auto_save: bool = True
    character_threshold: int = Field(default=1000, ge=0)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHATBOOK_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Configuration
    api_key: str | None = Field(default=None, description="Bearer credential for the completion service")
    api_base: str = Field(default=DEFAULT_API_BASE, description="Completion service base URL")
    request_timeout_seconds: float = Field(default=60.0, gt=0, description="Connect timeout in seconds")

    # Execution Configuration
    selected_model: str = Field(default=DEFAULT_MODEL, description="Model requested for completions")
    available_models: list[str] = Field(
        default_factory=lambda: ["gpt-3.5-turbo", "gpt-4"],
        description="Models offered by host model pickers",
    )
    auto_save: bool = Field(default=True, description="Ask the host to save after success or abort")
    character_threshold: int = Field(default=1000, ge=0, description="Document length advisory threshold")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    def execution_config(self) -> ExecutionConfig:
        return ExecutionConfig(
            selected_model=self.selected_model,
            auto_save=self.auto_save,
            character_threshold=self.character_threshold,
        )


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Args:
        **overrides: Explicit field values that win over the environment

    Returns:
        Settings instance
    """
    settings = Settings(**overrides)  # type: ignore[arg-type]
    configure_logging(level=settings.log_level)
    return settings
