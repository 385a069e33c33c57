"""
Settings for the database chat backend.

Every field can be set from the environment or a ``.env``
file, e.g. ``AGENT_TIMEOUT_SECONDS=60``.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///./dbchat.db"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    log_level: str = "INFO"

    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    title_model: str = "gpt-4o-mini"

    # Streaming turn limits
    agent_timeout_seconds: float = 120.0
    agent_max_turns: int = 100

    # Prompt context window
    context_window_size: int = 10
    max_context_chars: int = 4000

    # Tool results kept on persisted assistant messages
    tool_result_max_chars: int = 2000

    @property
    def cors_origins_list(self) -> List[str]:
        """Comma-separated ``cors_origins`` as a list, blanks dropped."""
        return [
            origin.strip()
            for origin in self.cors_origins.split(",")
            if origin.strip()
        ]


settings = Settings()
