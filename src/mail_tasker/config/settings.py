"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class MailTaskerSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MAIL_TASKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth client (used to link accounts and to refresh access tokens)
    client_secrets_path: Path = Path("credentials/client_secret.json")
    client_id: str = ""
    client_secret: str = ""
    token_uri: str = "https://oauth2.googleapis.com/token"

    # Database
    database_path: Path = Path("data/mail_tasker.db")

    # Gmail API settings
    fetch_window: int = 50
    inbox_query: str = "label:INBOX -label:archive -label:trash -label:spam"
    max_results_per_page: int = 100
    inter_page_delay_seconds: float = 0.2
    fanout_workers: int = 4

    # Rate limiting
    max_rate_limit_retries: int = 1
    default_retry_after_seconds: float = 5.0
    max_retry_after_seconds: float = 30.0

    # Ollama
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama2"
    ollama_timeout_seconds: float = 120.0
    ollama_temperature: float = 0.1
    ollama_top_p: float = 0.9

    # Extraction
    batch_size: int = 5
    context_tokens: int = 4096
    max_message_chars: int = 4000

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create data and credential directories if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.client_secrets_path.parent.mkdir(parents=True, exist_ok=True)
