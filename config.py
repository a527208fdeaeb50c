"""Smart Minutes configuration via pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MINUTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # FastAPI server
    api_host: str = "127.0.0.1"
    api_port: int = 8766
    log_level: str = "INFO"

    # LLM analysis (title, summary, action items, speakers)
    llm_provider: Literal["disabled", "openai", "claude", "openrouter"] = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-haiku-4-5-20251001"
    openrouter_api_key: str = ""
    openrouter_model: str = "google/gemma-3-27b-it:free"
    llm_timeout_secs: float = 60.0

    # Speech-to-text (OpenAI Whisper API, shares openai_api_key)
    transcription_model: str = "whisper-1"
    transcription_timeout_secs: float = 120.0
    max_upload_bytes: int = 50 * 1024 * 1024

    # Outbound mail
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_timeout_secs: float = 30.0
    mail_sender_name: str = "Smart Minutes"

    # Storage
    db_path: Path = Path.home() / "Documents" / "SmartMinutes" / "minutes.db"
    demo_user_id: int = 1
    seed_demo_data: bool = False


settings = Settings()
