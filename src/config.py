"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Scheduler configuration. All values come from environment variables."""

    # WhatsApp Cloud API
    whatsapp_phone_number_id: str = Field(default="")
    whatsapp_token: str = Field(default="")
    graph_version: str = Field(default="v22.0")
    default_recipient: str = Field(default="")
    whatsapp_template_name: str = Field(default="hello_world")
    whatsapp_template_language: str = Field(default="en_US")

    # Scheduler
    scheduler_timezone: str = Field(default="Asia/Kolkata")

    # Job store: "json" (whole-file rewrite) or "sqlite"
    job_store_backend: str = Field(default="json")
    jobs_file_path: Path = Field(default=Path("data/scheduled-jobs.json"))
    database_path: Path = Field(default=Path("data/scheduler.db"))

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def messages_url(self) -> str:
        """Graph API endpoint for sending messages from the configured number."""
        return (
            f"https://graph.facebook.com/{self.graph_version}"
            f"/{self.whatsapp_phone_number_id}/messages"
        )

    def missing_required(self) -> list[str]:
        """Return the names of required variables that are not set."""
        missing = []
        if not self.whatsapp_phone_number_id:
            missing.append("WHATSAPP_PHONE_NUMBER_ID")
        if not self.whatsapp_token:
            missing.append("WHATSAPP_TOKEN")
        return missing


settings = Settings()
