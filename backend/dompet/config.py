from datetime import timedelta
from functools import lru_cache
import json
import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_CANDIDATES = (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path(__file__).resolve().parent.parent / ".env",
    Path.cwd() / ".env",
)

for env_path in _ENV_CANDIDATES:
    if env_path.is_file():
        load_dotenv(env_path, override=False)
        break


class Settings(BaseSettings):
    """Runtime configuration for the bot, the web API and the OTP policy.

    Everything comes from the environment (optionally a ``.env`` file found
    next to the project). The Telegram and OpenAI values keep their historical
    upper-case variable names through aliases.
    """

    database_url: str = "sqlite:///./dompet.db"

    # Web API
    api_prefix: str = "/api"
    allow_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:8787"])
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    web_base_url: str | None = Field(default=None, alias="WEB_BASE_URL")

    # Chat
    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_webhook_url: str | None = Field(default=None, alias="TELEGRAM_WEBHOOK_URL")
    telegram_webhook_secret: str | None = Field(
        default=None, alias="TELEGRAM_WEBHOOK_SECRET", pattern=r"^[A-Za-z0-9_-]{1,256}$"
    )
    telegram_allowed_user: str | None = Field(default=None, alias="TELEGRAM_ALLOWED_USER")
    telegram_allowed_chat_id: str | None = Field(default=None, alias="TELEGRAM_ALLOWED_CHAT_ID")
    transport_timeout_seconds: float = Field(default=10.0, gt=0)

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    ai_model: str = "gpt-4o-mini"

    # OTP and sessions; day boundaries follow reference_timezone.
    reference_timezone: str = "Asia/Jakarta"
    otp_ttl_minutes: int = Field(default=5, gt=0)
    otp_max_attempts: int = Field(default=3, gt=0)
    otp_window_minutes: int = Field(default=15, gt=0)
    otp_window_limit: int = Field(default=3, gt=0)
    otp_daily_limit: int = Field(default=10, gt=0)
    session_hours: int = Field(default=5, gt=0)

    model_config = SettingsConfigDict(env_file=None, populate_by_name=True)

    @field_validator("allow_origins", mode="before")
    @classmethod
    def split_origins(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        stripped = value.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return [item.strip() for item in stripped.split(",") if item.strip()]

    @field_validator("telegram_allowed_chat_id", mode="before")
    @classmethod
    def chat_id_as_text(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("telegram_allowed_user")
    @classmethod
    def bare_username(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lstrip("@") or None

    @field_validator("reference_timezone")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {value!r}.") from exc
        return value

    @model_validator(mode="after")
    def legacy_token_name(self) -> "Settings":
        # Older deployments export the bot token as TELEGRAM_BOT.
        if not self.telegram_bot_token:
            self.telegram_bot_token = os.getenv("TELEGRAM_BOT")
        return self

    @property
    def otp_ttl(self) -> timedelta:
        return timedelta(minutes=self.otp_ttl_minutes)

    @property
    def otp_window(self) -> timedelta:
        return timedelta(minutes=self.otp_window_minutes)

    @property
    def session_duration(self) -> timedelta:
        return timedelta(hours=self.session_hours)

    @property
    def webhook_endpoint(self) -> str | None:
        """Full URL Telegram should post updates to, when a webhook base is set."""
        if not self.telegram_webhook_url:
            return None
        return f"{self.telegram_webhook_url.rstrip('/')}{self.api_prefix}/telegram/webhook"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""
    return Settings()
