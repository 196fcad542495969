from datetime import timedelta

import pytest
from pydantic import ValidationError

from dompet.config import Settings


def test_defaults_describe_otp_policy():
    settings = Settings()
    assert settings.otp_ttl == timedelta(minutes=5)
    assert settings.otp_window == timedelta(minutes=15)
    assert settings.session_duration == timedelta(hours=5)
    assert settings.reference_timezone == "Asia/Jakarta"


def test_allowed_identity_is_normalised():
    settings = Settings(TELEGRAM_ALLOWED_USER=" @Owner ", TELEGRAM_ALLOWED_CHAT_ID=42)
    assert settings.telegram_allowed_user == "Owner"
    assert settings.telegram_allowed_chat_id == "42"


def test_origins_accept_comma_separated_text():
    settings = Settings(allow_origins="http://a.test, http://b.test,")
    assert settings.allow_origins == ["http://a.test", "http://b.test"]


def test_unknown_timezone_is_rejected():
    with pytest.raises(ValidationError):
        Settings(reference_timezone="Mars/Olympus")


def test_webhook_endpoint_is_built_from_base_url():
    assert Settings().webhook_endpoint is None
    settings = Settings(TELEGRAM_WEBHOOK_URL="https://dompet.example/")
    assert settings.webhook_endpoint == "https://dompet.example/api/telegram/webhook"


def test_webhook_secret_uses_telegram_alphabet():
    assert Settings(TELEGRAM_WEBHOOK_SECRET="s3cret_token-1").telegram_webhook_secret == "s3cret_token-1"
    with pytest.raises(ValidationError):
        Settings(TELEGRAM_WEBHOOK_SECRET="not allowed!")
