from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "qrguard-api"
    env: str = "dev"
    log_level: str = "INFO"

    # Data
    database_url: str = "sqlite:///./qrguard.db"

    # CORS (admin panel)
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173"

    # Public URL of this API; used for the Exotel say-callback and QR stickers.
    public_base_url: str = "http://localhost:8000"

    # Quota policy. A "quota day" starts at reset_hour:reset_minute in quota_timezone.
    quota_timezone: str = "Asia/Kolkata"
    quota_reset_hour: int = 0
    quota_reset_minute: int = 0
    default_call_limit: int = 1
    quota_scheduler_enabled: bool = True

    # Alert delivery
    alert_channel: Literal["voice", "sms"] = "voice"
    # If true, alerts are logged instead of being sent to a vendor.
    alert_dev_mode: bool = False
    alert_message: str = (
        "यह आपके वाहन के बारे में एक तात्कालिक और महत्वपूर्ण चेतावनी है। "
        "कृपया तुरंत अपने वाहन की जाँच करें। आपके वाहन के साथ कोई गंभीर समस्या हो सकती है। "
        "कृपया इसे नजरअंदाज न करें। धन्यवाद।"
    )
    dispatch_timeout_seconds: float = 10.0

    # Exotel (voice)
    exotel_sid: str | None = None
    exotel_api_key: str | None = None
    exotel_api_token: str | None = None
    exotel_from_number: str | None = None
    exotel_caller_id: str | None = None
    exotel_subdomain: str = "api.exotel.com"

    # MSG91 (SMS via Flow). The flow must accept the message under msg91_alert_var.
    msg91_api_key: str | None = None
    msg91_sender_id: str | None = None
    msg91_alert_flow_id: str | None = None
    msg91_alert_var: str = "MESSAGE"

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, v: str) -> str:
        # Some providers (incl. Render) emit `postgres://...` which SQLAlchemy rejects.
        if isinstance(v, str) and v.startswith("postgres://"):
            return "postgresql+psycopg://" + v[len("postgres://") :]
        if isinstance(v, str) and v.startswith("postgresql://"):
            return "postgresql+psycopg://" + v[len("postgresql://") :]
        return v

    @field_validator("quota_reset_hour")
    @classmethod
    def _check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("quota_reset_hour must be between 0 and 23")
        return v

    @field_validator("quota_reset_minute")
    @classmethod
    def _check_minute(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError("quota_reset_minute must be between 0 and 59")
        return v

    @field_validator("default_call_limit")
    @classmethod
    def _check_call_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("default_call_limit must be positive")
        return v


settings = Settings()
