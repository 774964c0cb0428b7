from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # Attendance QR tokens. The secret is process-wide and never rotated at runtime.
    qr_signing_secret: str | None = Field(default=None, alias="QR_SIGNING_SECRET")
    qr_token_ttl_seconds: int = Field(default=60, alias="QR_TOKEN_TTL_SECONDS")
    qr_signature_length: int = Field(default=16, alias="QR_SIGNATURE_LENGTH")
    qr_refresh_seconds: int = Field(default=60, alias="QR_REFRESH_SECONDS")

    default_duration_minutes: int = Field(default=60, alias="DEFAULT_DURATION_MINUTES")
    arrival_disclosure_threshold: int = Field(default=3, alias="ARRIVAL_DISCLOSURE_THRESHOLD")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=30, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_notification: str = Field("nooks.notifications", alias="NATS_SUBJECT_NOTIFICATION")
    nats_subject_attendance: str = Field("attendance.recorded", alias="NATS_SUBJECT_ATTENDANCE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def cors_origins_list(self) -> list[str]:
        return [s.strip() for s in self.cors_origins.split(",") if s.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
