from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")

    # grace window added to the event end time for the stored record expiry
    checkin_grace_hours: int = Field(default=2, alias="CHECKIN_GRACE_HOURS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("checkins.recorded", alias="NATS_SUBJECT_CHECKIN")
    use_nats_events: bool = Field(default=True, alias="USE_NATS_EVENTS")
    nats_connect_timeout: float = Field(default=2.0, alias="NATS_CONNECT_TIMEOUT")
    nats_max_reconnect_attempts: int = Field(default=5, alias="NATS_MAX_RECONNECT_ATTEMPTS")
    nats_publish_timeout: float = Field(default=1.0, alias="NATS_PUBLISH_TIMEOUT")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def nats_server_list(self) -> list[str]:
        return [u.strip() for u in self.nats_urls.split(",") if u.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
