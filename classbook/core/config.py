from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(default="sqlite+aiosqlite:///./classbook.db", alias="DATABASE_URL")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    database_auto_create: bool = Field(default=False, alias="DATABASE_AUTO_CREATE")

    academy_timezone: str = Field(default="Asia/Seoul", alias="ACADEMY_TIMEZONE")
    default_session_capacity: int = Field(default=20, ge=1, alias="DEFAULT_SESSION_CAPACITY")

    booking_retry_attempts: int = Field(default=3, ge=1, alias="BOOKING_RETRY_ATTEMPTS")
    booking_retry_base_delay_ms: int = Field(default=50, ge=0, alias="BOOKING_RETRY_BASE_DELAY_MS")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )

    @property
    def booking_retry_base_delay(self) -> float:
        return self.booking_retry_base_delay_ms / 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
