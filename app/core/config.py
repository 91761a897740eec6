from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "topic-status-updates"

    ADMIN_JWT_SECRET: str = "change_me_admin"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    DATABASE_URL: str
    REDIS_URL: str

    SYSTEM_USER_ID: int = -1
    SYSTEM_USERNAME: str = "system"
    TOP_TRUST_LEVEL: int = 4

    STATUS_UPDATE_SWEEP_SECONDS: float = 60.0
    # False keeps the historical behaviour: a past execute_at is stored and flagged.
    STATUS_UPDATE_REJECT_PAST: bool = False
    # True re-reads the topic's last reply before firing a based_on_last_post update.
    STATUS_UPDATE_LIVE_LAST_POST: bool = False

    EVENT_PUBLISHER: str = "redis"  # redis | memory
    EVENT_CHANNEL_PREFIX: str = ""
    CELERY_TIMEZONE: str = "UTC"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
