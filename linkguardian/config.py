from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str
    REDIS_URL: Optional[str] = None
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    APP_NAME: str = "LinkGuardian"
    APP_URL: str = "http://localhost:3000"
    DEFAULT_SHORT_DOMAIN: str = "http://localhost:8000"

    # Health monitoring (seconds unless noted)
    HEALTH_CHECK_ENABLED: bool = True
    HEALTH_CHECK_INTERVAL: int = 300
    HEALTH_CHECK_TIMEOUT: float = 10.0
    HEALTH_CHECK_BATCH_SIZE: int = 100
    HEALTH_CHECK_SLOW_THRESHOLD_MS: int = 5000
    HEALTH_CHECK_MAX_REDIRECTS: int = 5
    HEALTH_CHECK_ON_CREATE: bool = True

    # Notification channels
    RESEND_API_KEY: str = ""
    SUPPORT_EMAIL: str = "noreply@linkguardian.com"
    SLACK_WEBHOOK_URL: str = ""
    NOTIFICATION_TIMEOUT: float = 5.0

    GEOIP_CITY_DB: str = "misc/GeoLite2-City.mmdb"

    API_RATE_LIMIT: int = 1000
    API_RATE_WINDOW: int = 3600
    REDIRECT_RATE_LIMIT: int = 100
    REDIRECT_RATE_WINDOW: int = 60

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


# Maximum links per user, by plan (None = unlimited)
PLAN_LINK_LIMITS = {
    "FREE": 10,
    "STARTER": 100,
    "PRO": 1000,
    "ENTERPRISE": None,
}
