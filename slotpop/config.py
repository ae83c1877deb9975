from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./slotpop.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # slot allocation
    DEFAULT_SLOT_STRATEGY: str = "earliest"
    SLOT_RESERVE_ATTEMPTS: int = 3
    DELIVERY_TIMEZONE: str = "UTC"

    # side effects
    SIDE_EFFECTS_MODE: str = "inline"   # inline|celery
    CELERY_TASK_ALWAYS_EAGER: bool = False
    ADMIN_USER_ID: int = 1
    NOTIFY_REDIS_CHANNEL: str | None = None

    RISK_SCAN_WINDOW_HOURS: int = 24

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
