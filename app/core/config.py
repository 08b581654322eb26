from pathlib import Path
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# -------------------------------------------------
# Explicitly load .env (CRITICAL)
# -------------------------------------------------

BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ENVIRONMENT: str = "development"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    LOG_LEVEL: str = "INFO"
    DATABASE_ECHO: bool = False

    # Push provider: "expo" (HTTP gateway) or "fcm" (Firebase Admin SDK)
    PUSH_PROVIDER: str = Field(default="expo", description="expo or fcm")
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: str = ""
    PUSH_BATCH_SIZE: int = Field(default=100, description="Provider limit on messages per request")
    PUSH_BATCH_DELAY_SECONDS: float = 0.1
    PUSH_REQUEST_TIMEOUT_SECONDS: float = 10.0
    PUSH_DEFAULT_TTL_SECONDS: int = 3600

    # Firebase Cloud Messaging. Only used when PUSH_PROVIDER=fcm.
    FIREBASE_CREDENTIALS_PATH: str = Field(default="", description="Path to Firebase service account JSON file")
    FIREBASE_CREDENTIALS_JSON: str = Field(default="", description="Alternatively: raw JSON string of service account (e.g. from env)")

    # Recipient resolution
    RECIPIENT_CACHE_TTL_SECONDS: float = 300.0
    RECIPIENT_FALLBACK_CACHE_TTL_SECONDS: float = 120.0
    RECIPIENT_PRIMARY_TIMEOUT_SECONDS: float = 5.0
    RECIPIENT_FALLBACK_TIMEOUT_SECONDS: float = 3.0

    # Retry queue / circuit breaker
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 16000
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_JITTER: str = Field(default="full", description="none, full, equal or decorrelated")
    CIRCUIT_BREAKER_THRESHOLD: int = 5
    CIRCUIT_BREAKER_RESET_TIMEOUT_MS: int = 30000
    RETRY_QUEUE_INTERVAL_SECONDS: float = 5.0

    # Token maintenance cron (env: CRON_TOKEN_MAINTENANCE_INTERVAL_HOURS, TOKEN_MAX_AGE_DAYS)
    CRON_ENABLED: bool = True
    CRON_SECRET: str = Field(default="", validation_alias=AliasChoices("CRON_SECRET", "MAINTENANCE_CRON_SECRET"))
    CRON_TOKEN_MAINTENANCE_INTERVAL_HOURS: float = Field(default=24.0, description="Cron run interval in hours")
    TOKEN_MAX_AGE_DAYS: int = Field(default=30, description="Deactivate tokens unused for this many days")
    TOKEN_DELETE_AFTER_DAYS: int = Field(default=90, description="Delete inactive tokens untouched for this many days")
    MAINTENANCE_HISTORY_SIZE: int = 50

    # POST /push-token rate limit (slowapi, per client IP)
    PUSH_TOKEN_RATE_LIMIT_REQUESTS: int = 10
    PUSH_TOKEN_RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_STORAGE_URI: str = Field(default="memory://", description="slowapi storage, e.g. redis://redis:6379")

    # Activity log sink (fire-and-forget). Leave empty to disable.
    ACTIVITY_LOG_URL: str = ""

    class Config:
        extra = "ignore"
        env_file = str(ENV_PATH)
        env_file_encoding = "utf-8"


settings = Settings()
