from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "ArticleFlow Billing"
    API_V1_STR: str = "/api/v1"
    DATABASE_URL: str
    DATABASE_POOL_TIMEOUT: int = 10  # seconds to wait for a pooled connection
    DATABASE_STATEMENT_TIMEOUT_MS: int = 5000  # PostgreSQL only
    FRONTEND_URL: str = "http://localhost:3000"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_VERSION: Optional[str] = None
    STRIPE_TIMEOUT_SECONDS: int = 10
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Billing behaviour
    CHECKOUT_TRIAL_DAYS: int = 7
    FREE_PLAN_ID: str = "free"
    CATALOG_SYNC_INTERVAL_MINUTES: int = 0  # 0 disables the in-process scheduler

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'

settings = Settings()
