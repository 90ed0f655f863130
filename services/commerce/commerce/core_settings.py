from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "fogleaf"
    POSTGRES_USER: str = "fogleaf"
    POSTGRES_PASSWORD: str = "fogleaf"
    # Full URL override, e.g. sqlite:///./dev.db
    DATABASE_URL: Optional[str] = None

    ENVIRONMENT: str = "development"
    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    RUN_MIGRATIONS: bool = False

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Order numbers: PREFIX + YYYY + MM + sequence
    ORDER_NUMBER_PREFIX: str = "FOG"
    ORDER_NUMBER_TIMEZONE: str = "Asia/Kolkata"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 3
    ORDER_TRANSACTION_TIMEOUT_MS: int = 5000

    DEFAULT_COUNTRY: str = "India"
    DEFAULT_PHONE_COUNTRY_CODE: str = "+91"
    STORE_NAME: str = "Fog & Leaf"

    LOW_STOCK_THRESHOLD: int = 20
    CRITICAL_STOCK_THRESHOLD: int = 5

    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    SMTP_USE_TLS: bool = True

    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None
    TWILIO_API_BASE: str = "https://api.twilio.com/2010-04-01"
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    class Config:
        env_file = ".env"
        extra = "ignore"

@lru_cache
def get_settings() -> Settings:
    return Settings()
