from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["https://spicestore.in"]

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "spicestore"

    # JWT (tokens are issued by the auth service, we only verify them)
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Coupons
    CURRENCY:                  str = "INR"
    CURRENCY_SYMBOL:           str = "₹"
    COUPON_REDEEM_MAX_RETRIES: int = 3      # compare-and-swap attempts on usage_count
    ADMIN_PAGE_SIZE:           int = 20
    ACTIVE_COUPONS_LIMIT:      int = 100

    # Rate limiting (slowapi)
    RATE_LIMIT_ENABLED: bool = True
    DEFAULT_RATE_LIMIT: str = "120/minute"

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # backend/ first, then the repo root
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
