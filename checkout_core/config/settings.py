from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./checkout_core.db"
    DB_ECHO: bool = False
    JWT_SECRET: str = "change-me"
    JWT_ALGO: str = "HS256"

    RESERVATION_TTL_MINUTES: int = 15
    # below one cent; any one-cent difference is a mismatch
    AMOUNT_EPSILON: Decimal = Decimal("0.005")
    CURRENCY: str = "ARS"
    DEFAULT_COMPANY_ID: Optional[str] = None

    PAYMENT_PROVIDER_NAME: str = "mercadopago"
    PAYMENT_PROVIDER_URL: str = "https://api.mercadopago.com"
    PAYMENT_ACCESS_TOKEN: str = ""
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None
    PAYMENT_WEBHOOK_PATH: str = "/api/v1/webhooks/payments"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    PROVIDER_MAX_RETRIES: int = 3

    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: float = 300.0
    RETENTION_DAYS: int = 7
    RETENTION_EVERY_N_SWEEPS: int = 288
    CRON_AUTH_TOKEN: Optional[str] = None

    SHIPPING_STANDARD_COST: Decimal = Decimal("10000")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("120000")

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
