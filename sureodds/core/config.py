from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

class Settings(BaseSettings):
    # App Basics
    app_env: str = "dev"
    app_name: str = "SureOdds VIP"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "info"

    # Database
    database_url: str = "sqlite:///./dev.db"
    db_echo: bool = False

    # JWT
    jwt_secret: str = "secret_key"
    jwt_alg: str = "HS256"
    jwt_access_ttl_min: int = 60

    # M-Pesa (Daraja)
    mpesa_environment: Literal["sandbox", "production"] = "sandbox"
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = ""
    mpesa_passkey: str = ""
    mpesa_callback_url: str = ""
    mpesa_account_prefix: str = "SureOdds"
    mpesa_timeout_seconds: float = 20
    mpesa_country_code: str = "254"

    # Plan prices (KES) and access durations
    price_daily: int = 50
    price_weekly: int = 250
    price_monthly: int = 800
    duration_daily_days: int = 1
    duration_weekly_days: int = 7
    duration_monthly_days: int = 30

    # Payment flow
    payment_pending_window_minutes: int = 5
    voucher_ttl_days: int = 7

    # Admin seed (scripts/seed_admin.py)
    admin_email: str = "admin@sureodds.co.ke"
    admin_password: str = ""

    # Tell pydantic to read from .env file
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        extra="ignore",
    )

    @property
    def mpesa_base_url(self) -> str:
        return MPESA_BASE_URLS[self.mpesa_environment]

settings = Settings()
