from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Telegram
    telegram_bot_token: str = ""
    telegram_webhook_secret: str = ""  # Optional: for webhook verification

    # Google Sheets (ledger store)
    google_sheets_id: str = ""
    google_sheets_credentials: str = ""  # Service account JSON, inline

    # Supabase (shared update de-duplication)
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Accounting
    timezone: str = "Asia/Bangkok"  # Reference timezone for cutoff and daily settlement
    bot_title: str = "TOM记账机器人"
    dedup_ttl_seconds: int = 3600

    # Live USD->THB rate for groups in realtime-rate mode
    exchange_rate_api_url: str = "https://api.exchangerate-api.com/v4/latest/USD"
    exchange_rate_cache_seconds: int = 300

    # Scheduled jobs (called by an external cron)
    cron_secret: str = ""

    # Environment
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
