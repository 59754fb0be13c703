from supabase import create_client, Client

from ledger_bot.config import get_settings
from ledger_bot.errors import ConfigurationError


def supabase_configured() -> bool:
    settings = get_settings()
    return bool(settings.supabase_url and settings.supabase_service_role_key)


def get_supabase_admin() -> Client:
    """Service role client, used server-side for the shared dedup table."""
    settings = get_settings()
    if not supabase_configured():
        raise ConfigurationError("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set")
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key
    )
