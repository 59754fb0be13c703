import json

import gspread

from ledger_bot.config import get_settings
from ledger_bot.errors import ConfigurationError

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def get_sheets_client() -> gspread.Client:
    """Service account client built from the inline credentials JSON."""
    settings = get_settings()
    if not settings.google_sheets_credentials:
        raise ConfigurationError("GOOGLE_SHEETS_CREDENTIALS is not set")

    try:
        credentials = json.loads(settings.google_sheets_credentials)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"GOOGLE_SHEETS_CREDENTIALS is not valid JSON: {e}") from e

    return gspread.service_account_from_dict(credentials, scopes=SCOPES)


def get_spreadsheet() -> gspread.Spreadsheet:
    """The ledger spreadsheet (GOOGLE_SHEETS_ID)."""
    settings = get_settings()
    if not settings.google_sheets_id:
        raise ConfigurationError("GOOGLE_SHEETS_ID is not set")
    return get_sheets_client().open_by_key(settings.google_sheets_id)
