"""
Time helpers.

All ledger timestamps live in one reference timezone (the group's
"business day" zone). They are stored in the sheet as naive
"YYYY-MM-DD HH:MM:SS" strings and read back as aware datetimes.
"""

from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def now_in(zone: ZoneInfo) -> datetime:
    """Current time in the reference timezone."""
    return datetime.now(zone)


def format_timestamp(value: datetime, zone: ZoneInfo) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.astimezone(zone).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str, zone: ZoneInfo) -> Optional[datetime]:
    """
    Parse a sheet timestamp.

    Accepts the canonical format plus the slash-separated variant that
    Sheets produces when a cell is re-typed by hand. Returns None for
    blank or unreadable cells.
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip().replace("/", "-")
    for fmt in (TIMESTAMP_FORMAT, "%Y-%m-%d %H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=zone)
        except ValueError:
            continue
    return None


def cutoff_instant(day: date, hour: int, zone: ZoneInfo) -> datetime:
    """The cutoff moment of a given day (hour:00:00 local)."""
    return datetime.combine(day, time(hour=hour), tzinfo=zone)
