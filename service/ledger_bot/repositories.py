"""
Spreadsheet-backed stores.

The accounting core only sees three narrow interfaces:

    LedgerStore     append / list / mark (+ amount correction)
    SettingsStore   get / upsert / list_groups
    OperatorStore   add / remove / list / is_active

The gspread implementations below keep one worksheet per concern, with
row 1 as a header:

    Deposits, Withdrawals  [id, timestamp, groupId, userId, username,
                            amount, currency, status, sourceMessageId]
    GroupSettings          [groupId, exchangeRate, incomeFeeRatePct,
                            outgoingFeeRatePct, cutoffHour, allUsersMode,
                            realtimeRateFlag, lastRefreshTimestamp,
                            mutedFlag, language]
    Operators              [groupId, userId, username, addedAt, status]

Values are written RAW so ids and timestamps come back exactly as written.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Protocol
from zoneinfo import ZoneInfo

import gspread

from ledger_bot.errors import TransientIOError, ValidationError
from ledger_bot.models import (
    Currency,
    GroupSettings,
    Language,
    Operator,
    OperatorStatus,
    Record,
    RecordKind,
    RecordStatus,
    default_settings,
)
from ledger_bot.telegram_bot.logging_config import bot_logger as logger
from ledger_bot.utils.clock import format_timestamp, parse_timestamp


# =============================================================================
# INTERFACES
# =============================================================================

class LedgerStore(Protocol):
    def append(self, record: Record) -> None: ...

    def list(
        self,
        group_id: str,
        kind: Optional[RecordKind] = None,
        statuses: Optional[Iterable[RecordStatus]] = None,
    ) -> list[Record]: ...

    def mark(self, records: list[Record], status: RecordStatus) -> int: ...

    def update_amount(self, record: Record, amount: Decimal) -> Record: ...


class SettingsStore(Protocol):
    def get(self, group_id: str) -> GroupSettings: ...

    def has(self, group_id: str) -> bool: ...

    def upsert(self, group_id: str, **changes) -> GroupSettings: ...

    def list_groups(self) -> list[str]: ...


class OperatorStore(Protocol):
    def add(self, operator: Operator) -> Operator: ...

    def remove(self, group_id: str, user_id: str) -> Optional[Operator]: ...

    def remove_all(self, group_id: str) -> int: ...

    def list(self, group_id: str) -> list[Operator]: ...

    def is_active(self, group_id: str, user_id: str) -> bool: ...


# =============================================================================
# ROW MAPPING
# =============================================================================

RECORD_HEADER = ["id", "timestamp", "groupId", "userId", "username", "amount", "currency", "status", "sourceMessageId"]
SETTINGS_HEADER = [
    "groupId", "exchangeRate", "incomeFeeRatePct", "outgoingFeeRatePct", "cutoffHour",
    "allUsersMode", "realtimeRateFlag", "lastRefreshTimestamp", "mutedFlag", "language",
]
OPERATOR_HEADER = ["groupId", "userId", "username", "addedAt", "status"]

WORKSHEETS = {
    RecordKind.DEPOSIT: "Deposits",
    RecordKind.WITHDRAWAL: "Withdrawals",
}
SETTINGS_SHEET = "GroupSettings"
OPERATORS_SHEET = "Operators"

STATUS_COLUMN = "H"
AMOUNT_COLUMN = "F"
OPERATOR_STATUS_COLUMN = "E"

YES = "是"
NO = "否"
LANGUAGE_LABELS = {"中文": Language.ZH, "泰语": Language.TH}


def _cell(row: list[str], index: int) -> str:
    return row[index].strip() if index < len(row) and row[index] is not None else ""


def _decimal(value: str, default: Decimal) -> Decimal:
    try:
        return Decimal(value) if value else default
    except InvalidOperation:
        return default


def _flag(value: bool) -> str:
    return YES if value else NO


def record_to_row(record: Record, zone: ZoneInfo) -> list[str]:
    return [
        record.id,
        format_timestamp(record.timestamp, zone),
        record.group_id,
        record.user_id,
        record.username,
        str(record.amount),
        record.currency.value,
        record.status.value,
        record.source_message_id or "",
    ]


def row_to_record(row: list[str], kind: RecordKind, zone: ZoneInfo) -> Optional[Record]:
    """Map a sheet row to a Record; None for rows that cannot be read."""
    try:
        timestamp = parse_timestamp(_cell(row, 1), zone)
        if timestamp is None:
            return None
        return Record(
            id=_cell(row, 0),
            kind=kind,
            timestamp=timestamp,
            group_id=_cell(row, 2),
            user_id=_cell(row, 3),
            username=_cell(row, 4),
            amount=Decimal(_cell(row, 5)),
            currency=Currency(_cell(row, 6) or Currency.THB.value),
            status=RecordStatus(_cell(row, 7) or RecordStatus.ACTIVE.value),
            source_message_id=_cell(row, 8) or None,
        )
    except (InvalidOperation, ValueError, ValidationError) as e:
        logger.warning(f"Skipping unreadable {kind.value} row {row[:1]}: {e}")
        return None


def settings_to_row(settings: GroupSettings, zone: ZoneInfo) -> list[str]:
    return [
        settings.group_id,
        str(settings.exchange_rate),
        str(settings.income_fee_rate_pct),
        str(settings.outgoing_fee_rate_pct),
        str(settings.cutoff_hour),
        _flag(settings.all_users_mode),
        _flag(settings.realtime_rate),
        format_timestamp(settings.last_refresh, zone) if settings.last_refresh else "",
        _flag(settings.muted),
        settings.language.value,
    ]


def row_to_settings(row: list[str], zone: ZoneInfo) -> GroupSettings:
    """Blank cells fall back to default_settings()."""
    defaults = default_settings(_cell(row, 0))

    cutoff = _cell(row, 4)
    try:
        cutoff_hour = int(cutoff) if cutoff else defaults.cutoff_hour
    except ValueError:
        cutoff_hour = defaults.cutoff_hour

    language_cell = _cell(row, 9)
    language = LANGUAGE_LABELS.get(language_cell)
    if language is None:
        try:
            language = Language(language_cell) if language_cell else defaults.language
        except ValueError:
            language = defaults.language

    return replace(
        defaults,
        exchange_rate=_decimal(_cell(row, 1), defaults.exchange_rate),
        income_fee_rate_pct=_decimal(_cell(row, 2), defaults.income_fee_rate_pct),
        outgoing_fee_rate_pct=_decimal(_cell(row, 3), defaults.outgoing_fee_rate_pct),
        cutoff_hour=cutoff_hour,
        all_users_mode=_cell(row, 5) == YES,
        realtime_rate=_cell(row, 6) == YES,
        last_refresh=parse_timestamp(_cell(row, 7), zone),
        muted=_cell(row, 8) == YES,
        language=language,
    )


def operator_to_row(operator: Operator, zone: ZoneInfo) -> list[str]:
    return [
        operator.group_id,
        operator.user_id,
        operator.username,
        format_timestamp(operator.added_at, zone) if operator.added_at else "",
        operator.status.value,
    ]


def row_to_operator(row: list[str], zone: ZoneInfo) -> Operator:
    status_cell = _cell(row, 4)
    return Operator(
        group_id=_cell(row, 0),
        user_id=_cell(row, 1),
        username=_cell(row, 2),
        added_at=parse_timestamp(_cell(row, 3), zone),
        status=OperatorStatus.ACTIVE if status_cell == OperatorStatus.ACTIVE.value else OperatorStatus.REMOVED,
    )


# =============================================================================
# GSPREAD IMPLEMENTATIONS
# =============================================================================

class _WorksheetStore:
    """Shared worksheet access; wraps gspread failures as TransientIOError."""

    def __init__(self, spreadsheet: gspread.Spreadsheet, zone: ZoneInfo):
        self.spreadsheet = spreadsheet
        self.zone = zone
        self._worksheets: dict[str, gspread.Worksheet] = {}

    def worksheet(self, title: str, header: list[str]) -> gspread.Worksheet:
        if title in self._worksheets:
            return self._worksheets[title]
        try:
            ws = self.spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            logger.info(f"Creating worksheet {title}")
            ws = self.spreadsheet.add_worksheet(title=title, rows=1000, cols=len(header))
            ws.append_row(header, value_input_option="RAW")
        self._worksheets[title] = ws
        return ws

    def rows(self, title: str, header: list[str]) -> list[list[str]]:
        """All data rows (header excluded)."""
        try:
            return self.worksheet(title, header).get_all_values()[1:]
        except gspread.exceptions.APIError as e:
            raise TransientIOError(f"读取 {title} 失败: {e}") from e

    def append_values(self, title: str, header: list[str], row: list[str]) -> None:
        try:
            self.worksheet(title, header).append_row(row, value_input_option="RAW")
        except gspread.exceptions.APIError as e:
            raise TransientIOError(f"写入 {title} 失败: {e}") from e

    def update_cells(self, title: str, header: list[str], updates: list[dict]) -> None:
        if not updates:
            return
        try:
            self.worksheet(title, header).batch_update(updates, value_input_option="RAW")
        except gspread.exceptions.APIError as e:
            raise TransientIOError(f"更新 {title} 失败: {e}") from e


class SheetsLedgerStore(_WorksheetStore):
    """Deposits and Withdrawals worksheets."""

    def append(self, record: Record) -> None:
        self.append_values(WORKSHEETS[record.kind], RECORD_HEADER, record_to_row(record, self.zone))
        logger.info(f"Appended {record.kind.value} {record.id} amount={record.amount} group={record.group_id}")

    def list(
        self,
        group_id: str,
        kind: Optional[RecordKind] = None,
        statuses: Optional[Iterable[RecordStatus]] = None,
    ) -> list[Record]:
        kinds = [kind] if kind else list(RecordKind)
        wanted = set(statuses) if statuses else None
        records = []
        for k in kinds:
            for row in self.rows(WORKSHEETS[k], RECORD_HEADER):
                if _cell(row, 2) != group_id:
                    continue
                record = row_to_record(row, k, self.zone)
                if record is None:
                    continue
                if wanted is not None and record.status not in wanted:
                    continue
                records.append(record)
        return sorted(records, key=lambda r: r.timestamp)

    def _row_numbers(self, kind: RecordKind) -> dict[str, int]:
        """record id -> 1-based sheet row number."""
        ids = [_cell(row, 0) for row in self.rows(WORKSHEETS[kind], RECORD_HEADER)]
        return {record_id: index + 2 for index, record_id in enumerate(ids) if record_id}

    def mark(self, records: list[Record], status: RecordStatus) -> int:
        """Set status on each record (one batch per worksheet). Returns rows updated."""
        updated = 0
        for kind in RecordKind:
            batch = [r.with_status(status) for r in records if r.kind is kind]
            if not batch:
                continue
            row_numbers = self._row_numbers(kind)
            updates = []
            for record in batch:
                row_number = row_numbers.get(record.id)
                if row_number is None:
                    logger.warning(f"Record {record.id} not found in {WORKSHEETS[kind]}")
                    continue
                updates.append({"range": f"{STATUS_COLUMN}{row_number}", "values": [[status.value]]})
            self.update_cells(WORKSHEETS[kind], RECORD_HEADER, updates)
            updated += len(updates)
        logger.info(f"Marked {updated} record(s) as {status.value}")
        return updated

    def update_amount(self, record: Record, amount: Decimal) -> Record:
        updated = replace(record, amount=amount)
        row_number = self._row_numbers(record.kind).get(record.id)
        if row_number is None:
            raise TransientIOError(f"记录 {record.id} 不存在")
        self.update_cells(
            WORKSHEETS[record.kind],
            RECORD_HEADER,
            [{"range": f"{AMOUNT_COLUMN}{row_number}", "values": [[str(amount)]]}],
        )
        return updated


class SheetsSettingsStore(_WorksheetStore):
    """GroupSettings worksheet, one row per group."""

    def _find(self, group_id: str) -> tuple[Optional[int], Optional[list[str]]]:
        for index, row in enumerate(self.rows(SETTINGS_SHEET, SETTINGS_HEADER)):
            if _cell(row, 0) == group_id:
                return index + 2, row
        return None, None

    def get(self, group_id: str) -> GroupSettings:
        _, row = self._find(group_id)
        if row is None:
            return default_settings(group_id)
        return row_to_settings(row, self.zone)

    def has(self, group_id: str) -> bool:
        return self._find(group_id)[0] is not None

    def upsert(self, group_id: str, **changes) -> GroupSettings:
        row_number, row = self._find(group_id)
        current = row_to_settings(row, self.zone) if row else default_settings(group_id)
        merged = replace(current, **changes)
        values = settings_to_row(merged, self.zone)

        if row_number is None:
            self.append_values(SETTINGS_SHEET, SETTINGS_HEADER, values)
            logger.info(f"Created settings for group={group_id}")
        else:
            self.update_cells(
                SETTINGS_SHEET,
                SETTINGS_HEADER,
                [{"range": f"A{row_number}:J{row_number}", "values": [values]}],
            )
            logger.info(f"Updated settings for group={group_id}: {sorted(changes)}")
        return merged

    def list_groups(self) -> list[str]:
        groups = []
        for row in self.rows(SETTINGS_SHEET, SETTINGS_HEADER):
            group_id = _cell(row, 0)
            if group_id and group_id not in groups:
                groups.append(group_id)
        return groups


class SheetsOperatorStore(_WorksheetStore):
    """Operators worksheet; removal flips the status column."""

    def list(self, group_id: str) -> list[Operator]:
        operators = []
        for row in self.rows(OPERATORS_SHEET, OPERATOR_HEADER):
            if _cell(row, 0) != group_id:
                continue
            operator = row_to_operator(row, self.zone)
            if operator.status is OperatorStatus.ACTIVE:
                operators.append(operator)
        return operators

    def is_active(self, group_id: str, user_id: str) -> bool:
        return any(op.user_id == user_id for op in self.list(group_id))

    def add(self, operator: Operator) -> Operator:
        for existing in self.list(operator.group_id):
            if existing.user_id == operator.user_id:
                return existing
        self.append_values(OPERATORS_SHEET, OPERATOR_HEADER, operator_to_row(operator, self.zone))
        logger.info(f"Added operator user_id={operator.user_id} group={operator.group_id}")
        return operator

    def _active_rows(self, group_id: str, user_id: Optional[str] = None) -> list[tuple[int, Operator]]:
        matches = []
        for index, row in enumerate(self.rows(OPERATORS_SHEET, OPERATOR_HEADER)):
            operator = row_to_operator(row, self.zone)
            if operator.group_id != group_id or operator.status is not OperatorStatus.ACTIVE:
                continue
            if user_id is not None and operator.user_id != user_id:
                continue
            matches.append((index + 2, operator))
        return matches

    def _remove_rows(self, matches: list[tuple[int, Operator]]) -> None:
        self.update_cells(
            OPERATORS_SHEET,
            OPERATOR_HEADER,
            [
                {"range": f"{OPERATOR_STATUS_COLUMN}{row_number}", "values": [[OperatorStatus.REMOVED.value]]}
                for row_number, _ in matches
            ],
        )

    def remove(self, group_id: str, user_id: str) -> Optional[Operator]:
        matches = self._active_rows(group_id, user_id)
        if not matches:
            return None
        self._remove_rows(matches)
        logger.info(f"Removed operator user_id={user_id} group={group_id}")
        return replace(matches[0][1], status=OperatorStatus.REMOVED)

    def remove_all(self, group_id: str) -> int:
        matches = self._active_rows(group_id)
        self._remove_rows(matches)
        return len(matches)


def build_sheet_stores(spreadsheet: gspread.Spreadsheet, zone: ZoneInfo) -> tuple[SheetsLedgerStore, SheetsSettingsStore, SheetsOperatorStore]:
    return (
        SheetsLedgerStore(spreadsheet, zone),
        SheetsSettingsStore(spreadsheet, zone),
        SheetsOperatorStore(spreadsheet, zone),
    )
