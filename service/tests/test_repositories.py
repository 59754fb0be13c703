"""
Tests for sheet row mapping and the gspread-backed stores.

The stores run against a small in-memory stand-in for gspread worksheets.
"""

import re
from datetime import datetime
from decimal import Decimal

import gspread
import pytest

from conftest import GROUP, ZONE, make_record
from ledger_bot.models import (
    Currency,
    Language,
    Operator,
    OperatorStatus,
    RecordKind,
    RecordStatus,
    default_settings,
)
from ledger_bot.repositories import (
    SheetsLedgerStore,
    SheetsOperatorStore,
    SheetsSettingsStore,
    record_to_row,
    row_to_operator,
    row_to_record,
    row_to_settings,
    settings_to_row,
)

CELL_RE = re.compile(r'([A-Z]+)(\d+)')


class FakeWorksheet:
    def __init__(self, title):
        self.title = title
        self.values: list[list[str]] = []

    def get_all_values(self):
        return [list(row) for row in self.values]

    def append_row(self, row, value_input_option=None):
        self.values.append([str(v) for v in row])

    def batch_update(self, updates, value_input_option=None):
        for update in updates:
            column, row_number = CELL_RE.match(update["range"]).groups()
            row = self.values[int(row_number) - 1]
            start = ord(column) - ord("A")
            for offset, value in enumerate(update["values"][0]):
                while len(row) <= start + offset:
                    row.append("")
                row[start + offset] = value


class FakeSpreadsheet:
    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title):
        if title not in self.sheets:
            raise gspread.exceptions.WorksheetNotFound(title)
        return self.sheets[title]

    def add_worksheet(self, title, rows, cols):
        self.sheets[title] = FakeWorksheet(title)
        return self.sheets[title]


@pytest.fixture
def spreadsheet():
    return FakeSpreadsheet()


class TestRowMapping:
    def test_record_row_shape(self):
        record = make_record(1000, source_message_id="55")
        row = record_to_row(record, ZONE)
        assert row[1] == "2026-10-18 12:00:00"
        assert row[2:] == [GROUP, "1", "alice", "1000", "THB", "正常", "55"]

    def test_record_from_row(self):
        row = ["OUT_1", "2026/10/18 09:30", GROUP, "2", "bob", "12.5", "USD", "已撤销", ""]
        record = row_to_record(row, RecordKind.WITHDRAWAL, ZONE)

        assert record.kind is RecordKind.WITHDRAWAL
        assert record.timestamp == datetime(2026, 10, 18, 9, 30, tzinfo=ZONE)
        assert record.amount == Decimal("12.5")
        assert record.currency is Currency.USD
        assert record.status is RecordStatus.REVERSED
        assert record.source_message_id is None

    @pytest.mark.parametrize("row", [
        ["INC_1", "", GROUP, "1", "a", "10", "THB", "正常"],
        ["INC_1", "2026-10-18 10:00:00", GROUP, "1", "a", "abc", "THB", "正常"],
        ["INC_1", "2026-10-18 10:00:00", GROUP, "1", "a", "10", "EUR", "正常"],
    ])
    def test_unreadable_rows_are_skipped(self, row):
        assert row_to_record(row, RecordKind.DEPOSIT, ZONE) is None

    def test_settings_flags_and_language(self):
        settings = default_settings(GROUP)
        row = settings_to_row(settings, ZONE)
        assert row == [GROUP, "35", "5", "0", "6", "否", "否", "", "否", "zh"]

    def test_blank_settings_cells_use_defaults(self):
        settings = row_to_settings([GROUP, "", "", "", "", "是", "", "", "", "泰语"], ZONE)
        assert settings.exchange_rate == Decimal("35")
        assert settings.cutoff_hour == 6
        assert settings.all_users_mode is True
        assert settings.language is Language.TH

    def test_operator_status(self):
        assert row_to_operator([GROUP, "2", "bob", "", "正常"], ZONE).status is OperatorStatus.ACTIVE
        assert row_to_operator([GROUP, "2", "bob", "", "已删除"], ZONE).status is OperatorStatus.REMOVED


class TestSheetsLedgerStore:
    def test_creates_worksheet_with_header(self, spreadsheet):
        store = SheetsLedgerStore(spreadsheet, ZONE)
        store.append(make_record(100))
        assert spreadsheet.sheets["Deposits"].values[0][0] == "id"
        assert len(spreadsheet.sheets["Deposits"].values) == 2

    def test_list_filters_group_and_status(self, spreadsheet):
        store = SheetsLedgerStore(spreadsheet, ZONE)
        store.append(make_record(100))
        store.append(make_record(200, group_id="-9"))
        store.append(make_record(50, kind=RecordKind.WITHDRAWAL))

        assert len(store.list(GROUP)) == 2
        assert len(store.list(GROUP, kind=RecordKind.WITHDRAWAL)) == 1
        assert store.list(GROUP, statuses=[RecordStatus.SETTLED]) == []

    def test_mark_updates_status_column(self, spreadsheet):
        store = SheetsLedgerStore(spreadsheet, ZONE)
        record = make_record(100, record_id="INC_a")
        store.append(record)
        store.append(make_record(200, record_id="INC_b"))

        assert store.mark([record], RecordStatus.SETTLED) == 1

        statuses = {r.id: r.status for r in store.list(GROUP)}
        assert statuses == {"INC_a": RecordStatus.SETTLED, "INC_b": RecordStatus.ACTIVE}

    def test_update_amount(self, spreadsheet):
        store = SheetsLedgerStore(spreadsheet, ZONE)
        record = make_record(100)
        store.append(record)

        store.update_amount(record, Decimal("150"))
        assert store.list(GROUP)[0].amount == Decimal("150")


class TestSheetsSettingsStore:
    def test_missing_group_gets_defaults(self, spreadsheet):
        store = SheetsSettingsStore(spreadsheet, ZONE)
        assert store.get(GROUP) == default_settings(GROUP)
        assert not store.has(GROUP)

    def test_upsert_creates_then_updates(self, spreadsheet):
        store = SheetsSettingsStore(spreadsheet, ZONE)
        store.upsert(GROUP, income_fee_rate_pct=Decimal("3"))
        store.upsert(GROUP, exchange_rate=Decimal("36"))

        settings = store.get(GROUP)
        assert settings.income_fee_rate_pct == Decimal("3")
        assert settings.exchange_rate == Decimal("36")
        assert store.list_groups() == [GROUP]
        assert len(spreadsheet.sheets["GroupSettings"].values) == 2

    def test_last_refresh_round_trip(self, spreadsheet):
        store = SheetsSettingsStore(spreadsheet, ZONE)
        refresh = datetime(2026, 10, 18, 6, 0, tzinfo=ZONE)
        store.upsert(GROUP, last_refresh=refresh)
        assert store.get(GROUP).last_refresh == refresh


class TestSheetsOperatorStore:
    def test_add_is_idempotent(self, spreadsheet):
        store = SheetsOperatorStore(spreadsheet, ZONE)
        store.add(Operator(GROUP, "2", "bob"))
        store.add(Operator(GROUP, "2", "bob"))
        assert len(store.list(GROUP)) == 1

    def test_remove_and_remove_all(self, spreadsheet):
        store = SheetsOperatorStore(spreadsheet, ZONE)
        store.add(Operator(GROUP, "2", "bob"))
        store.add(Operator(GROUP, "3", "carol"))
        store.add(Operator("-9", "2", "bob"))

        assert store.remove(GROUP, "2").status is OperatorStatus.REMOVED
        assert store.remove(GROUP, "2") is None
        assert not store.is_active(GROUP, "2")
        assert store.is_active("-9", "2")

        assert store.remove_all(GROUP) == 1
        assert store.list(GROUP) == []
