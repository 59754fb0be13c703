"""
Shared fixtures: in-memory stores, a fixed clock and a wired AccountingService.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

from ledger_bot.models import (
    Currency,
    IncomingMessage,
    Operator,
    OperatorStatus,
    Record,
    RecordKind,
    RecordStatus,
    default_settings,
)
from ledger_bot.services.accounting import AccountingService

ZONE = ZoneInfo("Asia/Bangkok")
GROUP = "-1001"
ADMIN_ID = "1"
OPERATOR_ID = "2"
STRANGER_ID = "3"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryLedger:
    def __init__(self):
        self.records: list[Record] = []

    def append(self, record: Record) -> None:
        self.records.append(record)

    def list(self, group_id, kind=None, statuses=None):
        wanted = set(statuses) if statuses else None
        return sorted(
            (
                r for r in self.records
                if r.group_id == group_id
                and (kind is None or r.kind is kind)
                and (wanted is None or r.status in wanted)
            ),
            key=lambda r: r.timestamp,
        )

    def mark(self, records, status):
        ids = {r.id for r in records}
        count = 0
        for i, r in enumerate(self.records):
            if r.id in ids:
                self.records[i] = r.with_status(status)
                count += 1
        return count

    def update_amount(self, record, amount):
        for i, r in enumerate(self.records):
            if r.id == record.id:
                self.records[i] = replace(r, amount=amount)
                return self.records[i]
        raise KeyError(record.id)


class InMemorySettings:
    def __init__(self):
        self.rows = {}
        self.writes = 0

    def get(self, group_id):
        return self.rows.get(group_id) or default_settings(group_id)

    def has(self, group_id):
        return group_id in self.rows

    def upsert(self, group_id, **changes):
        self.writes += 1
        self.rows[group_id] = replace(self.get(group_id), **changes)
        return self.rows[group_id]

    def list_groups(self):
        return list(self.rows)


class InMemoryOperators:
    def __init__(self):
        self.rows: list[Operator] = []

    def list(self, group_id):
        return [op for op in self.rows if op.group_id == group_id and op.status is OperatorStatus.ACTIVE]

    def is_active(self, group_id, user_id):
        return any(op.user_id == user_id for op in self.list(group_id))

    def add(self, operator):
        for op in self.list(operator.group_id):
            if op.user_id == operator.user_id:
                return op
        self.rows.append(operator)
        return operator

    def remove(self, group_id, user_id):
        removed = None
        for i, op in enumerate(self.rows):
            if op.group_id == group_id and op.user_id == user_id and op.status is OperatorStatus.ACTIVE:
                self.rows[i] = removed = replace(op, status=OperatorStatus.REMOVED)
        return removed

    def remove_all(self, group_id):
        active = self.list(group_id)
        for op in active:
            self.remove(group_id, op.user_id)
        return len(active)


def make_admin_check(admins: set, calls: Optional[list] = None):
    async def is_admin(chat_id: str, user_id: str) -> bool:
        if calls is not None:
            calls.append((chat_id, user_id))
        return user_id in admins
    return is_admin


def make_record(
    amount,
    kind=RecordKind.DEPOSIT,
    at: Optional[datetime] = None,
    group_id=GROUP,
    user_id=ADMIN_ID,
    status=RecordStatus.ACTIVE,
    currency=Currency.THB,
    record_id: Optional[str] = None,
    source_message_id: Optional[str] = None,
):
    at = at or datetime(2026, 10, 18, 12, 0, tzinfo=ZONE)
    return Record(
        id=record_id or f"{kind.id_prefix}_{int(at.timestamp() * 1000)}_{amount}",
        kind=kind,
        timestamp=at,
        group_id=group_id,
        user_id=user_id,
        username="alice",
        amount=Decimal(str(amount)),
        currency=currency,
        status=status,
        source_message_id=source_message_id,
    )


def make_message(text, user_id=ADMIN_ID, **kwargs) -> IncomingMessage:
    defaults = dict(
        chat_id=int(GROUP),
        user_id=user_id,
        username=f"user{user_id}",
        text=text,
        display_name=f"User {user_id}",
        message_id=100,
    )
    defaults.update(kwargs)
    return IncomingMessage(**defaults)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 14, 0, 0, tzinfo=ZONE))


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def settings_store():
    return InMemorySettings()


@pytest.fixture
def operators():
    return InMemoryOperators()


@pytest.fixture
def service(ledger, settings_store, operators, clock):
    operators.add(Operator(group_id=GROUP, user_id=OPERATOR_ID, username="bob"))
    return AccountingService(
        ledger=ledger,
        settings_store=settings_store,
        operators=operators,
        is_admin=make_admin_check({ADMIN_ID}),
        zone=ZONE,
        title="TOM记账机器人",
        clock=clock,
    )
