"""
Settlement Calculator.

Pure functions that turn a group's records and fee settings into totals:

    gross    = sum of amounts (currency is reported, never converted)
    actual   = gross_in * (100 - income_fee) / 100
             - gross_out * (100 + outgoing_fee) / 100
    usdt     = THB figure / exchange_rate

plus the "since cutoff" window: only records at or after the group's
last refresh instant count, and that instant moves forward once a day
when the cutoff hour has passed (see next_refresh()).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from ledger_bot.errors import ValidationError
from ledger_bot.models import (
    Currency,
    GroupSettings,
    Record,
    RecordKind,
    RecordStatus,
)
from ledger_bot.utils.clock import cutoff_instant
from .texts import text

HUNDRED = Decimal("100")
ZERO = Decimal("0")
DEFAULT_PREVIEW_ITEMS = 3


class Window(str, Enum):
    ALL = "all"
    SINCE_CUTOFF = "since_cutoff"


@dataclass
class LineItem:
    record_id: str
    time: str
    amount: Decimal
    currency: Currency
    fee_multiplier: Decimal
    adjusted: Decimal
    usdt: Decimal


@dataclass
class LedgerReport:
    settings: GroupSettings
    window: Window
    deposits: list[LineItem] = field(default_factory=list)
    withdrawals: list[LineItem] = field(default_factory=list)
    gross_deposits: Decimal = ZERO
    gross_withdrawals: Decimal = ZERO
    fee_multiplier_in: Decimal = Decimal("1")
    fee_multiplier_out: Decimal = Decimal("1")
    actual_deposits: Decimal = ZERO
    actual_withdrawals: Decimal = ZERO
    net_balance: Decimal = ZERO
    usdt_deposits: Decimal = ZERO
    usdt_withdrawals: Decimal = ZERO
    usdt_balance: Decimal = ZERO

    @property
    def record_ids(self) -> list[str]:
        return [item.record_id for item in self.deposits + self.withdrawals]

    @property
    def is_empty(self) -> bool:
        return not self.deposits and not self.withdrawals


def fee_multipliers(settings: GroupSettings) -> tuple[Decimal, Decimal]:
    """(income multiplier, outgoing multiplier) for a group's fee rates."""
    return (
        (HUNDRED - settings.income_fee_rate_pct) / HUNDRED,
        (HUNDRED + settings.outgoing_fee_rate_pct) / HUNDRED,
    )


def select_records(
    records: Iterable[Record],
    settings: GroupSettings,
    window: Window = Window.ALL,
    statuses: Iterable[RecordStatus] = (RecordStatus.ACTIVE,),
) -> list[Record]:
    """Steps 1-2: status, group and window filter."""
    wanted = set(statuses)
    selected = []
    for record in records:
        if record.group_id != settings.group_id or record.status not in wanted:
            continue
        if (
            window is Window.SINCE_CUTOFF
            and settings.last_refresh is not None
            and record.timestamp < settings.last_refresh
        ):
            continue
        selected.append(record)
    return sorted(selected, key=lambda r: r.timestamp)


def compute_ledger(
    records: Iterable[Record],
    settings: GroupSettings,
    window: Window = Window.ALL,
    statuses: Iterable[RecordStatus] = (RecordStatus.ACTIVE,),
) -> LedgerReport:
    """
    Compute gross, fee-adjusted and net totals for a group.

    Raises:
        ValidationError: if the group's exchange rate is not positive.
    """
    if settings.exchange_rate <= 0:
        raise ValidationError(f"汇率无效: {settings.exchange_rate}，请先设置汇率")

    rate = settings.exchange_rate
    mult_in, mult_out = fee_multipliers(settings)
    report = LedgerReport(
        settings=settings,
        window=window,
        fee_multiplier_in=mult_in,
        fee_multiplier_out=mult_out,
    )

    for record in select_records(records, settings, window, statuses):
        is_deposit = record.kind is RecordKind.DEPOSIT
        multiplier = mult_in if is_deposit else mult_out
        item = LineItem(
            record_id=record.id,
            time=record.timestamp.strftime("%H:%M:%S"),
            amount=record.amount,
            currency=record.currency,
            fee_multiplier=multiplier,
            adjusted=record.amount * multiplier,
            usdt=record.amount / rate,
        )
        if is_deposit:
            report.deposits.append(item)
            report.gross_deposits += record.amount
        else:
            report.withdrawals.append(item)
            report.gross_withdrawals += record.amount

    report.actual_deposits = report.gross_deposits * mult_in
    report.actual_withdrawals = report.gross_withdrawals * mult_out
    report.net_balance = report.actual_deposits - report.actual_withdrawals

    report.usdt_deposits = report.actual_deposits / rate
    report.usdt_withdrawals = report.actual_withdrawals / rate
    report.usdt_balance = report.net_balance / rate
    return report


def next_refresh(settings: GroupSettings, now: datetime) -> Optional[datetime]:
    """
    Today's cutoff instant if the window should move forward, else None.

    The window moves when the group has a cutoff hour, the current time
    (already in the reference timezone) is past today's cutoff, and the
    last refresh is unset or earlier than that cutoff. Calling it again
    after the refresh was persisted returns None, so at most one move
    happens per day.
    """
    if settings.cutoff_hour < 0:
        return None

    today_cutoff = cutoff_instant(now.date(), settings.cutoff_hour, now.tzinfo)
    if now < today_cutoff:
        return None
    if settings.last_refresh is not None and settings.last_refresh >= today_cutoff:
        return None
    return today_cutoff


# =============================================================================
# RENDERING
# =============================================================================

def _fmt(value: Decimal, places: int = 2) -> str:
    return f"{value:.{places}f}"


def _render_item(item: LineItem) -> str:
    prefix = item.currency.symbol if item.currency is Currency.USD else ""
    return (
        f"{item.time} {prefix}{_fmt(item.amount)} ×{_fmt(item.fee_multiplier, 4).rstrip('0').rstrip('.')}"
        f" = {_fmt(item.adjusted)} | {_fmt(item.usdt)}U"
    )


def _render_section(title: str, items: list[LineItem], full: bool, limit: int, count_label: str) -> list[str]:
    lines = [f"{title}(฿) {len(items)}{count_label}:"]
    if not items:
        lines.append("0")
        return lines
    shown = items if full else items[-limit:]
    lines.extend(_render_item(item) for item in shown)
    return lines


def render_report(
    report: LedgerReport,
    title: str,
    full: bool = False,
    limit: int = DEFAULT_PREVIEW_ITEMS,
) -> str:
    """
    Format a report for the group chat in the group's language.

    Args:
        report: Output of compute_ledger()
        title: Bot title shown on the first line
        full: Show every line item instead of the latest `limit`
        limit: Items per section when not full
    """
    settings = report.settings
    lang = settings.language

    lines = [f"{title} ({text(lang, 'language_switch')})", ""]
    if report.window is Window.SINCE_CUTOFF and settings.last_refresh is not None:
        lines.append(f"{text(lang, 'window_since')} {settings.last_refresh.strftime('%Y-%m-%d %H:%M')}")
        lines.append("")

    count = text(lang, "count")
    lines += _render_section(text(lang, "deposits"), report.deposits, full, limit, count)
    lines.append("")
    lines += _render_section(text(lang, "withdrawals"), report.withdrawals, full, limit, count)
    lines.append("")

    lines.append(f"{text(lang, 'total_deposits')} {_fmt(report.gross_deposits)}")
    lines.append(f"{text(lang, 'income_fee_rate')} {_fmt(settings.income_fee_rate_pct, 1)}%")
    lines.append(f"{text(lang, 'outgoing_fee_rate')} {_fmt(settings.outgoing_fee_rate_pct, 1)}%")
    lines.append("")
    lines.append(f"{text(lang, 'usdt_rate')} {_fmt(settings.exchange_rate)}")
    lines.append(f"{text(lang, 'should_pay')} {_fmt(report.actual_deposits)} | {_fmt(report.usdt_deposits)} USDT")
    lines.append(f"{text(lang, 'total_paid')} {_fmt(report.actual_withdrawals)} | {_fmt(report.usdt_withdrawals)} USDT")
    lines.append(f"{text(lang, 'balance')} {_fmt(report.net_balance)} | {_fmt(report.usdt_balance)} USDT")

    return "\n".join(lines)


def render_settlement(report: LedgerReport, title: str) -> str:
    """Daily settlement message: header, settled count, then the full report."""
    lang = report.settings.language
    settled = len(report.deposits) + len(report.withdrawals)
    if report.is_empty:
        return f"{text(lang, 'settlement_title')}\n\n{text(lang, 'nothing_to_settle')}"
    return (
        f"{text(lang, 'settlement_title')}\n"
        f"{text(lang, 'settled_count')} {settled}{text(lang, 'count')}\n\n"
        f"{render_report(report, title, full=True)}"
    )
