"""
Accounting Service

Orchestrates one group message end to end:

    IncomingMessage -> parse_message() -> PermissionResolver
                    -> store mutation -> compute_ledger() -> reply text

Expected failures (LedgerError subclasses) come back as reply text.
Anything else propagates to the Telegram handler, which logs it.
"""

import time
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from ledger_bot.config import get_settings
from ledger_bot.errors import LedgerError, NotFoundError, PermissionDeniedError, ValidationError
from ledger_bot.models import (
    GroupSettings,
    IncomingMessage,
    Operator,
    Record,
    RecordKind,
    RecordStatus,
)
from ledger_bot.repositories import LedgerStore, OperatorStore, SettingsStore, build_sheet_stores
from ledger_bot.sheets_client import get_spreadsheet
from ledger_bot.telegram_bot.logging_config import bot_logger as logger
from ledger_bot.telegram_bot.telegram_api import is_chat_admin
from ledger_bot.utils.clock import get_zone, now_in
from .calculator import evaluate, format_result
from .commands import (
    AddOperator,
    Calculate,
    Command,
    ConvertToUsd,
    DailySettle,
    DeleteAll,
    Deposit,
    ListOperators,
    ModifyAmount,
    RemoveAllOperators,
    RemoveOperator,
    RevokeDeposit,
    RevokeWithdrawal,
    SetAllUsersMode,
    SetCutoffHour,
    SetExchangeRate,
    SetIncomeFeeRate,
    SetLanguage,
    SetOutgoingFeeRate,
    SetRealtimeRateMode,
    ShowDetails,
    ShowLedger,
    ShowMyBills,
    ShowRates,
    Unrecognized,
    Withdraw,
    WhoAmI,
    parse_message,
)
from .exchange_rates import get_exchange_rate_client
from .permissions import AdminCheck, PermissionResolver
from .settlement import (
    LedgerReport,
    Window,
    compute_ledger,
    next_refresh,
    render_report,
    render_settlement,
)

# Always allowed, no permission lookup
OPEN_COMMANDS = (WhoAmI, ListOperators, Calculate, ConvertToUsd, ShowRates)

# Allowed only for Telegram admins/creators
ADMIN_COMMANDS = (AddOperator, RemoveOperator, RemoveAllOperators, SetAllUsersMode, SetRealtimeRateMode)

# Replies that depend on the exchange rate
RATE_COMMANDS = (
    Deposit, Withdraw, ShowLedger, DailySettle, RevokeDeposit, RevokeWithdrawal,
    ShowRates, ConvertToUsd, ShowMyBills, ModifyAmount,
)

LANGUAGE_NAMES = {"zh": "中文", "th": "泰语"}

# async () -> THB per USD, or None when unavailable
LiveRate = Callable[[], Awaitable[Optional[Decimal]]]


def new_record_id(kind: RecordKind) -> str:
    """INC_/OUT_ prefix, epoch millis, short random suffix."""
    return f"{kind.id_prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def _error_text(error: LedgerError) -> str:
    return error.message if error.message.startswith("❌") else f"❌ {error.message}"


class AccountingService:
    """Turns group messages into ledger changes and report replies."""

    def __init__(
        self,
        ledger: LedgerStore,
        settings_store: SettingsStore,
        operators: OperatorStore,
        is_admin: AdminCheck,
        zone: ZoneInfo,
        title: str,
        clock: Optional[Callable[[], datetime]] = None,
        rate_source: Optional[LiveRate] = None,
    ):
        self.ledger = ledger
        self.settings_store = settings_store
        self.operators = operators
        self.permissions = PermissionResolver(is_admin, settings_store, operators)
        self.zone = zone
        self.title = title
        self.clock = clock or (lambda: now_in(zone))
        self.rate_source = rate_source
        self._live_rate: Optional[Decimal] = None

        self._handlers: dict[type, Callable[[Command, IncomingMessage], str]] = {
            Deposit: self._record,
            Withdraw: self._record,
            ShowLedger: self._show_ledger,
            DailySettle: self._daily_settle,
            DeleteAll: self._delete_all,
            SetIncomeFeeRate: self._set_income_fee,
            SetOutgoingFeeRate: self._set_outgoing_fee,
            AddOperator: self._add_operator,
            RemoveOperator: self._remove_operator,
            ListOperators: self._list_operators,
            WhoAmI: self._whoami,
            RevokeDeposit: self._revoke,
            RevokeWithdrawal: self._revoke,
            SetExchangeRate: self._set_exchange_rate,
            SetCutoffHour: self._set_cutoff_hour,
            SetLanguage: self._set_language,
            SetAllUsersMode: self._set_all_users_mode,
            SetRealtimeRateMode: self._set_realtime_rate_mode,
            RemoveAllOperators: self._remove_all_operators,
            ShowRates: self._show_rates,
            ConvertToUsd: self._convert,
            ShowMyBills: self._show_my_bills,
            ShowDetails: self._show_details,
            ModifyAmount: self._modify_amount,
            Calculate: self._calculate,
        }

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def handle(self, message: IncomingMessage) -> Optional[str]:
        """
        Process one group message.

        Returns:
            Reply text, or None when the message is not a command.
        """
        command = parse_message(message)
        if isinstance(command, Unrecognized):
            return command.error

        logger.info(
            f"Command {type(command).__name__} from user_id={message.user_id} "
            f"in group={message.group_id}"
        )

        try:
            await self._authorize(command, message)
            if isinstance(command, RATE_COMMANDS):
                await self.refresh_live_rate(message.group_id)
            return self._handlers[type(command)](command, message)
        except LedgerError as e:
            logger.warning(f"{type(command).__name__} rejected in group={message.group_id}: {e.message}")
            return _error_text(e)

    async def _authorize(self, command: Command, message: IncomingMessage) -> None:
        if isinstance(command, OPEN_COMMANDS):
            return

        authorization = await self.permissions.authorize(message.group_id, message.user_id)
        if not authorization.allowed:
            raise PermissionDeniedError(authorization.reason)
        if isinstance(command, ADMIN_COMMANDS) and not authorization.is_admin:
            raise PermissionDeniedError("只有群管理员可以执行此操作")

    # =========================================================================
    # SHARED
    # =========================================================================

    async def refresh_live_rate(self, group_id: str) -> None:
        """
        Fetch the live rate if the group is in realtime-rate mode.

        A failed fetch leaves no live rate, so the stored rate applies.
        """
        self._live_rate = None
        if self.rate_source is None or not self.settings_store.get(group_id).realtime_rate:
            return
        self._live_rate = await self.rate_source()
        if self._live_rate is None:
            logger.warning(f"No live rate for group={group_id}, using the stored rate")

    def _with_live_rate(self, settings: GroupSettings) -> GroupSettings:
        if settings.realtime_rate and self._live_rate is not None:
            return replace(settings, exchange_rate=self._live_rate)
        return settings

    def current_settings(self, group_id: str) -> GroupSettings:
        """
        Group settings with the since-cutoff window moved forward if due
        and the live rate applied in realtime-rate mode.
        """
        settings = self.settings_store.get(group_id)
        refresh = next_refresh(settings, self.clock())
        if refresh is not None:
            logger.info(f"Cutoff window for group={group_id} moves to {refresh}")
            settings = self.settings_store.upsert(group_id, last_refresh=refresh)
        return self._with_live_rate(settings)

    def ledger_report(self, group_id: str) -> LedgerReport:
        settings = self.current_settings(group_id)
        records = self.ledger.list(group_id, statuses=[RecordStatus.ACTIVE])
        return compute_ledger(records, settings, Window.SINCE_CUTOFF)

    def _short_report(self, group_id: str) -> str:
        return render_report(self.ledger_report(group_id), self.title)

    def _after_mutation(self, head: str, group_id: str) -> str:
        """Confirmation plus short ledger; the change is already stored."""
        try:
            report = self._short_report(group_id)
        except LedgerError as e:
            logger.warning(f"Report after change failed in group={group_id}: {e.message}")
            return f"{head}\n\n{_error_text(e)}"
        return f"{head}\n\n{report}"

    def _ensure_settings(self, group_id: str) -> None:
        if not self.settings_store.has(group_id):
            self.settings_store.upsert(group_id)

    # =========================================================================
    # JOB ENTRY POINTS
    # =========================================================================

    def settle_group(self, group_id: str) -> tuple[LedgerReport, str]:
        """
        Settle today's since-cutoff records of a group.

        Every included record is marked Settled, so a second run over the
        same day finds nothing.
        """
        settings = self.current_settings(group_id)
        today = self.clock().date()
        records = [
            r for r in self.ledger.list(group_id, statuses=[RecordStatus.ACTIVE])
            if r.timestamp.astimezone(self.zone).date() == today
        ]
        report = compute_ledger(records, settings, Window.SINCE_CUTOFF)

        included = set(report.record_ids)
        settled = self.ledger.mark([r for r in records if r.id in included], RecordStatus.SETTLED)
        logger.info(f"Settled {settled} record(s) in group={group_id}")
        return report, render_settlement(report, self.title)

    def delete_group(self, group_id: str) -> tuple[int, int]:
        """Mark every Active record Deleted. Returns (deposits, withdrawals)."""
        records = self.ledger.list(group_id, statuses=[RecordStatus.ACTIVE])
        deposits = [r for r in records if r.kind is RecordKind.DEPOSIT]
        withdrawals = [r for r in records if r.kind is RecordKind.WITHDRAWAL]
        self.ledger.mark(records, RecordStatus.DELETED)
        return len(deposits), len(withdrawals)

    # =========================================================================
    # COMMAND HANDLERS
    # =========================================================================

    def _record(self, command, message: IncomingMessage) -> str:
        kind = RecordKind.DEPOSIT if isinstance(command, Deposit) else RecordKind.WITHDRAWAL
        self._ensure_settings(message.group_id)

        record = Record(
            id=new_record_id(kind),
            kind=kind,
            timestamp=self.clock(),
            group_id=message.group_id,
            user_id=message.user_id,
            username=message.username or message.display_name,
            amount=command.amount,
            currency=command.currency,
            source_message_id=str(message.message_id) if message.message_id is not None else None,
        )
        self.ledger.append(record)

        label = "入款" if kind is RecordKind.DEPOSIT else "下发"
        sign = "+" if kind is RecordKind.DEPOSIT else "-"
        confirmation = f"✅ 已记录{label} {sign}{command.amount}{command.currency.symbol}"
        return self._after_mutation(confirmation, message.group_id)

    def _show_ledger(self, command: ShowLedger, message: IncomingMessage) -> str:
        return render_report(self.ledger_report(message.group_id), self.title, full=command.full)

    def _daily_settle(self, command: DailySettle, message: IncomingMessage) -> str:
        _, rendered = self.settle_group(message.group_id)
        return rendered

    def _delete_all(self, command: DeleteAll, message: IncomingMessage) -> str:
        deposits, withdrawals = self.delete_group(message.group_id)
        return f"🗑 已删除全部账单\n入款: {deposits}笔\n下发: {withdrawals}笔"

    def _set_income_fee(self, command: SetIncomeFeeRate, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, income_fee_rate_pct=command.pct)
        return f"✅ 入款费率已设置为 {command.pct}%"

    def _set_outgoing_fee(self, command: SetOutgoingFeeRate, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, outgoing_fee_rate_pct=command.pct)
        return f"✅ 下发费率已设置为 {command.pct}%"

    def _add_operator(self, command: AddOperator, message: IncomingMessage) -> str:
        operator = self.operators.add(Operator(
            group_id=message.group_id,
            user_id=command.target_user_id,
            username=command.target_name,
            added_at=self.clock(),
        ))
        return f"✅ 已添加操作人: {operator.username} (ID: {operator.user_id})"

    def _remove_operator(self, command: RemoveOperator, message: IncomingMessage) -> str:
        removed = self.operators.remove(message.group_id, command.target_user_id)
        if removed is None:
            raise NotFoundError(f"❌ {command.target_name or command.target_user_id} 不是操作人")
        return f"✅ 已移除操作人: {removed.username} (ID: {removed.user_id})"

    def _list_operators(self, command: ListOperators, message: IncomingMessage) -> str:
        operators = self.operators.list(message.group_id)
        if not operators:
            return "📋 当前没有操作人"
        lines = [f"📋 操作人列表 ({len(operators)}):"]
        lines += [f"{i}. {op.username} (ID: {op.user_id})" for i, op in enumerate(operators, 1)]
        return "\n".join(lines)

    def _whoami(self, command: WhoAmI, message: IncomingMessage) -> str:
        lines = [f"🆔 ID: {message.user_id}"]
        if message.username:
            lines.append(f"👤 用户名: @{message.username}")
        if message.display_name:
            lines.append(f"📛 名称: {message.display_name}")
        return "\n".join(lines)

    def _revoke(self, command, message: IncomingMessage) -> str:
        kind = RecordKind.DEPOSIT if isinstance(command, RevokeDeposit) else RecordKind.WITHDRAWAL
        label = "入款" if kind is RecordKind.DEPOSIT else "下发"

        records = self.ledger.list(message.group_id, kind=kind, statuses=[RecordStatus.ACTIVE])
        if not records:
            raise NotFoundError(f"❌ 没有可撤销的{label}记录")

        latest = max(records, key=lambda r: r.timestamp)
        self.ledger.mark([latest], RecordStatus.REVERSED)
        return self._after_mutation(f"↩️ 已撤销{label} {latest.amount}{latest.currency.symbol}", message.group_id)

    def _set_exchange_rate(self, command: SetExchangeRate, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, exchange_rate=command.rate)
        return f"✅ 汇率已设置为 {command.rate}"

    def _set_cutoff_hour(self, command: SetCutoffHour, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, cutoff_hour=command.hour)
        if command.hour < 0:
            return "✅ 日切已关闭，账单不再自动刷新"
        return f"✅ 日切时间已设置为每天 {command.hour}:00"

    def _set_language(self, command: SetLanguage, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, language=command.language)
        return f"✅ 已切换为{LANGUAGE_NAMES[command.language.value]}"

    def _set_all_users_mode(self, command: SetAllUsersMode, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, all_users_mode=command.enabled)
        if command.enabled:
            return "✅ 已开启所有人记账"
        return "✅ 已关闭所有人记账，仅管理员和操作人可记账"

    def _set_realtime_rate_mode(self, command: SetRealtimeRateMode, message: IncomingMessage) -> str:
        self.settings_store.upsert(message.group_id, realtime_rate=command.enabled)
        if command.enabled:
            return "✅ 已启用实时汇率模式"
        return "✅ 已关闭实时汇率模式"

    def _remove_all_operators(self, command: RemoveAllOperators, message: IncomingMessage) -> str:
        count = self.operators.remove_all(message.group_id)
        return f"✅ 已删除所有操作人 ({count})"

    def _show_rates(self, command: ShowRates, message: IncomingMessage) -> str:
        stored = self.settings_store.get(message.group_id)
        settings = self._with_live_rate(stored)
        cutoff = "关闭" if settings.cutoff_hour < 0 else f"{settings.cutoff_hour}:00"
        if not stored.realtime_rate:
            mode = "📌 固定汇率模式"
        elif self._live_rate is None:
            mode = "🌐 实时汇率: 已启用 (获取失败，使用固定汇率)"
        else:
            mode = "🌐 实时汇率: 已启用"
        return (
            f"💱 USDT汇率: {settings.exchange_rate}\n"
            f"入款费率: {settings.income_fee_rate_pct}%\n"
            f"下发费率: {settings.outgoing_fee_rate_pct}%\n"
            f"日切时间: {cutoff}\n"
            f"{mode}"
        )

    def _convert(self, command: ConvertToUsd, message: IncomingMessage) -> str:
        settings = self._with_live_rate(self.settings_store.get(message.group_id))
        if settings.exchange_rate <= 0:
            raise ValidationError(f"汇率无效: {settings.exchange_rate}，请先设置汇率")
        usdt = command.amount / settings.exchange_rate
        return f"{command.amount} ฿ = {_money(usdt)} USDT (汇率 {settings.exchange_rate})"

    def _show_my_bills(self, command: ShowMyBills, message: IncomingMessage) -> str:
        settings = self.current_settings(message.group_id)
        records = [
            r for r in self.ledger.list(message.group_id, statuses=[RecordStatus.ACTIVE])
            if r.user_id == message.user_id
        ]
        report = compute_ledger(records, settings, Window.ALL)
        name = message.display_name or message.username or message.user_id
        return render_report(report, f"{self.title} - {name}", full=True)

    def _show_details(self, command: ShowDetails, message: IncomingMessage) -> str:
        records = self.ledger.list(message.group_id, statuses=[RecordStatus.ACTIVE])
        if not records:
            return "📋 暂无记录"

        latest = records[-command.limit:]
        lines = [f"📋 最近 {len(latest)} 条记录:"]
        for record in latest:
            sign = "+" if record.kind is RecordKind.DEPOSIT else "-"
            stamp = record.timestamp.astimezone(self.zone).strftime("%m-%d %H:%M:%S")
            lines.append(f"{stamp} {sign}{record.amount}{record.currency.symbol} {record.username}")
        return "\n".join(lines)

    def _modify_amount(self, command: ModifyAmount, message: IncomingMessage) -> str:
        source = str(command.message_id)
        matches = [
            r for r in self.ledger.list(message.group_id, statuses=[RecordStatus.ACTIVE])
            if r.source_message_id == source
        ]
        if not matches:
            raise NotFoundError("❌ 找不到该消息对应的有效记录")

        record = matches[-1]
        updated = self.ledger.update_amount(record, command.amount)
        return self._after_mutation(f"✏️ 已修改金额: {record.amount} → {updated.amount}", message.group_id)

    def _calculate(self, command: Calculate, message: IncomingMessage) -> str:
        return f"{command.expression} = {format_result(evaluate(command.expression))}"


# Singleton instance
_accounting_service: Optional[AccountingService] = None


def get_accounting_service() -> AccountingService:
    global _accounting_service
    if _accounting_service is None:
        settings = get_settings()
        zone = get_zone(settings.timezone)
        ledger, settings_store, operators = build_sheet_stores(get_spreadsheet(), zone)
        _accounting_service = AccountingService(
            ledger=ledger,
            settings_store=settings_store,
            operators=operators,
            is_admin=is_chat_admin,
            zone=zone,
            title=settings.bot_title,
            rate_source=get_exchange_rate_client().usd_thb,
        )
    return _accounting_service
