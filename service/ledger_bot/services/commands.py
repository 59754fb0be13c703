"""
Command Interpreter.

Turns the raw text of a group message into a typed Command without any
AI call. Matching is an ordered table of rules; the first rule that
returns a Command wins. parse_command() is total: every string maps to
exactly one Command, and unknown text becomes Unrecognized, which the
caller must not answer.

Usage:
    cmd = parse_command("+150$")
    # Deposit(amount=Decimal("150"), currency=Currency.USD)
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Union

from ledger_bot.models import Currency, IncomingMessage, Language, TargetUser


FEE_RATE_MIN = Decimal("-100")
FEE_RATE_MAX = Decimal("100")


# =============================================================================
# COMMANDS
# =============================================================================

@dataclass(frozen=True)
class Deposit:
    amount: Decimal
    currency: Currency = Currency.THB


@dataclass(frozen=True)
class Withdraw:
    amount: Decimal
    currency: Currency = Currency.THB


@dataclass(frozen=True)
class ShowLedger:
    full: bool = False


@dataclass(frozen=True)
class DailySettle:
    pass


@dataclass(frozen=True)
class DeleteAll:
    pass


@dataclass(frozen=True)
class SetIncomeFeeRate:
    pct: Decimal


@dataclass(frozen=True)
class SetOutgoingFeeRate:
    pct: Decimal


@dataclass(frozen=True)
class AddOperator:
    target_user_id: str
    target_name: str


@dataclass(frozen=True)
class RemoveOperator:
    target_user_id: str
    target_name: str = ""


@dataclass(frozen=True)
class ListOperators:
    pass


@dataclass(frozen=True)
class WhoAmI:
    pass


@dataclass(frozen=True)
class RevokeDeposit:
    pass


@dataclass(frozen=True)
class RevokeWithdrawal:
    pass


@dataclass(frozen=True)
class SetExchangeRate:
    rate: Decimal


@dataclass(frozen=True)
class SetCutoffHour:
    hour: int


@dataclass(frozen=True)
class SetLanguage:
    language: Language


@dataclass(frozen=True)
class SetAllUsersMode:
    enabled: bool


@dataclass(frozen=True)
class SetRealtimeRateMode:
    enabled: bool


@dataclass(frozen=True)
class RemoveAllOperators:
    pass


@dataclass(frozen=True)
class ShowRates:
    pass


@dataclass(frozen=True)
class ConvertToUsd:
    amount: Decimal


@dataclass(frozen=True)
class ShowMyBills:
    pass


@dataclass(frozen=True)
class ShowDetails:
    limit: int = 20


@dataclass(frozen=True)
class ModifyAmount:
    message_id: int
    amount: Decimal


@dataclass(frozen=True)
class Calculate:
    expression: str


@dataclass(frozen=True)
class Unrecognized:
    # Set when the text looked like a command but was rejected;
    # the caller replies with it. None means stay silent.
    error: Optional[str] = None


Command = Union[
    Deposit, Withdraw, ShowLedger, DailySettle, DeleteAll,
    SetIncomeFeeRate, SetOutgoingFeeRate, AddOperator, RemoveOperator,
    ListOperators, WhoAmI, RevokeDeposit, RevokeWithdrawal, SetExchangeRate,
    SetCutoffHour, SetLanguage, SetAllUsersMode, SetRealtimeRateMode, RemoveAllOperators,
    ShowRates, ConvertToUsd, ShowMyBills, ShowDetails, ModifyAmount,
    Calculate, Unrecognized,
]


@dataclass(frozen=True)
class ParseContext:
    """Message facts some rules need besides the text."""
    reply_to: Optional[TargetUser] = None
    reply_to_message_id: Optional[int] = None
    mention: Optional[TargetUser] = None


# =============================================================================
# PATTERNS
# =============================================================================

DEPOSIT_RE = re.compile(r'^\+(\d+(\.\d+)?)(\$)?$', re.ASCII)
WITHDRAW_RE = re.compile(r'^-(\d+(\.\d+)?)(\$)?$', re.ASCII)
INCOME_FEE_RE = re.compile(r'^入款费率\s*(-?\d+(\.\d+)?)$', re.ASCII)
OUTGOING_FEE_RE = re.compile(r'^下发费率\s*(-?\d+(\.\d+)?)$', re.ASCII)
EXCHANGE_RATE_RE = re.compile(r'^设置汇率\s*(\d+(\.\d+)?)$', re.ASCII)
CUTOFF_RE = re.compile(r'^日切#\s*(-?\d+)$', re.ASCII)
CONVERT_RE = re.compile(r'^[zZ](\d+(\.\d+)?)$', re.ASCII)
MODIFY_RE = re.compile(r'^修改\s*(\d+(\.\d+)?)$', re.ASCII)
ARITHMETIC_CHARS_RE = re.compile(r'^[\d\s.+\-*/×÷()]+$', re.ASCII)
BINARY_OP_RE = re.compile(r'[\d.)]\s*[+\-*/×÷]\s*[-+]?[\d.(]', re.ASCII)

WHOAMI_TEXTS = {"我的ID", "我的id", "/myid"}
LIST_OPERATORS_TEXTS = {"操作人列表", "查看操作人"}
SHOW_LEDGER_TEXTS = {"总账", "账单", "查询"}
SHOW_FULL_LEDGER_TEXTS = {"结算", "全部", "完整账单"}
DAILY_SETTLE_TEXTS = {"日结算", "今日结算"}

NO_TARGET_ADD = "❌ 请回复要添加的用户的消息，或使用 @提及 该用户"
NO_TARGET_REMOVE = "❌ 请回复要移除的用户的消息"
FEE_OUT_OF_RANGE = "❌ 费率必须在 -100 到 100 之间"


def _decimal(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value)
    except (InvalidOperation, ValueError):
        return None


def _currency(dollar_sign: Optional[str]) -> Currency:
    return Currency.USD if dollar_sign else Currency.THB


def _fee_rate_in_range(pct: Decimal) -> bool:
    return FEE_RATE_MIN <= pct <= FEE_RATE_MAX


# =============================================================================
# RULES (priority order)
# =============================================================================

Rule = Callable[[str, ParseContext], Optional[Command]]


def _whoami(text: str, ctx: ParseContext) -> Optional[Command]:
    return WhoAmI() if text in WHOAMI_TEXTS else None


def _add_operator(text: str, ctx: ParseContext) -> Optional[Command]:
    if "添加权限" not in text and "添加操作人" not in text:
        return None
    target = ctx.reply_to or ctx.mention
    if target is None:
        return Unrecognized(error=NO_TARGET_ADD)
    return AddOperator(target_user_id=target.user_id, target_name=target.name)


def _remove_operator(text: str, ctx: ParseContext) -> Optional[Command]:
    if "移除权限" not in text and "删除操作人" not in text:
        return None
    if ctx.reply_to is None:
        return Unrecognized(error=NO_TARGET_REMOVE)
    return RemoveOperator(target_user_id=ctx.reply_to.user_id, target_name=ctx.reply_to.name)


def _list_operators(text: str, ctx: ParseContext) -> Optional[Command]:
    return ListOperators() if text in LIST_OPERATORS_TEXTS else None


def _amount_command(pattern: re.Pattern, build: Callable[[Decimal, Currency], Command]) -> Rule:
    def rule(text: str, ctx: ParseContext) -> Optional[Command]:
        match = pattern.match(text)
        if not match:
            return None
        amount = _decimal(match.group(1))
        if amount is None or amount <= 0:
            return Unrecognized(error="❌ 金额必须大于0")
        return build(amount, _currency(match.group(3)))
    return rule


def _exact(texts: set[str], command: Command) -> Rule:
    def rule(text: str, ctx: ParseContext) -> Optional[Command]:
        return command if text in texts else None
    return rule


def _fee_rate(pattern: re.Pattern, build: Callable[[Decimal], Command]) -> Rule:
    def rule(text: str, ctx: ParseContext) -> Optional[Command]:
        match = pattern.match(text)
        if not match:
            return None
        pct = _decimal(match.group(1))
        if pct is None or not _fee_rate_in_range(pct):
            return Unrecognized(error=FEE_OUT_OF_RANGE)
        return build(pct)
    return rule


def _delete_all(text: str, ctx: ParseContext) -> Optional[Command]:
    return DeleteAll() if "删除" in text and "账单" in text else None


def _exchange_rate(text: str, ctx: ParseContext) -> Optional[Command]:
    match = EXCHANGE_RATE_RE.match(text)
    if not match:
        return None
    rate = _decimal(match.group(1))
    if rate is None or rate <= 0:
        return Unrecognized(error="❌ 汇率必须大于0")
    return SetExchangeRate(rate=rate)


def _cutoff_hour(text: str, ctx: ParseContext) -> Optional[Command]:
    match = CUTOFF_RE.match(text)
    if not match:
        return None
    hour = int(match.group(1))
    if hour != -1 and not 0 <= hour <= 23:
        return Unrecognized(error="❌ 日切时间必须是 0-23，或 -1 表示永不刷新")
    return SetCutoffHour(hour=hour)


def _convert(text: str, ctx: ParseContext) -> Optional[Command]:
    if text in ("z0", "Z0"):
        return ShowRates()
    match = CONVERT_RE.match(text)
    if not match:
        return None
    return ConvertToUsd(amount=Decimal(match.group(1)))


def _modify(text: str, ctx: ParseContext) -> Optional[Command]:
    match = MODIFY_RE.match(text)
    if not match:
        return None
    if ctx.reply_to_message_id is None:
        return Unrecognized(error="❌ 请回复要修改的那条记账消息")
    amount = Decimal(match.group(1))
    if amount <= 0:
        return Unrecognized(error="❌ 金额必须大于0")
    return ModifyAmount(message_id=ctx.reply_to_message_id, amount=amount)


def _calculate(text: str, ctx: ParseContext) -> Optional[Command]:
    if not ARITHMETIC_CHARS_RE.match(text):
        return None
    if not any(ch.isdigit() for ch in text) or not BINARY_OP_RE.search(text):
        return None
    return Calculate(expression=text)


RULES: list[Rule] = [
    _whoami,
    _add_operator,
    _remove_operator,
    _list_operators,
    _amount_command(DEPOSIT_RE, lambda amount, currency: Deposit(amount, currency)),
    _amount_command(WITHDRAW_RE, lambda amount, currency: Withdraw(amount, currency)),
    _exact(SHOW_LEDGER_TEXTS, ShowLedger(full=False)),
    _exact(SHOW_FULL_LEDGER_TEXTS, ShowLedger(full=True)),
    _exact(DAILY_SETTLE_TEXTS, DailySettle()),
    _fee_rate(INCOME_FEE_RE, lambda pct: SetIncomeFeeRate(pct=pct)),
    _fee_rate(OUTGOING_FEE_RE, lambda pct: SetOutgoingFeeRate(pct=pct)),
    _delete_all,
    # Supplementary commands; none of these texts match a rule above
    _exact({"撤销入款"}, RevokeDeposit()),
    _exact({"撤销下发"}, RevokeWithdrawal()),
    _exchange_rate,
    _cutoff_hour,
    _exact({"切换中文"}, SetLanguage(Language.ZH)),
    _exact({"切换泰语"}, SetLanguage(Language.TH)),
    _exact({"开启所有人"}, SetAllUsersMode(enabled=True)),
    _exact({"关闭所有人"}, SetAllUsersMode(enabled=False)),
    _exact({"开启实时汇率"}, SetRealtimeRateMode(enabled=True)),
    _exact({"关闭实时汇率"}, SetRealtimeRateMode(enabled=False)),
    _exact({"删除所有操作人"}, RemoveAllOperators()),
    _convert,
    _exact({"/我"}, ShowMyBills()),
    _exact({"明细"}, ShowDetails()),
    _modify,
    _calculate,
]


def parse_command(text: str, context: Optional[ParseContext] = None) -> Command:
    """
    Parse message text into a Command.

    Args:
        text: Raw message text (trimmed here)
        context: Reply target / mention / replied message id, if any

    Returns:
        Exactly one Command; Unrecognized when nothing matches.
    """
    if not isinstance(text, str):
        return Unrecognized()

    text = text.strip()
    if not text:
        return Unrecognized()

    ctx = context or ParseContext()
    for rule in RULES:
        command = rule(text, ctx)
        if command is not None:
            return command

    return Unrecognized()


def parse_message(message: IncomingMessage) -> Command:
    """parse_command() with the context taken from an incoming message."""
    return parse_command(
        message.text,
        ParseContext(
            reply_to=message.reply_to,
            reply_to_message_id=message.reply_to_message_id,
            mention=message.mention,
        ),
    )
