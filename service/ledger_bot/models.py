"""
Ledger data model.

Records, per-group settings and operators as stored in the spreadsheet,
plus the transport-neutral view of an incoming Telegram message.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import ValidationError


class Currency(str, Enum):
    THB = "THB"
    USD = "USD"

    @property
    def symbol(self) -> str:
        return "$" if self is Currency.USD else "฿"


class RecordKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"

    @property
    def id_prefix(self) -> str:
        return "INC" if self is RecordKind.DEPOSIT else "OUT"


class RecordStatus(str, Enum):
    # Values are the labels written to the sheet
    ACTIVE = "正常"
    REVERSED = "已撤销"
    DELETED = "已删除"
    SETTLED = "已结算"

    def can_transition_to(self, target: "RecordStatus") -> bool:
        return self is RecordStatus.ACTIVE and target is not RecordStatus.ACTIVE


class OperatorStatus(str, Enum):
    ACTIVE = "正常"
    REMOVED = "已删除"


class Language(str, Enum):
    ZH = "zh"
    TH = "th"


@dataclass
class Record:
    """A single deposit or withdrawal row."""
    id: str
    kind: RecordKind
    timestamp: datetime
    group_id: str
    user_id: str
    username: str
    amount: Decimal
    currency: Currency = Currency.THB
    status: RecordStatus = RecordStatus.ACTIVE
    source_message_id: Optional[str] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise ValidationError(f"金额必须大于0: {self.amount}")

    def with_status(self, status: RecordStatus) -> "Record":
        if not self.status.can_transition_to(status):
            raise ValidationError(
                f"记录 {self.id} 状态不可从 {self.status.value} 变更为 {status.value}"
            )
        return replace(self, status=status)


@dataclass
class GroupSettings:
    group_id: str
    exchange_rate: Decimal = Decimal("35")  # THB per USD
    income_fee_rate_pct: Decimal = Decimal("5")
    outgoing_fee_rate_pct: Decimal = Decimal("0")
    cutoff_hour: int = 6  # -1 = never auto-refresh
    all_users_mode: bool = False
    realtime_rate: bool = False
    muted: bool = False
    language: Language = Language.ZH
    last_refresh: Optional[datetime] = None


def default_settings(group_id: str) -> GroupSettings:
    """The one place group defaults come from."""
    return GroupSettings(group_id=group_id)


@dataclass
class Operator:
    group_id: str
    user_id: str
    username: str
    added_at: Optional[datetime] = None
    status: OperatorStatus = OperatorStatus.ACTIVE


@dataclass(frozen=True)
class TargetUser:
    """A user referenced by a command (reply target or text mention)."""
    user_id: str
    name: str


@dataclass
class IncomingMessage:
    """What the accounting service needs to know about a Telegram message."""
    chat_id: int
    user_id: str
    username: str
    text: str
    display_name: str = ""
    update_id: Optional[int] = None
    message_id: Optional[int] = None
    reply_to: Optional[TargetUser] = None
    reply_to_message_id: Optional[int] = None
    mention: Optional[TargetUser] = None

    @property
    def group_id(self) -> str:
        return str(self.chat_id)
