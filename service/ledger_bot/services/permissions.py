"""
Permission Resolver.

Decides whether a user may change a group's ledger:
admin/creator of the Telegram group, else all-users mode, else an
Active entry in the group's operator list.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable

from ledger_bot.telegram_bot.logging_config import bot_logger as logger

REASON_ADMIN = "admin"
REASON_ALL_USERS = "all-users-mode"
REASON_OPERATOR = "operator"
REASON_DENIED = "not an operator, all-users-mode disabled"

# async (chat_id, user_id) -> is admin/creator
AdminCheck = Callable[[str, str], Awaitable[bool]]


@dataclass(frozen=True)
class Authorization:
    allowed: bool
    reason: str

    @property
    def is_admin(self) -> bool:
        return self.allowed and self.reason == REASON_ADMIN


class PermissionResolver:
    """
    Resolves permissions against the Telegram admin list, group settings
    and the operator store.

    The admin lookup is one network call per invocation and is never
    cached. If it fails the user is treated as a non-admin.
    """

    def __init__(self, is_admin: AdminCheck, settings_store, operator_store):
        self.is_admin = is_admin
        self.settings_store = settings_store
        self.operator_store = operator_store

    async def check_admin(self, group_id: str, user_id: str) -> bool:
        try:
            return bool(await self.is_admin(group_id, user_id))
        except Exception as e:
            logger.warning(f"Admin lookup failed for user_id={user_id} in group={group_id}, treating as non-admin: {e}")
            return False

    async def authorize(self, group_id: str, user_id: str) -> Authorization:
        if await self.check_admin(group_id, user_id):
            return Authorization(True, REASON_ADMIN)

        settings = self.settings_store.get(group_id)
        if settings.all_users_mode:
            return Authorization(True, REASON_ALL_USERS)

        if self.operator_store.is_active(group_id, user_id):
            return Authorization(True, REASON_OPERATOR)

        return Authorization(False, REASON_DENIED)
