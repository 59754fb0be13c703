"""
Telegram Bot API client.

Thin httpx wrapper for the two calls the ledger needs outside of the
python-telegram-bot handler flow: pushing messages to a group (jobs,
replies) and checking whether a user administers a group.
"""

import httpx
from typing import Optional

from ledger_bot.config import get_settings
from .logging_config import bot_logger as logger

ADMIN_STATUSES = {"creator", "administrator"}
TIMEOUT_SECONDS = 10.0


def _api_url(method: str) -> str:
    settings = get_settings()
    return f"https://api.telegram.org/bot{settings.telegram_bot_token}/{method}"


async def send_message(
    chat_id: int | str,
    text: str,
    parse_mode: Optional[str] = None,
    reply_markup: Optional[dict] = None
) -> bool:
    """
    Send message to a Telegram chat.

    Never raises: a failed delivery is logged and reported as False.

    Args:
        chat_id: Telegram chat ID
        text: Message text
        parse_mode: Optional parse mode (Markdown, HTML)
        reply_markup: Optional inline keyboard markup
    """
    payload = {
        "chat_id": chat_id,
        "text": text
    }

    if parse_mode:
        payload["parse_mode"] = parse_mode
    if reply_markup:
        payload["reply_markup"] = reply_markup

    try:
        async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS) as client:
            response = await client.post(_api_url("sendMessage"), json=payload)
            response.raise_for_status()
        return True
    except httpx.HTTPError as e:
        logger.warning(f"sendMessage to chat_id={chat_id} failed: {e}")
        return False


async def is_chat_admin(chat_id: int | str, user_id: int | str) -> bool:
    """
    Whether the user is the creator or an administrator of the chat.

    One getChatMember call per invocation. Raises httpx.HTTPError on
    transport failure; the permission resolver treats that as non-admin.
    """
    async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS) as client:
        response = await client.post(
            _api_url("getChatMember"),
            json={"chat_id": chat_id, "user_id": int(user_id)}
        )
        response.raise_for_status()
        data = response.json()

    if not data.get("ok"):
        logger.warning(f"getChatMember not ok for user_id={user_id} in chat_id={chat_id}: {data.get('description')}")
        return False

    return data.get("result", {}).get("status") in ADMIN_STATUSES
