"""
Telegram message and command handlers.

Thin layer between python-telegram-bot and the accounting service:
- Map the PTB Update to an IncomingMessage
- Hand it to AccountingService.handle()
- Reply with whatever text comes back (nothing for non-commands)
"""

from typing import Optional

from telegram import MessageEntity, Update, User
from telegram.ext import ContextTypes

from ledger_bot.errors import ConfigurationError
from ledger_bot.models import IncomingMessage, TargetUser
from ledger_bot.services.accounting import get_accounting_service
from .logging_config import bot_logger as logger

GENERIC_ERROR = "❌ 处理消息时出错，请稍后再试"


def _target(user: Optional[User]) -> Optional[TargetUser]:
    if user is None:
        return None
    return TargetUser(user_id=str(user.id), name=user.full_name or user.username or str(user.id))


def incoming_from_update(update: Update) -> Optional[IncomingMessage]:
    """Transport-neutral view of a text message update; None if there is none."""
    message = update.effective_message
    user = update.effective_user
    if message is None or user is None or message.text is None:
        return None

    reply = message.reply_to_message
    mention = None
    for entity in message.entities or ():
        if entity.type == MessageEntity.TEXT_MENTION and entity.user is not None:
            mention = _target(entity.user)
            break

    return IncomingMessage(
        chat_id=message.chat_id,
        user_id=str(user.id),
        username=user.username or "",
        text=message.text,
        display_name=user.full_name or "",
        update_id=update.update_id,
        message_id=message.message_id,
        reply_to=_target(reply.from_user) if reply else None,
        reply_to_message_id=reply.message_id if reply else None,
        mention=mention,
    )


async def handle_start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command."""
    user = update.effective_user
    welcome_text = f"""👋 你好, {user.first_name}!

我是群记账机器人，把我拉进群并设为管理员即可开始记账。

<b>记账:</b>
+1000  入款 1000 泰铢
+100$  入款 100 美元
-500   下发 500

<b>查询:</b>
总账 / 账单 / 查询 — 简要账单
结算 / 全部 — 完整账单

发送 /help 查看全部命令"""

    await update.message.reply_text(welcome_text, parse_mode="HTML")


async def handle_help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    help_text = """📖 <b>命令列表</b>

<b>记账:</b>
+金额 / +金额$ — 入款
-金额 / -金额$ — 下发
撤销入款 / 撤销下发 — 撤销最近一笔
修改金额 (回复记账消息) — 如 修改500

<b>账单:</b>
总账 / 账单 / 查询 — 简要账单
结算 / 全部 / 完整账单 — 完整账单
明细 — 最近记录
/我 — 我的账单
日结算 / 今日结算 — 结算今日账单
删除账单 — 删除全部账单

<b>设置:</b>
入款费率5 / 下发费率0 — 费率
设置汇率35 — USDT 汇率
日切#6 — 每日切账时间 (-1 关闭)
切换中文 / 切换泰语 — 报表语言
z0 — 查看汇率, z100 — 换算 USDT

<b>权限 (管理员):</b>
添加操作人 (回复或 @提及) / 删除操作人 (回复)
操作人列表 / 删除所有操作人
开启所有人 / 关闭所有人
开启实时汇率 / 关闭实时汇率

<b>其他:</b>
我的ID — 查看自己的 ID
100+200*3 — 计算器"""

    await update.message.reply_text(help_text, parse_mode="HTML")


async def handle_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle incoming text message.

    Non-command text gets no reply. Expected failures come back from the
    service as reply text; anything else is logged and answered with a
    generic apology.
    """
    incoming = incoming_from_update(update)
    if incoming is None:
        return

    logger.info(
        f"Received message update_id={incoming.update_id} from user_id={incoming.user_id} "
        f"in chat_id={incoming.chat_id}, text_len={len(incoming.text)}"
    )

    try:
        service = get_accounting_service()
        reply = await service.handle(incoming)
    except ConfigurationError as e:
        logger.error(f"Ledger is not configured: {e.message}")
        return
    except Exception as e:
        logger.error(f"Failed to handle message in chat_id={incoming.chat_id}: {e}", exc_info=True)
        await update.effective_message.reply_text(GENERIC_ERROR)
        return

    if reply:
        await update.effective_message.reply_text(reply)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors in handlers."""
    logger.error(f"Bot error: {context.error}", exc_info=context.error)

    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text(GENERIC_ERROR)
