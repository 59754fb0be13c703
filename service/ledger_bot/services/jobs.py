"""
Scheduled Jobs

Daily settlement and cleanup over every group known to the settings
store. Triggered over HTTP by an external cron (see main.py).

Groups are processed one after another. A failure in one group is
recorded in its GroupJobResult and the job moves on to the next group.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ledger_bot.telegram_bot.logging_config import bot_logger as logger
from ledger_bot.telegram_bot.telegram_api import send_message
from .accounting import AccountingService, get_accounting_service
from .dedup import SeenUpdates, get_seen_updates

# async (chat_id, text) -> delivered
Notifier = Callable[[str, str], Awaitable[bool]]


@dataclass
class GroupJobResult:
    group_id: str
    success: bool
    message: str
    notified: bool = False
    error: Optional[str] = None


@dataclass
class JobSummary:
    job: str
    processed: int = 0
    succeeded: int = 0
    results: list[GroupJobResult] = field(default_factory=list)
    purged_updates: int = 0

    def add(self, result: GroupJobResult) -> None:
        self.processed += 1
        if result.success:
            self.succeeded += 1
        self.results.append(result)


class ScheduledJobs:
    """Runs the per-group jobs and notifies each group's chat."""

    def __init__(
        self,
        service: AccountingService,
        notifier: Notifier,
        seen_updates: Optional[SeenUpdates] = None,
    ):
        self.service = service
        self.notifier = notifier
        self.seen_updates = seen_updates

    async def _notify(self, group_id: str, text: str) -> bool:
        settings = self.service.settings_store.get(group_id)
        if settings.muted:
            logger.info(f"Group {group_id} is muted, skipping notification")
            return False
        delivered = await self.notifier(group_id, text)
        if not delivered:
            logger.warning(f"Notification to group={group_id} was not delivered")
        return delivered

    async def _run(self, job: str, work: Callable[[str], Awaitable[str]]) -> JobSummary:
        summary = JobSummary(job=job)
        try:
            groups = self.service.settings_store.list_groups()
        except Exception as e:
            logger.error(f"[{job}] Could not list groups: {e}", exc_info=True)
            return summary

        logger.info(f"[{job}] Processing {len(groups)} group(s)")
        for group_id in groups:
            try:
                text = await work(group_id)
            except Exception as e:
                logger.error(f"[{job}] Group {group_id} failed: {e}", exc_info=True)
                summary.add(GroupJobResult(group_id, False, "failed", error=str(e)))
                continue

            try:
                notified = await self._notify(group_id, text)
            except Exception as e:
                logger.warning(f"[{job}] Could not notify group={group_id}: {e}")
                notified = False
            summary.add(GroupJobResult(group_id, True, text, notified=notified))

        logger.info(f"[{job}] Done: {summary.succeeded}/{summary.processed} succeeded")
        return summary

    async def run_daily_settlement(self) -> JobSummary:
        async def settle(group_id: str) -> str:
            await self.service.refresh_live_rate(group_id)
            _, text = self.service.settle_group(group_id)
            return text

        return await self._run("daily-settlement", settle)

    async def run_cleanup(self) -> JobSummary:
        async def cleanup(group_id: str) -> str:
            deposits, withdrawals = self.service.delete_group(group_id)
            return f"🧹 账单已清理\n入款: {deposits}笔\n下发: {withdrawals}笔"

        summary = await self._run("cleanup", cleanup)

        if self.seen_updates is not None:
            try:
                summary.purged_updates = await self.seen_updates.purge_expired()
            except Exception as e:
                logger.warning(f"[cleanup] Could not purge seen updates: {e}")
        return summary


# Singleton instance
_scheduled_jobs: Optional[ScheduledJobs] = None


def get_scheduled_jobs() -> ScheduledJobs:
    global _scheduled_jobs
    if _scheduled_jobs is None:
        _scheduled_jobs = ScheduledJobs(
            service=get_accounting_service(),
            notifier=send_message,
            seen_updates=get_seen_updates(),
        )
    return _scheduled_jobs
