"""
Tests for the scheduled daily settlement and cleanup jobs.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import GROUP, make_record
from ledger_bot.models import RecordStatus
from ledger_bot.services.dedup import InMemorySeenUpdates
from ledger_bot.services.jobs import ScheduledJobs

BROKEN_GROUP = "-2002"
MUTED_GROUP = "-3003"


@pytest.fixture
def notifier():
    return AsyncMock(return_value=True)


@pytest.fixture
def jobs(service, notifier):
    return ScheduledJobs(service=service, notifier=notifier)


class TestDailySettlement:
    @pytest.mark.asyncio
    async def test_settles_every_group(self, jobs, service, ledger, settings_store, notifier):
        settings_store.upsert(GROUP)
        settings_store.upsert("-4004")
        ledger.append(make_record(100))
        ledger.append(make_record(200, group_id="-4004"))

        summary = await jobs.run_daily_settlement()

        assert summary.processed == 2
        assert summary.succeeded == 2
        assert all(r.status is RecordStatus.SETTLED for r in ledger.records)
        assert notifier.await_count == 2

    @pytest.mark.asyncio
    async def test_failing_group_does_not_stop_the_rest(self, jobs, ledger, settings_store, notifier):
        settings_store.upsert(BROKEN_GROUP, exchange_rate=Decimal("0"))
        settings_store.upsert(GROUP)
        ledger.append(make_record(100))

        summary = await jobs.run_daily_settlement()

        results = {r.group_id: r for r in summary.results}
        assert summary.processed == 2
        assert summary.succeeded == 1
        assert not results[BROKEN_GROUP].success
        assert results[BROKEN_GROUP].error
        assert results[GROUP].success
        assert ledger.records[0].status is RecordStatus.SETTLED
        notifier.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_muted_group_is_not_notified(self, jobs, settings_store, notifier):
        settings_store.upsert(MUTED_GROUP, muted=True)

        summary = await jobs.run_daily_settlement()

        assert summary.succeeded == 1
        assert summary.results[0].notified is False
        notifier.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_the_result(self, service, ledger, settings_store):
        notifier = AsyncMock(side_effect=RuntimeError("network"))
        jobs = ScheduledJobs(service=service, notifier=notifier)
        settings_store.upsert(GROUP)
        ledger.append(make_record(100))

        summary = await jobs.run_daily_settlement()

        assert summary.succeeded == 1
        assert summary.results[0].notified is False
        assert ledger.records[0].status is RecordStatus.SETTLED

    @pytest.mark.asyncio
    async def test_realtime_group_settles_at_live_rate(self, jobs, service, ledger, settings_store):
        service.rate_source = AsyncMock(return_value=Decimal("40"))
        settings_store.upsert(GROUP, realtime_rate=True)
        ledger.append(make_record(400))

        summary = await jobs.run_daily_settlement()

        assert summary.succeeded == 1
        assert "USDT汇率: 40.00" in summary.results[0].message
        service.rate_source.assert_awaited_once()


class TestCleanup:
    @pytest.mark.asyncio
    async def test_deletes_active_records(self, jobs, ledger, settings_store):
        settings_store.upsert(GROUP)
        ledger.append(make_record(100))
        ledger.append(make_record(5, status=RecordStatus.SETTLED, record_id="INC_settled"))

        summary = await jobs.run_cleanup()

        statuses = {r.id: r.status for r in ledger.records}
        assert summary.succeeded == 1
        assert statuses["INC_settled"] is RecordStatus.SETTLED
        assert list(statuses.values()).count(RecordStatus.DELETED) == 1

    @pytest.mark.asyncio
    async def test_purges_expired_updates(self, service, notifier):
        now = [0.0]
        seen = InMemorySeenUpdates(ttl_seconds=60, clock=lambda: now[0])
        await seen.mark_seen(1)
        now[0] = 120.0

        jobs = ScheduledJobs(service=service, notifier=notifier, seen_updates=seen)
        summary = await jobs.run_cleanup()

        assert summary.purged_updates == 1

