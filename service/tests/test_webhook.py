"""
Tests for the HTTP surface and the webhook update path.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from telegram import Update

from ledger_bot import main
from ledger_bot.config import Settings
from ledger_bot.errors import ConfigurationError
from ledger_bot.services.dedup import InMemorySeenUpdates
from ledger_bot.services.jobs import JobSummary
from ledger_bot.telegram_bot import bot
from ledger_bot.telegram_bot.handlers import incoming_from_update


def update_payload(update_id=1, text="+100", **message_fields):
    message = {
        "message_id": 10,
        "date": 1760760000,
        "chat": {"id": -1001, "type": "group", "title": "ledger"},
        "from": {"id": 1, "is_bot": False, "first_name": "Alice", "username": "alice"},
        "text": text,
    }
    message.update(message_fields)
    return {"update_id": update_id, "message": message}


@pytest.fixture
def settings(monkeypatch):
    settings = Settings(
        telegram_bot_token="",
        telegram_webhook_secret="s3cret",
        cron_secret="cron",
        environment="test",
    )
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    return settings


@pytest.fixture
def client(settings):
    return TestClient(main.app)


class TestEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["environment"] == "test"

    def test_webhook_rejects_wrong_secret(self, client, monkeypatch):
        handler = AsyncMock()
        monkeypatch.setattr(main, "handle_telegram_update", handler)

        response = client.post(
            "/telegram/webhook",
            json=update_payload(),
            headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
        )

        assert response.status_code == 403
        handler.assert_not_called()

    def test_webhook_accepts_update(self, client, monkeypatch):
        handler = AsyncMock(return_value=True)
        monkeypatch.setattr(main, "handle_telegram_update", handler)

        response = client.post(
            "/telegram/webhook",
            json=update_payload(),
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        handler.assert_called_once_with(update_payload())

    def test_cron_requires_secret(self, client, monkeypatch):
        monkeypatch.setattr(main, "get_scheduled_jobs", MagicMock())
        response = client.post("/cron/daily-settlement", headers={"X-Cron-Secret": "nope"})
        assert response.status_code == 403

    def test_cron_daily_settlement(self, client, monkeypatch):
        jobs = MagicMock()
        jobs.run_daily_settlement = AsyncMock(return_value=JobSummary(job="daily-settlement", processed=2, succeeded=2))
        monkeypatch.setattr(main, "get_scheduled_jobs", lambda: jobs)

        response = client.post("/cron/daily-settlement", headers={"X-Cron-Secret": "cron"})

        assert response.status_code == 200
        body = response.json()
        assert body["job"] == "daily-settlement"
        assert body["succeeded"] == 2

    def test_cron_without_configuration(self, client, monkeypatch):
        def not_configured():
            raise ConfigurationError("GOOGLE_SHEETS_ID is not set")

        monkeypatch.setattr(main, "get_scheduled_jobs", not_configured)
        response = client.post("/cron/cleanup", headers={"X-Cron-Secret": "cron"})
        assert response.status_code == 503


class TestHandleTelegramUpdate:
    @pytest.fixture
    def application(self, monkeypatch):
        application = MagicMock()
        application.bot = None
        application.process_update = AsyncMock()
        monkeypatch.setattr(bot, "get_bot_application", lambda: application)
        return application

    @pytest.mark.asyncio
    async def test_repeated_delivery_is_processed_once(self, application, monkeypatch):
        seen = InMemorySeenUpdates(ttl_seconds=3600)
        monkeypatch.setattr(bot, "get_seen_updates", lambda: seen)

        assert await bot.handle_telegram_update(update_payload(update_id=7)) is True
        assert await bot.handle_telegram_update(update_payload(update_id=7)) is False
        application.process_update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dedup_failure_still_processes(self, application, monkeypatch):
        broken = MagicMock()
        broken.mark_seen = AsyncMock(side_effect=RuntimeError("supabase down"))
        monkeypatch.setattr(bot, "get_seen_updates", lambda: broken)

        assert await bot.handle_telegram_update(update_payload(update_id=8)) is True
        application.process_update.assert_awaited_once()


class TestIncomingFromUpdate:
    def test_plain_message(self):
        update = Update.de_json(update_payload(text="+100"), None)
        incoming = incoming_from_update(update)

        assert incoming.chat_id == -1001
        assert incoming.group_id == "-1001"
        assert incoming.user_id == "1"
        assert incoming.username == "alice"
        assert incoming.text == "+100"
        assert incoming.message_id == 10
        assert incoming.reply_to is None

    def test_reply_and_mention(self):
        payload = update_payload(
            text="添加操作人 Carol",
            reply_to_message={
                "message_id": 9,
                "date": 1760759000,
                "chat": {"id": -1001, "type": "group", "title": "ledger"},
                "from": {"id": 2, "is_bot": False, "first_name": "Bob"},
                "text": "+50",
            },
            entities=[{
                "type": "text_mention",
                "offset": 6,
                "length": 5,
                "user": {"id": 5, "is_bot": False, "first_name": "Carol"},
            }],
        )
        incoming = incoming_from_update(Update.de_json(payload, None))

        assert incoming.reply_to.user_id == "2"
        assert incoming.reply_to.name == "Bob"
        assert incoming.reply_to_message_id == 9
        assert incoming.mention.user_id == "5"
