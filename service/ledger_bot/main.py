import asyncio
from dataclasses import asdict

from fastapi import FastAPI, Request, Header, HTTPException

from ledger_bot.config import get_settings
from ledger_bot.errors import ConfigurationError
from ledger_bot.services.jobs import get_scheduled_jobs
from ledger_bot.telegram_bot.bot import handle_telegram_update, initialize_bot, shutdown_bot
from ledger_bot.telegram_bot.logging_config import bot_logger as logger

app = FastAPI(
    title="Ledger Bot API",
    description="Telegram group ledger: deposits, withdrawals, fee-adjusted settlement",
    version="0.1.0"
)

# Background webhook tasks, kept referenced until they finish
_background_tasks: set[asyncio.Task] = set()


# Lifecycle events
@app.on_event("startup")
async def startup_event():
    """Initialize bot on startup."""
    if not get_settings().telegram_bot_token:
        logger.warning("[STARTUP] TELEGRAM_BOT_TOKEN is not set, Telegram bot disabled")
        return
    logger.info("[STARTUP] Initializing Telegram bot...")
    await initialize_bot()
    logger.info("[STARTUP] Bot ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown bot on application shutdown."""
    logger.info("[SHUTDOWN] Shutting down Telegram bot...")
    await shutdown_bot()
    logger.info("[SHUTDOWN] Bot stopped")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "ok",
        "environment": settings.environment,
        "version": "0.1.0"
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Ledger Bot API",
        "docs": "/docs"
    }


# Telegram webhook endpoint
@app.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: str = Header(None)
):
    """
    Webhook endpoint for Telegram updates.

    Telegram sends updates here when messages arrive.
    """
    settings = get_settings()

    # Verify secret token if configured
    if settings.telegram_webhook_secret:
        if x_telegram_bot_api_secret_token != settings.telegram_webhook_secret:
            raise HTTPException(status_code=403, detail="Invalid secret token")

    update_data = await request.json()

    # Handle update in background (fire-and-forget for fast 200 OK)
    task = asyncio.create_task(handle_telegram_update(update_data))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    return {"ok": True}


def _check_cron_secret(x_cron_secret: str | None) -> None:
    settings = get_settings()
    if settings.cron_secret and x_cron_secret != settings.cron_secret:
        raise HTTPException(status_code=403, detail="Invalid cron secret")


# Scheduled job triggers (called by an external cron)
@app.post("/cron/daily-settlement")
async def cron_daily_settlement(x_cron_secret: str = Header(None)):
    """Settle today's records in every group."""
    _check_cron_secret(x_cron_secret)
    try:
        summary = await get_scheduled_jobs().run_daily_settlement()
    except ConfigurationError as e:
        logger.error(f"Daily settlement not run: {e.message}")
        raise HTTPException(status_code=503, detail=e.message)
    return asdict(summary)


@app.post("/cron/cleanup")
async def cron_cleanup(x_cron_secret: str = Header(None)):
    """Clear every group's Active records and purge old update ids."""
    _check_cron_secret(x_cron_secret)
    try:
        summary = await get_scheduled_jobs().run_cleanup()
    except ConfigurationError as e:
        logger.error(f"Cleanup not run: {e.message}")
        raise HTTPException(status_code=503, detail=e.message)
    return asdict(summary)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
