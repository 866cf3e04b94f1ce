"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from aqbot.api.aq import router as aq_router
from aqbot.config import Settings
from aqbot.core.reminders import ReminderTickState
from aqbot.db.engine import create_engine, create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, optionally start the Discord bot and scheduler."""
    settings: Settings = app.state.settings

    engine = create_engine(settings.database_url)
    await create_tables(engine)
    app.state.engine = engine
    app.state.reminder_state = ReminderTickState()

    # Start Discord bot if configured
    discord_bot = None
    from aqbot.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from aqbot.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, engine)
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")
    app.state.discord_bot = discord_bot

    # Reminders and scheduled starts both post through the bot
    scheduler = None
    if settings.aq_scheduler_enabled and discord_bot is not None:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.cron import CronTrigger

        from aqbot.core.reminders import tick_reminders

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            tick_reminders,
            trigger=CronTrigger.from_crontab(settings.aq_reminder_cron),
            kwargs={
                "engine": engine,
                "chat": discord_bot.chat,
                "state": app.state.reminder_state,
            },
            id="aq_reminders",
            name="Send AQ reminders",
            replace_existing=True,
        )
        scheduler.add_job(
            discord_bot.run_scheduled_starts,
            trigger=CronTrigger.from_crontab(settings.aq_schedule_cron),
            id="aq_scheduled_starts",
            name="Start scheduled AQ runs",
            replace_existing=True,
        )
        scheduler.start()
        logger.info(
            "scheduler_started reminder_cron=%s schedule_cron=%s",
            settings.aq_reminder_cron,
            settings.aq_schedule_cron,
        )
    else:
        logger.info("scheduler_disabled")
    app.state.scheduler = scheduler

    yield

    # Shutdown scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    # Shutdown Discord bot if running
    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the aqbot FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.aqbot_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="aqbot",
        version="0.1.0",
        description="Alliance Quest tracker for Discord",
        docs_url="/docs" if settings.aqbot_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(aq_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.aqbot_env}

    return app


app = create_app()
