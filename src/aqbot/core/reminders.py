"""AQ reminder scheduler: one-shot pings for players who have not moved.

Driven by an APScheduler cron job. Each tick scans every ACTIVE run, works
out which enabled tiers are due, commits their one-shot flags and then pings
the slackers in the run's channel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from aqbot.core.ports import ChatSurface
from aqbot.core.schedule_times import fire_time_today
from aqbot.db.engine import get_session
from aqbot.db.repository import Repository, StaleRunError
from aqbot.models.aq import AQRun, ReminderSettings, ReminderTier

logger = logging.getLogger(__name__)


@dataclass
class ReminderTickState:
    """Tracks whether a reminder tick is in flight so overlapping ticks skip."""

    is_running: bool = False


def compute_slackers(run: AQRun, tier: ReminderTier) -> list[str]:
    """Participants with any unfinished section in the tier's scope, de-duplicated."""
    slackers: set[str] = set()
    for section in tier.sections:
        for user_id, entry in run.section_progress[section].items():
            if not entry.done:
                slackers.add(user_id)
    return [uid for uid in run.participants() if uid in slackers]


def tier_fire_time(
    settings: ReminderSettings, tier: ReminderTier, now: datetime
) -> datetime | None:
    """Today's fire time for the tier, with today taken in the alliance time zone."""
    return fire_time_today(settings.time_for(tier), settings.timezone, now)


def due_tiers(run: AQRun, settings: ReminderSettings, now: datetime) -> list[ReminderTier]:
    """Enabled tiers that have not fired yet and whose fire time has passed."""
    due: list[ReminderTier] = []
    for tier in ReminderTier:
        if not settings.is_enabled(tier) or run.reminder_sent(tier):
            continue
        fire_at = tier_fire_time(settings, tier, now)
        if fire_at is None:
            logger.warning(
                "aq_reminder_bad_time alliance=%s tier=%s time=%r",
                run.alliance_id,
                tier.value,
                settings.time_for(tier),
            )
            continue
        if now >= fire_at:
            due.append(tier)
    return due


def format_reminder(tier: ReminderTier, slackers: list[str]) -> str:
    mentions = " ".join(f"<@{uid}>" for uid in slackers)
    if tier is ReminderTier.FINAL:
        return f"🚨 Final push! Map not complete. Please clear your paths: {mentions}"
    return f"Friendly reminder to move in AQ: {mentions}"


async def _remind_run(
    engine: AsyncEngine,
    chat: ChatSurface,
    channel_id: str,
    now: datetime,
) -> int:
    """Consume every due tier of one run, then ping its slackers.

    Flags are committed before anything is posted.
    """
    outgoing: list[tuple[ReminderTier, list[str]]] = []
    async with get_session(engine) as session:
        repo = Repository(session)
        run = await repo.get_aq_run(channel_id)
        if run is None or not run.is_active:
            return 0
        settings = await repo.get_reminder_settings(run.alliance_id)
        if settings is None:
            logger.debug("aq_reminder_skip: no settings alliance=%s", run.alliance_id)
            return 0

        for tier in due_tiers(run, settings, now):
            outgoing.append((tier, compute_slackers(run, tier)))
            run.mark_reminder_sent(tier)
        if not outgoing:
            return 0
        await repo.set_aq_run(run)

    sent = 0
    for tier, slackers in outgoing:
        logger.info(
            "aq_reminder_fired channel=%s tier=%s slackers=%d",
            channel_id,
            tier.value,
            len(slackers),
        )
        if not slackers:
            continue
        try:
            await chat.post_message(run.channel_id, format_reminder(tier, slackers))
            sent += 1
        except Exception:  # a failed ping still consumes the tier
            logger.exception("aq_reminder_send_failed channel=%s tier=%s", channel_id, tier.value)
    return sent


async def tick_reminders(
    engine: AsyncEngine,
    chat: ChatSurface,
    state: ReminderTickState | None = None,
    now: datetime | None = None,
) -> int:
    """Fire every due reminder tier across all ACTIVE runs.

    Returns the number of reminder messages posted. Never raises: failures are
    logged per run so one bad run cannot stall the rest.
    """
    if state is not None and state.is_running:
        logger.info("aq_reminder_tick_skip: previous tick still running")
        return 0

    if state is not None:
        state.is_running = True
    now = now or datetime.now(UTC)
    total = 0
    try:
        async with get_session(engine) as session:
            runs = await Repository(session).list_aq_runs()
        channel_ids = [run.channel_id for run in runs if run.is_active]

        for channel_id in channel_ids:
            try:
                total += await _remind_run(engine, chat, channel_id, now)
            except StaleRunError:
                logger.warning("aq_reminder_stale channel=%s", channel_id)
            except SQLAlchemyError:
                logger.exception("aq_reminder_db_error channel=%s", channel_id)
    except Exception:  # last-resort handler so the scheduler job never dies
        logger.exception("aq_reminder_tick_error")
    finally:
        if state is not None:
            state.is_running = False

    if total:
        logger.info("aq_reminder_tick_done sent=%d", total)
    return total
