"""Scheduled AQ starts.

Every minute the scheduler looks for schedule entries whose UTC weekday and
``HH:MM`` match the current minute and starts a run for each, unless the
owning alliance has an active skip.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncEngine

from aqbot.core.ports import ChatSurface, RoleResolver
from aqbot.core.schedule_times import format_hhmm, utc_weekday
from aqbot.core.tracker import StartRequest, TrackerError, start_run
from aqbot.db.engine import get_session
from aqbot.db.repository import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DueStart:
    schedule_id: str
    alliance_id: str
    guild_id: str
    battlegroup: int
    aq_day: int
    channel_id: str
    role_id: str


async def is_skipped(repo: Repository, alliance_id: str, now: datetime) -> bool:
    skip_until = await repo.get_aq_skip(alliance_id)
    return skip_until is not None and now < skip_until


async def due_schedules(repo: Repository, now: datetime) -> list[DueStart]:
    """Schedule entries firing this UTC minute, minus alliances that are skipping."""
    now = now.astimezone(UTC)
    rows = await repo.get_aq_schedules_for_slot(utc_weekday(now), format_hhmm(now.time()))
    due: list[DueStart] = []
    for row in rows:
        if await is_skipped(repo, row.alliance_id, now):
            logger.info(
                "aq_auto_start_skipped alliance=%s battlegroup=%d", row.alliance_id, row.battlegroup
            )
            continue
        alliance = await repo.get_alliance(row.alliance_id)
        if alliance is None:
            continue
        due.append(
            DueStart(
                schedule_id=row.id,
                alliance_id=row.alliance_id,
                guild_id=alliance.guild_id,
                battlegroup=row.battlegroup,
                aq_day=row.aq_day,
                channel_id=row.channel_id,
                role_id=row.role_id,
            )
        )
    return due


async def tick_scheduled_starts(
    engine: AsyncEngine,
    chat: ChatSurface,
    roles_for_guild: Callable[[str], RoleResolver | None],
    now: datetime | None = None,
) -> int:
    """Start every run due this minute. Returns how many started.

    Each schedule is handled in its own session; a failure is logged and the
    remaining schedules still run.
    """
    now = now or datetime.now(UTC)
    try:
        async with get_session(engine) as session:
            due = await due_schedules(Repository(session), now)
    except Exception:  # last-resort handler so the scheduler job never dies
        logger.exception("aq_auto_start_tick_error")
        return 0

    started = 0
    for entry in due:
        roles = roles_for_guild(entry.guild_id)
        if roles is None:
            logger.warning(
                "aq_auto_start_no_guild guild=%s schedule=%s", entry.guild_id, entry.schedule_id
            )
            continue
        request = StartRequest(
            guild_id=entry.guild_id,
            channel_id=entry.channel_id,
            role_id=entry.role_id,
            day=entry.aq_day,
        )
        try:
            async with get_session(engine) as session:
                await start_run(Repository(session), chat, roles, request, now=now)
            started += 1
            logger.info(
                "aq_auto_start_done alliance=%s battlegroup=%d channel=%s",
                entry.alliance_id,
                entry.battlegroup,
                entry.channel_id,
            )
        except TrackerError as exc:
            logger.warning(
                "aq_auto_start_rejected schedule=%s reason=%s", entry.schedule_id, exc
            )
        except Exception:  # one broken schedule must not block the others
            logger.exception("aq_auto_start_failed schedule=%s", entry.schedule_id)
    return started
