"""Operator shortcuts for the aqbot database.

Usage:
    python scripts/aq_admin.py register GUILD_ID NAME [TIMEZONE]  # Register an alliance
    python scripts/aq_admin.py status                            # Print alliances and live runs
    python scripts/aq_admin.py clear CHANNEL_ID                  # Drop a stuck run record

Uses DATABASE_URL, falling back to the local SQLite database (aqbot.db).
"""

from __future__ import annotations

import asyncio
import os
import sys

from sqlalchemy import select

from aqbot.core.schedule_times import resolve_timezone
from aqbot.db.engine import create_engine, create_tables, get_session
from aqbot.db.models import AllianceRow
from aqbot.db.repository import Repository

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///aqbot.db")


async def register(guild_id: str, name: str, timezone: str = "UTC"):
    if resolve_timezone(timezone) is None:
        print(f"Unknown time zone: {timezone}")
        return
    engine = create_engine(DATABASE_URL)
    await create_tables(engine)
    async with get_session(engine) as session:
        repo = Repository(session)
        existing = await repo.get_alliance_by_guild(guild_id)
        if existing:
            print(f"Guild {guild_id} is already registered as {existing.name} ({existing.id}).")
        else:
            alliance = await repo.create_alliance(guild_id, name, timezone=timezone)
            print(f"Registered {alliance.name} ({alliance.id}) in {alliance.timezone}.")
    await engine.dispose()


async def status():
    engine = create_engine(DATABASE_URL)
    await create_tables(engine)
    async with get_session(engine) as session:
        repo = Repository(session)
        result = await session.execute(select(AllianceRow).order_by(AllianceRow.name))
        alliances = result.scalars().all()
        print(f"Alliances: {len(alliances)}")
        for alliance in alliances:
            runs = await repo.list_aq_runs(alliance.id)
            schedules = await repo.get_aq_schedules(alliance.id)
            skip = await repo.get_aq_skip(alliance.id)
            print(f"  {alliance.name} guild={alliance.guild_id} tz={alliance.timezone}")
            print(f"    schedules={len(schedules)} skip_until={skip.isoformat() if skip else '-'}")
            for run in runs:
                print(
                    f"    channel={run.channel_id} day={run.day} "
                    f"status={run.map_status_label!r} players={len(run.participants())}"
                )
    await engine.dispose()


async def clear(channel_id: str):
    engine = create_engine(DATABASE_URL)
    async with get_session(engine) as session:
        repo = Repository(session)
        run = await repo.get_aq_run(channel_id)
        if run is None:
            print(f"No run for channel {channel_id}.")
        else:
            await repo.clear_aq_run(channel_id)
            print(f"Cleared day {run.day} run in channel {channel_id}.")
    await engine.dispose()


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return

    cmd = sys.argv[1]
    if cmd == "register":
        if len(sys.argv) < 4:
            print("Usage: aq_admin.py register GUILD_ID NAME [TIMEZONE]")
            return
        timezone = sys.argv[4] if len(sys.argv) > 4 else "UTC"
        asyncio.run(register(sys.argv[2], sys.argv[3], timezone))
    elif cmd == "status":
        asyncio.run(status())
    elif cmd == "clear":
        if len(sys.argv) < 3:
            print("Usage: aq_admin.py clear CHANNEL_ID")
            return
        asyncio.run(clear(sys.argv[2]))
    else:
        print(f"Unknown command: {cmd}")
        print(__doc__)


if __name__ == "__main__":
    main()
