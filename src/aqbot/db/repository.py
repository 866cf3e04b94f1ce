"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. AQ runs are whole JSON documents guarded by a
revision counter: ``set_aq_run`` refuses to overwrite a document that changed
since it was loaded.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aqbot.db.models import (
    AllianceRow,
    AQReminderSettingsRow,
    AQScheduleRow,
    AQSkipRow,
    AQStateRow,
)
from aqbot.models.aq import AQRun, ReminderSettings, ReminderTier


class StaleRunError(Exception):
    """Raised when a run was changed or removed after it was loaded."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"AQ run for channel {channel_id} changed since it was loaded")
        self.channel_id = channel_id


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Alliances ---

    async def create_alliance(
        self,
        guild_id: str,
        name: str,
        timezone: str = "UTC",
        create_aq_thread: bool = False,
        officer_role_id: str | None = None,
    ) -> AllianceRow:
        """Register an alliance and give it default reminder settings."""
        row = AllianceRow(
            guild_id=guild_id,
            name=name,
            timezone=timezone,
            create_aq_thread=create_aq_thread,
            officer_role_id=officer_role_id,
        )
        self.session.add(row)
        await self.session.flush()
        self.session.add(AQReminderSettingsRow(alliance_id=row.id))
        await self.session.flush()
        return row

    async def get_alliance(self, alliance_id: str) -> AllianceRow | None:
        return await self.session.get(AllianceRow, alliance_id)

    async def get_alliance_by_guild(self, guild_id: str) -> AllianceRow | None:
        stmt = select(AllianceRow).where(AllianceRow.guild_id == guild_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_alliance(
        self,
        alliance_id: str,
        *,
        name: str | None = None,
        timezone: str | None = None,
        create_aq_thread: bool | None = None,
        officer_role_id: str | None = None,
    ) -> AllianceRow | None:
        """Update the given alliance fields; ``None`` leaves a field untouched."""
        row = await self.session.get(AllianceRow, alliance_id)
        if row is None:
            return None
        if name is not None:
            row.name = name
        if timezone is not None:
            row.timezone = timezone
        if create_aq_thread is not None:
            row.create_aq_thread = create_aq_thread
        if officer_role_id is not None:
            row.officer_role_id = officer_role_id
        await self.session.flush()
        return row

    # --- Reminder settings ---

    async def get_reminder_settings(self, alliance_id: str) -> ReminderSettings | None:
        """Resolve an alliance's reminder tiers plus its time zone.

        Returns None when the alliance or its settings row is missing.
        """
        alliance = await self.session.get(AllianceRow, alliance_id)
        if alliance is None:
            return None
        row = await self.session.get(AQReminderSettingsRow, alliance_id)
        if row is None:
            return None
        return ReminderSettings(
            section1_enabled=row.section1_enabled,
            section1_time=row.section1_time,
            section2_enabled=row.section2_enabled,
            section2_time=row.section2_time,
            final_enabled=row.final_enabled,
            final_time=row.final_time,
            timezone=alliance.timezone or "UTC",
        )

    async def update_reminder_tier(
        self,
        alliance_id: str,
        tier: ReminderTier,
        *,
        enabled: bool | None = None,
        time: str | None = None,
    ) -> ReminderSettings | None:
        """Change one tier's enable flag and/or time, creating the row if needed."""
        row = await self.session.get(AQReminderSettingsRow, alliance_id)
        if row is None:
            row = AQReminderSettingsRow(alliance_id=alliance_id)
            self.session.add(row)
        if enabled is not None:
            setattr(row, f"{tier.value}_enabled", enabled)
        if time is not None:
            setattr(row, f"{tier.value}_time", time)
        await self.session.flush()
        return await self.get_reminder_settings(alliance_id)

    # --- AQ runs (one JSON document per channel) ---

    async def get_aq_run(self, channel_id: str) -> AQRun | None:
        row = await self.session.get(AQStateRow, channel_id)
        if row is None:
            return None
        return self._run_from_row(row)

    async def set_aq_run(self, run: AQRun) -> AQRun:
        """Upsert *run*, bumping its revision.

        Raises StaleRunError if the stored revision is not the one *run* was
        loaded at, or if the record was deleted after *run* was loaded.
        """
        expected = run.revision
        if expected == 0:
            if await self.session.get(AQStateRow, run.channel_id) is not None:
                raise StaleRunError(run.channel_id)
            run.revision = 1
            self.session.add(
                AQStateRow(
                    channel_id=run.channel_id,
                    alliance_id=run.alliance_id,
                    lifecycle_state=run.lifecycle_state.value,
                    revision=run.revision,
                    state=run.model_dump(mode="json"),
                )
            )
            await self.session.flush()
            return run

        run.revision = expected + 1
        result = await self.session.execute(
            update(AQStateRow)
            .where(AQStateRow.channel_id == run.channel_id, AQStateRow.revision == expected)
            .values(
                alliance_id=run.alliance_id,
                lifecycle_state=run.lifecycle_state.value,
                revision=run.revision,
                state=run.model_dump(mode="json"),
                updated_at=datetime.now(UTC),
            )
        )
        if result.rowcount != 1:
            run.revision = expected
            raise StaleRunError(run.channel_id)
        return run

    async def clear_aq_run(self, channel_id: str) -> None:
        """Delete the run for a channel. No-op if there is none."""
        row = await self.session.get(AQStateRow, channel_id)
        if row is None:
            return
        await self.session.delete(row)
        await self.session.flush()

    async def list_aq_runs(self, alliance_id: str | None = None) -> list[AQRun]:
        stmt = select(AQStateRow).order_by(AQStateRow.channel_id)
        if alliance_id is not None:
            stmt = stmt.where(AQStateRow.alliance_id == alliance_id)
        result = await self.session.execute(stmt)
        return [self._run_from_row(row) for row in result.scalars().all()]

    @staticmethod
    def _run_from_row(row: AQStateRow) -> AQRun:
        run = AQRun.model_validate(row.state)
        run.revision = row.revision
        return run

    # --- Schedules ---

    async def add_aq_schedule(
        self,
        alliance_id: str,
        battlegroup: int,
        day_of_week: int,
        time: str,
        aq_day: int,
        channel_id: str,
        role_id: str,
    ) -> AQScheduleRow:
        row = AQScheduleRow(
            alliance_id=alliance_id,
            battlegroup=battlegroup,
            day_of_week=day_of_week,
            time=time,
            aq_day=aq_day,
            channel_id=channel_id,
            role_id=role_id,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_aq_schedules(self, alliance_id: str) -> list[AQScheduleRow]:
        stmt = (
            select(AQScheduleRow)
            .where(AQScheduleRow.alliance_id == alliance_id)
            .order_by(AQScheduleRow.battlegroup, AQScheduleRow.day_of_week)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_aq_schedules_for_slot(self, day_of_week: int, time: str) -> list[AQScheduleRow]:
        """Return every schedule entry firing at this UTC weekday and HH:MM."""
        stmt = (
            select(AQScheduleRow)
            .where(AQScheduleRow.day_of_week == day_of_week, AQScheduleRow.time == time)
            .order_by(AQScheduleRow.alliance_id, AQScheduleRow.battlegroup)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def remove_aq_schedule(self, alliance_id: str, schedule_id: str) -> bool:
        """Delete a schedule entry owned by *alliance_id*. Returns True if removed."""
        row = await self.session.get(AQScheduleRow, schedule_id)
        if row is None or row.alliance_id != alliance_id:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True

    # --- Skips ---

    async def get_aq_skip(self, alliance_id: str) -> datetime | None:
        row = await self.session.get(AQSkipRow, alliance_id)
        return _as_utc(row.skip_until) if row else None

    async def set_aq_skip(self, alliance_id: str, skip_until: datetime) -> None:
        row = await self.session.get(AQSkipRow, alliance_id)
        if row is not None:
            row.skip_until = skip_until
        else:
            self.session.add(AQSkipRow(alliance_id=alliance_id, skip_until=skip_until))
        await self.session.flush()

    async def clear_aq_skip(self, alliance_id: str) -> bool:
        row = await self.session.get(AQSkipRow, alliance_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True
