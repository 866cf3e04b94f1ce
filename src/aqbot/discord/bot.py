"""Discord bot for aqbot.

Runs alongside FastAPI using the same event loop. Hosts the ``/aq`` and
``/alliance`` slash commands, registers the persistent status-board view, and
exposes the chat adapter the scheduler jobs post reminders and scheduled
starts through.

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord import Intents, app_commands
from discord.ext import commands
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from aqbot.core.auto_start import tick_scheduled_starts
from aqbot.core.schedule_times import (
    WEEKDAY_NAMES,
    format_hhmm,
    local_to_utc,
    parse_duration,
    parse_hhmm,
    resolve_timezone,
)
from aqbot.core.tracker import (
    AllianceNotRegistered,
    NotAnOfficer,
    StartRequest,
    TrackerError,
    end_run,
    start_run,
)
from aqbot.db.repository import StaleRunError
from aqbot.discord.embeds import (
    build_alliance_embed,
    build_reminder_settings_embed,
    build_schedule_embed,
)
from aqbot.discord.helpers import (
    DiscordChatSurface,
    DiscordRoleResolver,
    db_session,
    is_admin,
    is_officer,
)
from aqbot.discord.views import AQBoardView
from aqbot.models.aq import ReminderTier

if TYPE_CHECKING:
    from aqbot.config import Settings

logger = logging.getLogger(__name__)

NO_DATABASE_MESSAGE = "Database not available."
ADMIN_ONLY_MESSAGE = "Only server administrators can do that."
FAILURE_MESSAGE = "Something went wrong. Please try again."

_WEEKDAY_CHOICES = [app_commands.Choice(name=name, value=i) for i, name in enumerate(WEEKDAY_NAMES)]
_TIER_CHOICES = [app_commands.Choice(name=tier.label, value=tier.value) for tier in ReminderTier]


class AQBot(commands.Bot):
    """The aqbot Discord bot.

    Runs in-process with FastAPI. Provides slash commands to register an
    alliance, run AQ trackers, schedule automatic starts and tune reminders.
    """

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine | None = None,
    ) -> None:
        intents = Intents.default()
        intents.members = True  # Role membership snapshots need the member cache

        super().__init__(
            command_prefix="!",
            intents=intents,
            description="Alliance Quest tracker -- progress board, reminders, and schedules.",
        )
        self.settings = settings
        self.engine = engine
        self.chat = DiscordChatSurface(self, board_view=self._board_view)
        self._setup_commands()

    def _board_view(self) -> AQBoardView:
        if self.engine is None:
            raise RuntimeError("The AQ board needs a database engine")
        return AQBoardView(self.engine)

    def _setup_commands(self) -> None:
        """Register slash command groups on the bot's command tree."""
        alliance = app_commands.Group(name="alliance", description="Alliance registration")
        aq = app_commands.Group(name="aq", description="Alliance Quest tracker")
        schedule = app_commands.Group(name="schedule", description="Automatic AQ starts", parent=aq)
        reminders = app_commands.Group(name="reminders", description="AQ reminder pings", parent=aq)

        @alliance.command(name="register", description="Register this server as an alliance")
        @app_commands.describe(name="Alliance name", timezone="IANA time zone, e.g. Europe/Berlin")
        async def alliance_register(
            interaction: discord.Interaction, name: str, timezone: str = "UTC"
        ) -> None:
            await self._handle_alliance_register(interaction, name, timezone)

        @alliance.command(name="config", description="View or change alliance settings")
        @app_commands.describe(
            create_aq_thread="Open an update thread for every AQ run by default",
            officer_role="Role allowed to run AQ trackers",
            timezone="IANA time zone used for reminders and schedules",
        )
        async def alliance_config(
            interaction: discord.Interaction,
            create_aq_thread: bool | None = None,
            officer_role: discord.Role | None = None,
            timezone: str | None = None,
        ) -> None:
            await self._handle_alliance_config(interaction, create_aq_thread, officer_role, timezone)

        @aq.command(name="start", description="Start an AQ tracker in a channel")
        @app_commands.describe(
            day="AQ day (1-4)",
            role="Role whose members take part",
            channel="Channel for the tracker (defaults to this one)",
            create_thread="Open an update thread (defaults to the alliance setting)",
        )
        async def aq_start(
            interaction: discord.Interaction,
            day: app_commands.Range[int, 1, 4],
            role: discord.Role,
            channel: discord.TextChannel | None = None,
            create_thread: bool | None = None,
        ) -> None:
            await self._handle_aq_start(interaction, day, role, channel, create_thread)

        @aq.command(name="end", description="End the AQ tracker in a channel")
        @app_commands.describe(channel="Channel with the tracker (defaults to this one)")
        async def aq_end(
            interaction: discord.Interaction, channel: discord.TextChannel | None = None
        ) -> None:
            await self._handle_aq_end(interaction, channel)

        @aq.command(name="skip", description="Pause scheduled AQ starts for a while")
        @app_commands.describe(duration="How long to skip, e.g. 30m, 24h, 7d, 1w")
        async def aq_skip(interaction: discord.Interaction, duration: str) -> None:
            await self._handle_aq_skip(interaction, duration)

        @aq.command(name="unskip", description="Resume scheduled AQ starts")
        async def aq_unskip(interaction: discord.Interaction) -> None:
            await self._handle_aq_unskip(interaction)

        @schedule.command(name="add", description="Start AQ automatically every week")
        @app_commands.describe(
            battlegroup="Battlegroup (1-3)",
            day_of_week="Day the AQ starts",
            time="Start time HH:MM in the alliance time zone",
            aq_day="AQ day to track (1-4)",
            channel="Channel for the tracker",
            role="Role whose members take part",
        )
        @app_commands.choices(day_of_week=_WEEKDAY_CHOICES)
        async def schedule_add(
            interaction: discord.Interaction,
            battlegroup: app_commands.Range[int, 1, 3],
            day_of_week: app_commands.Choice[int],
            time: str,
            aq_day: app_commands.Range[int, 1, 4],
            channel: discord.TextChannel,
            role: discord.Role,
        ) -> None:
            await self._handle_schedule_add(
                interaction, battlegroup, day_of_week.value, time, aq_day, channel, role
            )

        @schedule.command(name="remove", description="Remove an automatic AQ start")
        @app_commands.describe(schedule_id="Id shown by /aq schedule view")
        async def schedule_remove(interaction: discord.Interaction, schedule_id: str) -> None:
            await self._handle_schedule_remove(interaction, schedule_id)

        @schedule.command(name="view", description="List automatic AQ starts")
        async def schedule_view(interaction: discord.Interaction) -> None:
            await self._handle_schedule_view(interaction)

        @reminders.command(name="view", description="Show AQ reminder settings")
        async def reminders_view(interaction: discord.Interaction) -> None:
            await self._handle_reminders_view(interaction)

        @reminders.command(name="set", description="Change one AQ reminder")
        @app_commands.describe(
            tier="Which reminder",
            enabled="Turn the reminder on or off",
            time="Time HH:MM in the alliance time zone",
        )
        @app_commands.choices(tier=_TIER_CHOICES)
        async def reminders_set(
            interaction: discord.Interaction,
            tier: app_commands.Choice[str],
            enabled: bool | None = None,
            time: str | None = None,
        ) -> None:
            await self._handle_reminders_set(interaction, ReminderTier(tier.value), enabled, time)

        self.tree.add_command(alliance)
        self.tree.add_command(aq)

    async def setup_hook(self) -> None:
        """Register the persistent board view, then sync slash commands."""
        if self.engine is not None:
            self.add_view(AQBoardView(self.engine))
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        user = self.user
        name = user.name if user else "unknown"
        logger.info("discord_bot_ready user=%s guilds=%d", name, len(self.guilds))

    # --- Scheduler entry points ---

    def _roles_for_guild(self, guild_id: str) -> DiscordRoleResolver | None:
        guild = self.get_guild(int(guild_id))
        return DiscordRoleResolver(guild) if guild is not None else None

    async def run_scheduled_starts(self) -> int:
        """Start every AQ whose schedule entry matches the current UTC minute."""
        if self.engine is None or not self.is_ready():
            return 0
        return await tick_scheduled_starts(self.engine, self.chat, self._roles_for_guild)

    # --- Shared checks ---

    async def _reply(self, interaction: discord.Interaction, text: str, **kwargs: object) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(text, ephemeral=True, **kwargs)
        else:
            await interaction.response.send_message(text, ephemeral=True, **kwargs)

    async def _require_admin(self, interaction: discord.Interaction) -> bool:
        if not is_admin(interaction.user):
            await self._reply(interaction, ADMIN_ONLY_MESSAGE)
            return False
        return True

    # --- /alliance ---

    async def _handle_alliance_register(
        self, interaction: discord.Interaction, name: str, timezone: str
    ) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        if not await self._require_admin(interaction):
            return
        if resolve_timezone(timezone) is None:
            await self._reply(interaction, f"Unknown time zone `{timezone}`.")
            return
        guild_id = str(interaction.guild_id)
        try:
            async with db_session(self.engine) as repo:
                existing = await repo.get_alliance_by_guild(guild_id)
                if existing is not None:
                    await self._reply(
                        interaction, f"This server is already registered as **{existing.name}**."
                    )
                    return
                row = await repo.create_alliance(guild_id, name.strip(), timezone=timezone)
                embed = build_alliance_embed(row)
        except SQLAlchemyError:
            logger.exception("discord_alliance_register_failed guild=%s", guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        logger.info("alliance_registered guild=%s name=%s", guild_id, name)
        await self._reply(interaction, f"Registered **{name.strip()}**.", embed=embed)

    async def _handle_alliance_config(
        self,
        interaction: discord.Interaction,
        create_aq_thread: bool | None,
        officer_role: discord.Role | None,
        timezone: str | None,
    ) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        changing = create_aq_thread is not None or officer_role is not None or timezone
        if changing and not await self._require_admin(interaction):
            return
        if timezone and resolve_timezone(timezone) is None:
            await self._reply(interaction, f"Unknown time zone `{timezone}`.")
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                if changing:
                    alliance = await repo.update_alliance(
                        alliance.id,
                        timezone=timezone or None,
                        create_aq_thread=create_aq_thread,
                        officer_role_id=str(officer_role.id) if officer_role else None,
                    )
                embed = build_alliance_embed(alliance)
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_alliance_config_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        await self._reply(interaction, "Alliance settings:", embed=embed)

    # --- /aq start | end ---

    async def _handle_aq_start(
        self,
        interaction: discord.Interaction,
        day: int,
        role: discord.Role,
        channel: discord.TextChannel | None,
        create_thread: bool | None,
    ) -> None:
        if not self.engine or interaction.guild is None:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        target = channel or interaction.channel
        if target is None:
            await self._reply(interaction, "Pick a text channel for the tracker.")
            return
        await interaction.response.defer(ephemeral=True)
        request = StartRequest(
            guild_id=str(interaction.guild.id),
            channel_id=str(target.id),
            channel_name=getattr(target, "name", ""),
            role_id=str(role.id),
            role_name=role.name,
            day=day,
            create_thread=create_thread,
        )
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(request.guild_id)
                if alliance is not None and not is_officer(interaction.user, alliance):
                    raise NotAnOfficer()
                result = await start_run(
                    repo, self.chat, DiscordRoleResolver(interaction.guild), request
                )
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except (SQLAlchemyError, StaleRunError, discord.HTTPException):
            logger.exception("discord_aq_start_failed channel=%s", request.channel_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        await self._reply(interaction, result.message)

    async def _handle_aq_end(
        self, interaction: discord.Interaction, channel: discord.TextChannel | None
    ) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        target = channel or interaction.channel
        channel_id = str(target.id) if target else str(interaction.channel_id)
        await interaction.response.defer(ephemeral=True)
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if not is_officer(interaction.user, alliance):
                    raise NotAnOfficer()
                await end_run(repo, self.chat, channel_id, str(interaction.user.id))
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except (SQLAlchemyError, discord.HTTPException):
            logger.exception("discord_aq_end_failed channel=%s", channel_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        await self._reply(interaction, "AQ tracker ended.")

    # --- /aq skip | unskip ---

    async def _handle_aq_skip(self, interaction: discord.Interaction, duration: str) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        if not await self._require_admin(interaction):
            return
        delta = parse_duration(duration)
        if delta is None:
            await self._reply(
                interaction, "Invalid duration. Use a number and a unit, e.g. 30m, 24h, 7d or 1w."
            )
            return
        skip_until = datetime.now(UTC) + delta
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                await repo.set_aq_skip(alliance.id, skip_until)
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_aq_skip_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        logger.info("aq_skip_set alliance=%s until=%s", alliance.id, skip_until.isoformat())
        await self._reply(
            interaction,
            f"Scheduled AQ starts are skipped until <t:{int(skip_until.timestamp())}:F>.",
        )

    async def _handle_aq_unskip(self, interaction: discord.Interaction) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                removed = await repo.clear_aq_skip(alliance.id)
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_aq_unskip_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        if removed:
            await self._reply(interaction, "Scheduled AQ starts resumed.")
        else:
            await self._reply(interaction, "No skip is active.")

    # --- /aq schedule ---

    async def _handle_schedule_add(
        self,
        interaction: discord.Interaction,
        battlegroup: int,
        day_of_week: int,
        time: str,
        aq_day: int,
        channel: discord.TextChannel,
        role: discord.Role,
    ) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        if not await self._require_admin(interaction):
            return
        local = parse_hhmm(time)
        if local is None:
            await self._reply(interaction, "Invalid time. Use HH:MM, e.g. 18:30.")
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                utc_time = format_hhmm(local_to_utc(local, alliance.timezone))
                row = await repo.add_aq_schedule(
                    alliance_id=alliance.id,
                    battlegroup=battlegroup,
                    day_of_week=day_of_week,
                    time=utc_time,
                    aq_day=aq_day,
                    channel_id=str(channel.id),
                    role_id=str(role.id),
                )
                schedule_id = row.id
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except IntegrityError:
            await self._reply(
                interaction,
                f"Battlegroup {battlegroup} already starts on {WEEKDAY_NAMES[day_of_week]}. "
                "Remove that schedule first.",
            )
            return
        except SQLAlchemyError:
            logger.exception("discord_schedule_add_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        logger.info(
            "aq_schedule_added id=%s battlegroup=%d day=%d utc=%s",
            schedule_id,
            battlegroup,
            day_of_week,
            utc_time,
        )
        await self._reply(
            interaction,
            f"Battlegroup {battlegroup} AQ Day {aq_day} will start every "
            f"{WEEKDAY_NAMES[day_of_week]} at {format_hhmm(local)} in {channel.mention}.",
        )

    async def _handle_schedule_remove(
        self, interaction: discord.Interaction, schedule_id: str
    ) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                removed = await repo.remove_aq_schedule(alliance.id, schedule_id.strip())
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_schedule_remove_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        await self._reply(interaction, "Schedule removed." if removed else "Schedule not found.")

    async def _handle_schedule_view(self, interaction: discord.Interaction) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                schedules = await repo.get_aq_schedules(alliance.id)
                embed = build_schedule_embed(alliance, schedules)
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_schedule_view_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # --- /aq reminders ---

    async def _handle_reminders_view(self, interaction: discord.Interaction) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                settings = await repo.get_reminder_settings(alliance.id)
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_reminders_view_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        if settings is None:
            await self._reply(interaction, "Reminders are not configured for this alliance.")
            return
        await interaction.response.send_message(
            embed=build_reminder_settings_embed(settings), ephemeral=True
        )

    async def _handle_reminders_set(
        self,
        interaction: discord.Interaction,
        tier: ReminderTier,
        enabled: bool | None,
        time: str | None,
    ) -> None:
        if not self.engine:
            await self._reply(interaction, NO_DATABASE_MESSAGE)
            return
        if not await self._require_admin(interaction):
            return
        if enabled is None and time is None:
            await self._reply(interaction, "Nothing to change. Pass `enabled` and/or `time`.")
            return
        at = parse_hhmm(time) if time is not None else None
        if time is not None and at is None:
            await self._reply(interaction, "Invalid time. Use HH:MM, e.g. 18:30.")
            return
        try:
            async with db_session(self.engine) as repo:
                alliance = await repo.get_alliance_by_guild(str(interaction.guild_id))
                if alliance is None:
                    raise AllianceNotRegistered()
                settings = await repo.update_reminder_tier(
                    alliance.id,
                    tier,
                    enabled=enabled,
                    time=format_hhmm(at) if at is not None else None,
                )
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_reminders_set_failed guild=%s", interaction.guild_id)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        logger.info(
            "aq_reminder_settings_updated alliance=%s tier=%s enabled=%s time=%s",
            alliance.id,
            tier.value,
            enabled,
            time,
        )
        if settings is None:
            await self._reply(interaction, f"{tier.label} reminder updated.")
            return
        await interaction.response.send_message(
            f"{tier.label} reminder updated.",
            embed=build_reminder_settings_embed(settings),
            ephemeral=True,
        )


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether Discord integration should be started.

    Returns True only when discord_enabled is True, a token is set, AND the
    environment is not development, so a local server never syncs commands
    into the live guild.
    """
    if settings.aqbot_env == "development":
        logger.info("discord_bot_skipped_in_development")
        return False
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_discord_bot(
    settings: Settings,
    engine: AsyncEngine | None = None,
) -> AQBot:
    """Create and start the Discord bot in the current event loop.

    Returns the bot instance so the caller can stop it during shutdown.
    The bot runs as a background task; this function returns immediately
    after starting it.
    """
    bot = AQBot(settings=settings, engine=engine)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # last-resort handler: bot.start raises connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
