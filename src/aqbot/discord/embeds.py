"""Discord embed builders for aqbot.

Builds discord.Embed objects for the live AQ status board, schedules,
reminder settings and alliance configuration. Each builder takes domain data
and returns a styled embed ready to send.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from aqbot.core.schedule_times import WEEKDAY_NAMES, format_hhmm, parse_hhmm, utc_to_local
from aqbot.models.aq import SECTION_KEYS, AQRun, ReminderSettings, ReminderTier

if TYPE_CHECKING:
    from aqbot.db.models import AllianceRow, AQScheduleRow

COLOR_ACTIVE = 0x3498DB  # Blue: run in progress
COLOR_COMPLETE = 0x2ECC71  # Green: map cleared
COLOR_SCHEDULE = 0x9B59B6  # Purple: schedules
COLOR_SETTINGS = 0xF39C12  # Gold: configuration

DONE_ICON = "🏆"
IN_PROGRESS_ICON = "⚔️"
LEGEND = f"Legend: {IN_PROGRESS_ICON} = In Progress, {DONE_ICON} = Completed"


def build_progress_lines(run: AQRun) -> str:
    """One line per participant with a done/in-progress icon for each section."""
    participants = run.participants()
    if not participants:
        return "No players registered"

    lines: list[str] = []
    for user_id in participants:
        icons = " ".join(
            DONE_ICON if run.is_done(section, user_id) else IN_PROGRESS_ICON
            for section in SECTION_KEYS
        )
        lines.append(f"{icons} <@{user_id}>")
    lines.append(LEGEND)
    return "\n".join(lines)


def build_aq_board_embed(run: AQRun) -> discord.Embed:
    """Build the AQ status board shown on the announcement message."""
    ends = int(run.scheduled_end_at.timestamp())
    embed = discord.Embed(
        title=f"Alliance Quest – Day {run.day}",
        description=(
            f"Status: {run.map_status_label}\n"
            f"Ends <t:{ends}:R>\n\n"
            f"{build_progress_lines(run)}"
        ),
        color=COLOR_ACTIVE if run.is_active else COLOR_COMPLETE,
    )
    channel = f"#{run.channel_name}" if run.channel_name else f"<#{run.channel_id}>"
    role = f"@{run.role_name}" if run.role_name else "role members"
    embed.set_footer(text=f"{channel} · tracking {role}")
    return embed


def build_schedule_embed(alliance: AllianceRow, schedules: list[AQScheduleRow]) -> discord.Embed:
    """List an alliance's automatic starts, with times shown in its time zone."""
    embed = discord.Embed(
        title=f"AQ Schedule – {alliance.name}",
        color=COLOR_SCHEDULE,
    )
    if not schedules:
        embed.description = "No AQ schedules configured. Use `/aq schedule add` to create one."
        return embed

    for battlegroup in sorted({s.battlegroup for s in schedules}):
        lines: list[str] = []
        for entry in schedules:
            if entry.battlegroup != battlegroup:
                continue
            at = parse_hhmm(entry.time)
            local = format_hhmm(utc_to_local(at, alliance.timezone)) if at else entry.time
            lines.append(
                f"**{WEEKDAY_NAMES[entry.day_of_week]}** {local} · Day {entry.aq_day} · "
                f"<#{entry.channel_id}> <@&{entry.role_id}>\n`{entry.id}`"
            )
        embed.add_field(name=f"Battlegroup {battlegroup}", value="\n".join(lines), inline=False)
    embed.set_footer(text=f"Times in {alliance.timezone}")
    return embed


def build_reminder_settings_embed(settings: ReminderSettings) -> discord.Embed:
    embed = discord.Embed(title="⚙️ AQ Reminder Settings", color=COLOR_SETTINGS)
    for tier in ReminderTier:
        enabled = settings.is_enabled(tier)
        status = "✅ Active" if enabled else "❌ Inactive"
        embed.add_field(
            name=f"{tier.label} Reminder",
            value=f"{status}\n{settings.time_for(tier)}",
            inline=True,
        )
    embed.set_footer(text=f"Times in {settings.timezone}")
    return embed


def build_alliance_embed(alliance: AllianceRow) -> discord.Embed:
    embed = discord.Embed(title=alliance.name, color=COLOR_SETTINGS)
    embed.add_field(name="Time zone", value=alliance.timezone, inline=True)
    embed.add_field(
        name="Update threads",
        value="On" if alliance.create_aq_thread else "Off",
        inline=True,
    )
    officer = f"<@&{alliance.officer_role_id}>" if alliance.officer_role_id else "Not set"
    embed.add_field(name="Officer role", value=officer, inline=True)
    return embed
