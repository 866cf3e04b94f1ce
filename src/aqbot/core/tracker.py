"""AQ tracker lifecycle: start, player toggles, officer clears, end.

Every operation follows the same shape: load the channel's run, apply one
transition in memory, persist the whole document, then update chat. Terminal
transitions delete the record so the channel can host a new run.

    ACTIVE ──end_run──────────▶ ENDED_BY_OFFICER  (record deleted)
    ACTIVE ──clear_map────────▶ COMPLETED         (record deleted)
    ACTIVE ── (no trigger) ───▶ ENDED_ABNORMALLY
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from aqbot.core.ports import BoardUpdate, ChatSurface, RoleResolver, ThreadPermissionError
from aqbot.db.repository import Repository
from aqbot.models.aq import (
    MAP_COMPLETE_LABEL,
    SECTION_KEYS,
    AQRun,
    LifecycleState,
    PlayerSectionState,
    SectionKey,
    section_in_progress_label,
)

logger = logging.getLogger(__name__)

# Runs close ten minutes short of a full AQ day.
RUN_DURATION = timedelta(hours=24) - timedelta(minutes=10)

THREAD_AUTO_NAME = "AQ Day {day} Updates"

DEFAULT_BOSS_LABEL = "Miniboss"


class TrackerError(Exception):
    """A rejected tracker operation. The message is safe to show the user."""


class AllianceNotRegistered(TrackerError):
    def __init__(self) -> None:
        super().__init__("This server is not registered as an alliance.")


class RunAlreadyActive(TrackerError):
    def __init__(self) -> None:
        super().__init__("An AQ tracker is already active in that channel.")


class RoleNotFound(TrackerError):
    def __init__(self) -> None:
        super().__init__("Selected role not found.")


class NoActiveRun(TrackerError):
    def __init__(self) -> None:
        super().__init__("No active AQ tracker in that channel.")


class NotAParticipant(TrackerError):
    def __init__(self) -> None:
        super().__init__("You are not registered for this AQ.")


class NotAnOfficer(TrackerError):
    def __init__(self) -> None:
        super().__init__("Only alliance officers can do that.")


class InvalidSection(TrackerError):
    def __init__(self, section: object) -> None:
        super().__init__(f"Unknown AQ section: {section}.")


@dataclass(frozen=True)
class StartRequest:
    guild_id: str
    channel_id: str
    role_id: str
    day: int
    channel_name: str = ""
    role_name: str = ""
    create_thread: bool | None = None  # None: use the alliance default


@dataclass
class StartResult:
    run: AQRun
    warnings: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        lines = ["AQ Tracker started successfully.", *self.warnings]
        return "\n".join(lines)


def role_mention(run: AQRun) -> str:
    return f"<@&{run.participant_role_id}>" if run.participant_role_id else ""


def user_mention(user_id: str) -> str:
    return f"<@{user_id}>"


def _with_prefix(prefix: str, text: str) -> str:
    return f"{prefix} {text}" if prefix else text


async def load_active_run(repo: Repository, channel_id: str) -> AQRun:
    """Return the channel's ACTIVE run or raise NoActiveRun."""
    run = await repo.get_aq_run(channel_id)
    if run is None or not run.is_active:
        raise NoActiveRun()
    return run


async def start_run(
    repo: Repository,
    chat: ChatSurface,
    roles: RoleResolver,
    request: StartRequest,
    now: datetime | None = None,
) -> StartResult:
    """Create a tracked run in a channel from a snapshot of a role's members.

    Rejects (without posting anything) when the guild has no alliance, the
    channel already has an ACTIVE run, or the role cannot be resolved.
    """
    alliance = await repo.get_alliance_by_guild(request.guild_id)
    if alliance is None:
        raise AllianceNotRegistered()

    existing = await repo.get_aq_run(request.channel_id)
    if existing is not None and existing.is_active:
        raise RunAlreadyActive()

    members = await roles.resolve_role_members(request.role_id)
    if members is None:
        raise RoleNotFound()

    if existing is not None:
        # Leftover non-active record; terminal runs are normally deleted on transition.
        await repo.clear_aq_run(request.channel_id)

    started_at = now or datetime.now(UTC)
    progress: dict[SectionKey, dict[str, PlayerSectionState]] = {
        key: {member_id: PlayerSectionState(done=False) for member_id in members}
        for key in SECTION_KEYS
    }
    run = AQRun(
        channel_id=request.channel_id,
        participant_role_id=request.role_id,
        day=request.day,
        lifecycle_state=LifecycleState.ACTIVE,
        map_status_label=section_in_progress_label(1),
        section_progress=progress,
        started_at=started_at,
        scheduled_end_at=started_at + RUN_DURATION,
        alliance_id=alliance.id,
        guild_id=request.guild_id,
        channel_name=request.channel_name,
        role_name=request.role_name,
    )

    run.announcement_message_id = await chat.post_message(request.channel_id, BoardUpdate(run))

    result = StartResult(run=run)
    wants_thread = (
        request.create_thread if request.create_thread is not None else alliance.create_aq_thread
    )
    if wants_thread:
        try:
            run.update_thread_id = await chat.create_thread(
                request.channel_id,
                run.announcement_message_id,
                THREAD_AUTO_NAME.format(day=request.day),
            )
        except ThreadPermissionError:
            logger.warning("aq_thread_create_forbidden channel=%s", request.channel_id)
            warning = (
                "⚠️ I don't have permission to create threads here, "
                "so updates will be posted in this channel."
            )
            await chat.post_message(request.channel_id, warning)
            result.warnings.append(warning)

    await repo.set_aq_run(run)
    logger.info(
        "aq_run_started channel=%s alliance=%s day=%d participants=%d thread=%s",
        run.channel_id,
        run.alliance_id,
        run.day,
        len(members),
        run.update_thread_id or "-",
    )
    return result


async def toggle_progress(
    repo: Repository,
    chat: ChatSurface,
    channel_id: str,
    user_id: str,
    section: SectionKey,
) -> bool:
    """Flip a participant's ``done`` flag for one section and re-render the board.

    Only players captured in the role snapshot can toggle. Returns the new value.
    """
    if section not in SECTION_KEYS:
        raise InvalidSection(section)
    run = await load_active_run(repo, channel_id)
    entry = run.section_progress[section].get(user_id)
    if entry is None:
        raise NotAParticipant()

    entry.done = not entry.done
    await repo.set_aq_run(run)
    await chat.edit_message(run.channel_id, run.announcement_message_id, BoardUpdate(run))
    logger.info(
        "aq_progress_toggled channel=%s user=%s section=%s done=%s",
        channel_id,
        user_id,
        section,
        entry.done,
    )
    return entry.done


async def clear_section(
    repo: Repository,
    chat: ChatSurface,
    channel_id: str,
    officer_id: str,
    section: int,
    label: str = DEFAULT_BOSS_LABEL,
) -> AQRun:
    """Announce a section boss kill and open the next section.

    Only the status label changes; player progress is tracked independently.
    """
    if section not in (1, 2, 3):
        raise InvalidSection(section)
    run = await load_active_run(repo, channel_id)

    text = _with_prefix(
        role_mention(run),
        f"{user_mention(officer_id)} defeated the Section {section} {label}!",
    )
    if section < 3:
        text += f" Section {section + 1} is now open."
        run.map_status_label = section_in_progress_label(section + 1)

    await chat.post_message(run.announcement_target_id, text)
    await repo.set_aq_run(run)
    await chat.edit_message(run.channel_id, run.announcement_message_id, BoardUpdate(run))
    logger.info("aq_section_cleared channel=%s section=%d by=%s", channel_id, section, officer_id)
    return run


async def clear_map(
    repo: Repository,
    chat: ChatSurface,
    channel_id: str,
    officer_id: str,
    mention_role: bool = True,
) -> AQRun:
    """Mark the map 100% complete and retire the run.

    The completed board is rendered straight from the in-memory run; the
    record is deleted rather than persisted in its terminal form.
    """
    run = await load_active_run(repo, channel_id)
    run.lifecycle_state = LifecycleState.COMPLETED
    run.map_status_label = MAP_COMPLETE_LABEL

    mention = role_mention(run) if mention_role else ""
    await chat.post_message(
        run.announcement_target_id,
        "🎉 " + _with_prefix(mention, "The map is 100% complete! Great work, everyone!"),
    )
    await chat.edit_message(run.channel_id, run.announcement_message_id, BoardUpdate(run))
    if run.update_thread_id:
        await chat.lock_thread(run.update_thread_id)
    await repo.clear_aq_run(channel_id)
    logger.info("aq_run_completed channel=%s by=%s", channel_id, officer_id)
    return run


async def end_run(
    repo: Repository,
    chat: ChatSurface,
    channel_id: str,
    officer_id: str,
) -> AQRun:
    """Manually end the channel's run: strip the board, lock the thread, delete the record."""
    run = await load_active_run(repo, channel_id)
    run.lifecycle_state = LifecycleState.ENDED_BY_OFFICER

    await chat.edit_message(
        run.channel_id,
        run.announcement_message_id,
        f"AQ tracker manually ended by {user_mention(officer_id)}.",
    )
    if run.update_thread_id:
        await chat.lock_thread(run.update_thread_id)
    await repo.clear_aq_run(channel_id)
    logger.info("aq_run_ended channel=%s by=%s", channel_id, officer_id)
    return run
