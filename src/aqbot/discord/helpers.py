"""Discord bot helpers: DB session context, officer checks, and the chat/role adapters."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import discord
from sqlalchemy.ext.asyncio import AsyncEngine

from aqbot.core.ports import BoardUpdate, MessageContent, ThreadPermissionError
from aqbot.db.engine import get_session
from aqbot.db.models import AllianceRow
from aqbot.db.repository import Repository
from aqbot.discord.embeds import build_aq_board_embed

logger = logging.getLogger(__name__)

THREAD_AUTO_ARCHIVE_MINUTES = 1440


@asynccontextmanager
async def db_session(
    engine: AsyncEngine,
) -> AsyncGenerator[Repository, None]:
    """Yield a Repository bound to a fresh async session."""
    async with get_session(engine) as session:
        yield Repository(session)


def is_admin(member: discord.Member | discord.User) -> bool:
    """Server administrators and managers configure the alliance."""
    if not isinstance(member, discord.Member):
        return False
    perms = member.guild_permissions
    return perms.administrator or perms.manage_guild


def is_officer(member: discord.Member | discord.User, alliance: AllianceRow | None) -> bool:
    """Officers may start, end and clear AQ runs.

    Administrators and members who can manage messages always qualify; so does
    anyone holding the alliance's configured officer role.
    """
    if not isinstance(member, discord.Member):
        return False
    perms = member.guild_permissions
    if perms.administrator or perms.manage_messages:
        return True
    if alliance is not None and alliance.officer_role_id:
        return any(str(role.id) == alliance.officer_role_id for role in member.roles)
    return False


def render_content(
    content: MessageContent,
    board_view: Callable[[], discord.ui.View],
) -> dict[str, Any]:
    """Translate tracker message content into ``send``/``edit`` keyword arguments.

    A live board carries the button view; a finished board and plain text
    carry no components at all.
    """
    if isinstance(content, BoardUpdate):
        run = content.run
        return {
            "content": None,
            "embed": build_aq_board_embed(run),
            "view": board_view() if run.is_active else None,
        }
    return {"content": content, "embed": None, "view": None}


class DiscordChatSurface:
    """Posts, edits and thread management on top of a live discord.py client."""

    def __init__(
        self,
        client: discord.Client,
        board_view: Callable[[], discord.ui.View],
    ) -> None:
        self.client = client
        self.board_view = board_view

    async def _channel(self, channel_id: str) -> Any:
        channel = self.client.get_channel(int(channel_id))
        if channel is None:
            channel = await self.client.fetch_channel(int(channel_id))
        return channel

    async def post_message(self, target_id: str, content: MessageContent) -> str:
        channel = await self._channel(target_id)
        kwargs = render_content(content, self.board_view)
        if kwargs["view"] is None:
            del kwargs["view"]
        if kwargs["embed"] is None:
            del kwargs["embed"]
        message = await channel.send(**kwargs)
        return str(message.id)

    async def edit_message(self, target_id: str, message_id: str, content: MessageContent) -> None:
        channel = await self._channel(target_id)
        message = channel.get_partial_message(int(message_id))
        await message.edit(**render_content(content, self.board_view))

    async def lock_thread(self, thread_id: str) -> None:
        try:
            thread = await self._channel(thread_id)
            if isinstance(thread, discord.Thread):
                await thread.edit(locked=True)
        except discord.HTTPException as exc:
            logger.warning("aq_thread_lock_failed thread=%s err=%s", thread_id, exc)

    async def create_thread(self, target_id: str, parent_message_id: str, name: str) -> str:
        channel = await self._channel(target_id)
        message = channel.get_partial_message(int(parent_message_id))
        try:
            thread = await message.create_thread(
                name=name, auto_archive_duration=THREAD_AUTO_ARCHIVE_MINUTES
            )
        except discord.Forbidden as exc:
            raise ThreadPermissionError(str(exc)) from exc
        return str(thread.id)


class DiscordRoleResolver:
    """Reads role membership from a guild's member cache (needs the members intent)."""

    def __init__(self, guild: discord.Guild) -> None:
        self.guild = guild

    async def resolve_role_members(self, role_id: str) -> list[str] | None:
        role = self.guild.get_role(int(role_id))
        if role is None:
            return None
        return [str(member.id) for member in role.members]
