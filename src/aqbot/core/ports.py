"""Boundary contracts the AQ tracker needs from the chat platform.

The tracker never touches discord.py directly. ``aqbot.discord.helpers``
implements these protocols on top of a live bot; tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from aqbot.models.aq import AQRun


class ThreadPermissionError(Exception):
    """The bot may not create a thread in the target channel."""


@dataclass(frozen=True)
class BoardUpdate:
    """A full render of the live status board, with its interactive controls."""

    run: AQRun


# Plain text replaces the board and strips every control from the message.
MessageContent = str | BoardUpdate


class ChatSurface(Protocol):
    async def post_message(self, target_id: str, content: MessageContent) -> str:
        """Send a message to a channel or thread and return its id."""
        ...

    async def edit_message(self, target_id: str, message_id: str, content: MessageContent) -> None:
        ...

    async def lock_thread(self, thread_id: str) -> None:
        ...

    async def create_thread(self, target_id: str, parent_message_id: str, name: str) -> str:
        """Open a thread on a message and return its id.

        Raises ThreadPermissionError when the platform refuses.
        """
        ...


class RoleResolver(Protocol):
    async def resolve_role_members(self, role_id: str) -> list[str] | None:
        """Return the role's current member ids, or None if the role does not exist."""
        ...
