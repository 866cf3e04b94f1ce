"""Discord UI views for the AQ status board.

AQBoardView: the persistent path-toggle and boss-clear buttons attached to
every live board. Registered once at startup with ``bot.add_view`` so the
buttons keep working across restarts.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from sqlalchemy.exc import SQLAlchemyError

from aqbot.core.tracker import (
    NoActiveRun,
    NotAnOfficer,
    TrackerError,
    clear_map,
    clear_section,
    toggle_progress,
)
from aqbot.db.repository import StaleRunError
from aqbot.discord.helpers import DiscordChatSurface, db_session, is_officer

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from aqbot.models.aq import SectionKey

logger = logging.getLogger(__name__)

INACTIVE_MESSAGE = "This AQ tracker is not active."
STALE_MESSAGE = "The tracker was updated at the same moment. Please try again."
FAILURE_MESSAGE = "Something went wrong updating the AQ tracker. Please try again."


class AQBoardView(discord.ui.View):
    """Path toggles for players and boss-clear buttons for officers."""

    def __init__(self, engine: AsyncEngine) -> None:
        super().__init__(timeout=None)
        self.engine = engine

    def chat(self, client: discord.Client) -> DiscordChatSurface:
        return DiscordChatSurface(client, board_view=lambda: AQBoardView(self.engine))

    async def _reply(self, interaction: discord.Interaction, text: str) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(text, ephemeral=True)
        else:
            await interaction.response.send_message(text, ephemeral=True)

    async def _toggle(self, interaction: discord.Interaction, section: SectionKey) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        channel_id = str(interaction.channel_id)
        try:
            async with db_session(self.engine) as repo:
                await toggle_progress(
                    repo, self.chat(interaction.client), channel_id, str(interaction.user.id), section
                )
        except NoActiveRun:
            await self._reply(interaction, INACTIVE_MESSAGE)
            return
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
            return
        except StaleRunError:
            await self._reply(interaction, STALE_MESSAGE)
            return
        except (SQLAlchemyError, discord.HTTPException):
            logger.exception("aq_toggle_failed channel=%s section=%s", channel_id, section)
            await self._reply(interaction, FAILURE_MESSAGE)
            return
        await self._reply(interaction, f"Your progress for Section {section[1]} has been updated.")

    async def _officer_clear(self, interaction: discord.Interaction, section: int | None) -> None:
        """Clear a section's boss, or the whole map when *section* is None."""
        channel_id = str(interaction.channel_id)
        try:
            async with db_session(self.engine) as repo:
                alliance = (
                    await repo.get_alliance_by_guild(str(interaction.guild_id))
                    if interaction.guild_id
                    else None
                )
                if not is_officer(interaction.user, alliance):
                    raise NotAnOfficer()
                await interaction.response.defer()
                chat = self.chat(interaction.client)
                officer_id = str(interaction.user.id)
                if section is None:
                    await clear_map(repo, chat, channel_id, officer_id)
                else:
                    await clear_section(repo, chat, channel_id, officer_id, section)
        except NoActiveRun as exc:
            await self._reply(interaction, str(exc) if section is None else INACTIVE_MESSAGE)
        except TrackerError as exc:
            await self._reply(interaction, str(exc))
        except StaleRunError:
            await self._reply(interaction, STALE_MESSAGE)
        except (SQLAlchemyError, discord.HTTPException):
            logger.exception("aq_officer_clear_failed channel=%s section=%s", channel_id, section)
            await self._reply(interaction, FAILURE_MESSAGE)

    @discord.ui.button(label="Path S1", style=discord.ButtonStyle.secondary, custom_id="aq:path:s1")
    async def path_s1(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._toggle(interaction, "s1")

    @discord.ui.button(label="Path S2", style=discord.ButtonStyle.secondary, custom_id="aq:path:s2")
    async def path_s2(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._toggle(interaction, "s2")

    @discord.ui.button(label="Path S3", style=discord.ButtonStyle.secondary, custom_id="aq:path:s3")
    async def path_s3(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._toggle(interaction, "s3")

    @discord.ui.button(
        label="Mini S1 Down", style=discord.ButtonStyle.primary, custom_id="aq:boss:s1", row=1
    )
    async def boss_s1(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._officer_clear(interaction, 1)

    @discord.ui.button(
        label="Mini S2 Down", style=discord.ButtonStyle.primary, custom_id="aq:boss:s2", row=1
    )
    async def boss_s2(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._officer_clear(interaction, 2)

    @discord.ui.button(
        label="MAP CLEAR", style=discord.ButtonStyle.success, custom_id="aq:map_clear", row=1
    )
    async def map_clear(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._officer_clear(interaction, None)
