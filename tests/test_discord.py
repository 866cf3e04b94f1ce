"""Tests for the Discord bot integration.

All Discord objects are mocked; no real Discord connection required.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from aqbot.config import Settings
from aqbot.core.ports import BoardUpdate, ThreadPermissionError
from aqbot.core.tracker import StartRequest, start_run
from aqbot.db.engine import get_session
from aqbot.db.repository import Repository
from aqbot.discord.bot import (
    ADMIN_ONLY_MESSAGE,
    NO_DATABASE_MESSAGE,
    AQBot,
    is_discord_enabled,
    start_discord_bot,
)
from aqbot.discord.embeds import (
    COLOR_ACTIVE,
    COLOR_COMPLETE,
    LEGEND,
    build_aq_board_embed,
    build_progress_lines,
    build_reminder_settings_embed,
    build_schedule_embed,
)
from aqbot.discord.helpers import (
    DiscordChatSurface,
    DiscordRoleResolver,
    is_admin,
    is_officer,
    render_content,
)
from aqbot.discord.views import INACTIVE_MESSAGE, AQBoardView
from aqbot.models.aq import (
    AQRun,
    LifecycleState,
    PlayerSectionState,
    ReminderSettings,
    ReminderTier,
)
from fakes import FakeChat, FakeRoles

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
GUILD_ID = 1
CHANNEL_ID = 1001


def make_member(
    user_id: int = 100,
    *,
    administrator: bool = False,
    manage_guild: bool = False,
    manage_messages: bool = False,
    role_ids: tuple[int, ...] = (),
) -> MagicMock:
    member = MagicMock(spec=discord.Member)
    member.id = user_id
    member.guild_permissions = MagicMock(
        administrator=administrator,
        manage_guild=manage_guild,
        manage_messages=manage_messages,
    )
    member.roles = [MagicMock(id=role_id) for role_id in role_ids]
    return member


def make_channel() -> MagicMock:
    """A text channel whose sends and partial-message edits are recorded."""
    channel = MagicMock()
    channel.send = AsyncMock(return_value=MagicMock(id=4242))
    partial = MagicMock()
    partial.edit = AsyncMock()
    partial.create_thread = AsyncMock(return_value=MagicMock(id=5151))
    channel.get_partial_message = MagicMock(return_value=partial)
    return channel


def make_interaction(*, responded: bool = False, **overrides) -> AsyncMock:
    """Build a fully-configured Discord interaction mock."""
    interaction = AsyncMock(spec=discord.Interaction)
    interaction.response = AsyncMock()
    interaction.response.is_done = MagicMock(return_value=responded)
    interaction.followup = AsyncMock()
    interaction.user = overrides.get("user", make_member(administrator=True))
    interaction.guild_id = overrides.get("guild_id", GUILD_ID)
    interaction.channel_id = overrides.get("channel_id", CHANNEL_ID)
    interaction.channel = overrides.get("channel", MagicMock(id=CHANNEL_ID))
    interaction.guild = overrides.get("guild", MagicMock(id=GUILD_ID))
    client = MagicMock()
    client.get_channel = MagicMock(return_value=overrides.get("client_channel", make_channel()))
    interaction.client = client
    return interaction


def replied_text(interaction: AsyncMock) -> str:
    """The text of the single ephemeral reply, whichever path sent it."""
    for sender in (interaction.response.send_message, interaction.followup.send):
        if sender.call_args is not None:
            args = sender.call_args.args
            return args[0] if args else sender.call_args.kwargs.get("content", "")
    raise AssertionError("no reply sent")


def make_run(**overrides) -> AQRun:
    fields = {
        "channel_id": str(CHANNEL_ID),
        "announcement_message_id": "9001",
        "participant_role_id": "role-bg1",
        "day": 2,
        "section_progress": {
            "s1": {"100": PlayerSectionState(done=True), "200": PlayerSectionState()},
            "s2": {"100": PlayerSectionState(), "200": PlayerSectionState()},
            "s3": {"100": PlayerSectionState(), "200": PlayerSectionState()},
        },
        "started_at": NOW,
        "scheduled_end_at": NOW + timedelta(hours=23, minutes=50),
        "alliance_id": "alliance-1",
        "channel_name": "aq-bg1",
        "role_name": "BG1",
    }
    fields.update(overrides)
    return AQRun(**fields)


async def seed_run(engine: AsyncEngine, officer_role_id: str | None = None) -> None:
    """Register the guild as an alliance and start a run in CHANNEL_ID."""
    async with get_session(engine) as session:
        repo = Repository(session)
        await repo.create_alliance(
            str(GUILD_ID), "Summoners United", officer_role_id=officer_role_id
        )
        request = StartRequest(
            guild_id=str(GUILD_ID),
            channel_id=str(CHANNEL_ID),
            role_id="role-bg1",
            day=1,
            create_thread=False,
        )
        await start_run(
            repo, FakeChat(), FakeRoles({"role-bg1": ["100", "200"]}), request, now=NOW
        )


async def load_run(engine: AsyncEngine) -> AQRun | None:
    async with get_session(engine) as session:
        return await Repository(session).get_aq_run(str(CHANNEL_ID))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_discord_enabled() -> Settings:
    """Production settings with a bot token."""
    return Settings(
        aqbot_env="production",
        database_url="sqlite+aiosqlite:///:memory:",
        discord_bot_token="test-token-not-real",
        discord_guild_id="987654321",
        discord_enabled=True,
    )


# ---------------------------------------------------------------------------
# is_discord_enabled
# ---------------------------------------------------------------------------


class TestIsDiscordEnabled:
    def test_enabled_with_token(self, settings_discord_enabled: Settings) -> None:
        assert is_discord_enabled(settings_discord_enabled) is True

    def test_disabled_in_development(self) -> None:
        settings = Settings(
            aqbot_env="development", discord_bot_token="tok", discord_enabled=True
        )
        assert is_discord_enabled(settings) is False

    def test_disabled_when_flag_false(self) -> None:
        settings = Settings(aqbot_env="production", discord_bot_token="tok", discord_enabled=False)
        assert is_discord_enabled(settings) is False

    def test_disabled_when_token_empty(self) -> None:
        settings = Settings(aqbot_env="production", discord_bot_token="", discord_enabled=True)
        assert is_discord_enabled(settings) is False


# ---------------------------------------------------------------------------
# AQBot construction
# ---------------------------------------------------------------------------


class TestAQBotInit:
    def test_bot_creation(self, settings_discord_enabled: Settings) -> None:
        bot = AQBot(settings=settings_discord_enabled)
        assert bot.settings is settings_discord_enabled
        assert bot.engine is None
        assert isinstance(bot.chat, DiscordChatSurface)

    def test_bot_has_command_groups(self, settings_discord_enabled: Settings) -> None:
        bot = AQBot(settings=settings_discord_enabled)
        command_names = [cmd.name for cmd in bot.tree.get_commands()]
        assert "alliance" in command_names
        assert "aq" in command_names

    def test_aq_subcommands(self, settings_discord_enabled: Settings) -> None:
        bot = AQBot(settings=settings_discord_enabled)
        aq = bot.tree.get_command("aq")
        names = {cmd.name for cmd in aq.commands}
        assert names == {"start", "end", "skip", "unskip", "schedule", "reminders"}

    async def test_scheduled_starts_wait_for_ready(self, settings_discord_enabled: Settings):
        bot = AQBot(settings=settings_discord_enabled)
        assert await bot.run_scheduled_starts() == 0

    def test_board_view_without_engine(self, settings_discord_enabled: Settings) -> None:
        bot = AQBot(settings=settings_discord_enabled)
        with pytest.raises(RuntimeError):
            bot._board_view()

    async def test_board_view_with_engine(
        self, settings_discord_enabled: Settings, engine: AsyncEngine
    ) -> None:
        bot = AQBot(settings=settings_discord_enabled, engine=engine)
        view = bot._board_view()
        assert isinstance(view, AQBoardView)
        assert view.engine is engine


class TestStartDiscordBot:
    async def test_start_creates_task(self, settings_discord_enabled: Settings) -> None:
        with patch.object(AQBot, "start", new_callable=AsyncMock) as mock_start:
            bot = await start_discord_bot(settings_discord_enabled)
            assert isinstance(bot, AQBot)
            # Give the task a moment to start
            await asyncio.sleep(0.05)
            mock_start.assert_called_once_with("test-token-not-real")
            await bot.close()


# ---------------------------------------------------------------------------
# Slash command handlers
# ---------------------------------------------------------------------------


class TestHandlersWithoutDatabase:
    @pytest.fixture
    def bot(self, settings: Settings) -> AQBot:
        return AQBot(settings=settings)

    async def test_register(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_alliance_register(interaction, "Summoners", "UTC")
        interaction.response.send_message.assert_called_once_with(
            NO_DATABASE_MESSAGE, ephemeral=True
        )

    async def test_skip(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_aq_skip(interaction, "1d")
        assert replied_text(interaction) == NO_DATABASE_MESSAGE

    async def test_reminders_view(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_reminders_view(interaction)
        assert replied_text(interaction) == NO_DATABASE_MESSAGE


class TestAllianceCommands:
    @pytest.fixture
    def bot(self, settings: Settings, engine: AsyncEngine) -> AQBot:
        return AQBot(settings=settings, engine=engine)

    async def test_register(self, bot: AQBot, engine: AsyncEngine) -> None:
        interaction = make_interaction()
        await bot._handle_alliance_register(interaction, " Summoners United ", "Europe/Berlin")

        assert replied_text(interaction) == "Registered **Summoners United**."
        embed = interaction.response.send_message.call_args.kwargs["embed"]
        assert embed.title == "Summoners United"
        async with get_session(engine) as session:
            row = await Repository(session).get_alliance_by_guild(str(GUILD_ID))
        assert row.timezone == "Europe/Berlin"

    async def test_register_twice(self, bot: AQBot) -> None:
        await bot._handle_alliance_register(make_interaction(), "Summoners United", "UTC")
        interaction = make_interaction()
        await bot._handle_alliance_register(interaction, "Impostors", "UTC")
        assert "already registered as **Summoners United**" in replied_text(interaction)

    async def test_register_needs_admin(self, bot: AQBot) -> None:
        interaction = make_interaction(user=make_member(manage_messages=True))
        await bot._handle_alliance_register(interaction, "Summoners United", "UTC")
        assert replied_text(interaction) == ADMIN_ONLY_MESSAGE

    async def test_register_unknown_time_zone(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_alliance_register(interaction, "Summoners United", "Mars/Base")
        assert "Unknown time zone" in replied_text(interaction)

    async def test_config_unregistered(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_alliance_config(interaction, True, None, None)
        assert replied_text(interaction) == "This server is not registered as an alliance."

    async def test_config_updates(self, bot: AQBot, engine: AsyncEngine) -> None:
        await bot._handle_alliance_register(make_interaction(), "Summoners United", "UTC")
        interaction = make_interaction()
        await bot._handle_alliance_config(interaction, True, MagicMock(id=777), None)

        async with get_session(engine) as session:
            row = await Repository(session).get_alliance_by_guild(str(GUILD_ID))
        assert row.create_aq_thread is True
        assert row.officer_role_id == "777"


class TestAQCommands:
    @pytest.fixture
    def bot(self, settings: Settings, engine: AsyncEngine) -> AQBot:
        return AQBot(settings=settings, engine=engine)

    async def test_start_unregistered(self, bot: AQBot) -> None:
        interaction = make_interaction(responded=True)
        role = MagicMock(id=777)
        role.name = "BG1"
        channel = MagicMock(id=CHANNEL_ID)
        channel.name = "aq-bg1"

        await bot._handle_aq_start(interaction, 1, role, channel, None)

        interaction.response.defer.assert_called_once()
        assert replied_text(interaction) == "This server is not registered as an alliance."

    async def test_end_without_run(self, bot: AQBot) -> None:
        await bot._handle_alliance_register(make_interaction(), "Summoners United", "UTC")
        interaction = make_interaction(responded=True)
        await bot._handle_aq_end(interaction, None)
        assert replied_text(interaction) == "No active AQ tracker in that channel."

    async def test_end_needs_officer(self, bot: AQBot, engine: AsyncEngine) -> None:
        await seed_run(engine)
        interaction = make_interaction(responded=True, user=make_member())
        await bot._handle_aq_end(interaction, None)
        assert replied_text(interaction) == "Only alliance officers can do that."
        assert await load_run(engine) is not None

    async def test_skip_and_unskip(self, bot: AQBot, engine: AsyncEngine) -> None:
        await bot._handle_alliance_register(make_interaction(), "Summoners United", "UTC")

        interaction = make_interaction()
        await bot._handle_aq_skip(interaction, "1w")
        assert replied_text(interaction).startswith("Scheduled AQ starts are skipped until")

        interaction = make_interaction()
        await bot._handle_aq_unskip(interaction)
        assert replied_text(interaction) == "Scheduled AQ starts resumed."

        interaction = make_interaction()
        await bot._handle_aq_unskip(interaction)
        assert replied_text(interaction) == "No skip is active."

    async def test_skip_bad_duration(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_aq_skip(interaction, "forever")
        assert replied_text(interaction).startswith("Invalid duration")


class TestScheduleCommands:
    @pytest.fixture
    async def bot(self, settings: Settings, engine: AsyncEngine) -> AQBot:
        bot = AQBot(settings=settings, engine=engine)
        await bot._handle_alliance_register(make_interaction(), "Summoners United", "UTC")
        return bot

    async def _add(self, bot: AQBot, time: str = "18:30") -> AsyncMock:
        interaction = make_interaction()
        channel = MagicMock(id=555, mention="<#555>")
        await bot._handle_schedule_add(interaction, 1, 1, time, 2, channel, MagicMock(id=777))
        return interaction

    async def test_add(self, bot: AQBot, engine: AsyncEngine) -> None:
        interaction = await self._add(bot)
        assert replied_text(interaction) == (
            "Battlegroup 1 AQ Day 2 will start every Monday at 18:30 in <#555>."
        )
        async with get_session(engine) as session:
            repo = Repository(session)
            alliance = await repo.get_alliance_by_guild(str(GUILD_ID))
            schedules = await repo.get_aq_schedules(alliance.id)
        assert len(schedules) == 1
        assert schedules[0].time == "18:30"
        assert schedules[0].channel_id == "555"
        assert schedules[0].role_id == "777"

    async def test_duplicate_battlegroup_day(self, bot: AQBot) -> None:
        await self._add(bot)
        interaction = await self._add(bot, time="20:00")
        assert "already starts on Monday" in replied_text(interaction)

    async def test_bad_time(self, bot: AQBot) -> None:
        interaction = await self._add(bot, time="6pm")
        assert replied_text(interaction).startswith("Invalid time")

    async def test_remove(self, bot: AQBot, engine: AsyncEngine) -> None:
        await self._add(bot)
        async with get_session(engine) as session:
            repo = Repository(session)
            alliance = await repo.get_alliance_by_guild(str(GUILD_ID))
            schedule_id = (await repo.get_aq_schedules(alliance.id))[0].id

        interaction = make_interaction()
        await bot._handle_schedule_remove(interaction, schedule_id)
        assert replied_text(interaction) == "Schedule removed."

        interaction = make_interaction()
        await bot._handle_schedule_remove(interaction, schedule_id)
        assert replied_text(interaction) == "Schedule not found."

    async def test_view(self, bot: AQBot) -> None:
        await self._add(bot)
        interaction = make_interaction()
        await bot._handle_schedule_view(interaction)
        embed = interaction.response.send_message.call_args.kwargs["embed"]
        assert embed.fields[0].name == "Battlegroup 1"


class TestReminderCommands:
    @pytest.fixture
    async def bot(self, settings: Settings, engine: AsyncEngine) -> AQBot:
        bot = AQBot(settings=settings, engine=engine)
        await bot._handle_alliance_register(make_interaction(), "Summoners United", "UTC")
        return bot

    async def test_view(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_reminders_view(interaction)
        embed = interaction.response.send_message.call_args.kwargs["embed"]
        assert embed.title == "⚙️ AQ Reminder Settings"
        assert len(embed.fields) == 3

    async def test_set_time(self, bot: AQBot, engine: AsyncEngine) -> None:
        interaction = make_interaction()
        await bot._handle_reminders_set(interaction, ReminderTier.SECTION2, None, "7:05")

        assert replied_text(interaction) == "Section 2 reminder updated."
        async with get_session(engine) as session:
            repo = Repository(session)
            alliance = await repo.get_alliance_by_guild(str(GUILD_ID))
            settings = await repo.get_reminder_settings(alliance.id)
        assert settings.section2_time == "07:05"
        assert settings.section2_enabled is True

    async def test_disable(self, bot: AQBot, engine: AsyncEngine) -> None:
        await bot._handle_reminders_set(make_interaction(), ReminderTier.FINAL, False, None)
        async with get_session(engine) as session:
            repo = Repository(session)
            alliance = await repo.get_alliance_by_guild(str(GUILD_ID))
            settings = await repo.get_reminder_settings(alliance.id)
        assert settings.final_enabled is False

    async def test_nothing_to_change(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_reminders_set(interaction, ReminderTier.FINAL, None, None)
        assert replied_text(interaction).startswith("Nothing to change")

    async def test_bad_time(self, bot: AQBot) -> None:
        interaction = make_interaction()
        await bot._handle_reminders_set(interaction, ReminderTier.FINAL, None, "25:00")
        assert replied_text(interaction).startswith("Invalid time")


# ---------------------------------------------------------------------------
# Status board buttons
# ---------------------------------------------------------------------------


class TestAQBoardView:
    async def test_custom_ids_are_stable(self, engine: AsyncEngine) -> None:
        view = AQBoardView(engine)
        assert view.timeout is None
        custom_ids = {item.custom_id for item in view.children}
        assert custom_ids == {
            "aq:path:s1",
            "aq:path:s2",
            "aq:path:s3",
            "aq:boss:s1",
            "aq:boss:s2",
            "aq:map_clear",
        }

    async def test_path_toggle(self, engine: AsyncEngine) -> None:
        await seed_run(engine)
        channel = make_channel()
        interaction = make_interaction(responded=True, user=make_member(100), client_channel=channel)
        view = AQBoardView(engine)

        await view.path_s1.callback(interaction)

        interaction.response.defer.assert_called_once()
        assert replied_text(interaction) == "Your progress for Section 1 has been updated."
        assert (await load_run(engine)).is_done("s1", "100")
        edit = channel.get_partial_message.return_value.edit
        assert isinstance(edit.call_args.kwargs["embed"], discord.Embed)

    async def test_toggle_without_run(self, engine: AsyncEngine) -> None:
        interaction = make_interaction(responded=True, user=make_member(100))
        await AQBoardView(engine).path_s2.callback(interaction)
        assert replied_text(interaction) == INACTIVE_MESSAGE

    async def test_toggle_by_outsider(self, engine: AsyncEngine) -> None:
        await seed_run(engine)
        interaction = make_interaction(responded=True, user=make_member(999))
        await AQBoardView(engine).path_s1.callback(interaction)
        assert replied_text(interaction) == "You are not registered for this AQ."

    async def test_boss_needs_officer(self, engine: AsyncEngine) -> None:
        await seed_run(engine)
        interaction = make_interaction(user=make_member(100))
        await AQBoardView(engine).boss_s1.callback(interaction)
        assert replied_text(interaction) == "Only alliance officers can do that."
        interaction.response.defer.assert_not_called()

    async def test_boss_by_officer_role(self, engine: AsyncEngine) -> None:
        await seed_run(engine, officer_role_id="888")
        channel = make_channel()
        interaction = make_interaction(
            user=make_member(555, role_ids=(888,)), client_channel=channel
        )

        await AQBoardView(engine).boss_s1.callback(interaction)

        interaction.response.defer.assert_called_once()
        text = channel.send.call_args.kwargs["content"]
        assert text == (
            "<@&role-bg1> <@555> defeated the Section 1 Miniboss! Section 2 is now open."
        )
        assert (await load_run(engine)).map_status_label == "Section 2 in Progress"

    async def test_map_clear(self, engine: AsyncEngine) -> None:
        await seed_run(engine)
        channel = make_channel()
        interaction = make_interaction(
            user=make_member(555, manage_messages=True), client_channel=channel
        )

        await AQBoardView(engine).map_clear.callback(interaction)

        assert "The map is 100% complete!" in channel.send.call_args.kwargs["content"]
        edit_kwargs = channel.get_partial_message.return_value.edit.call_args.kwargs
        assert edit_kwargs["view"] is None
        assert edit_kwargs["embed"].color.value == COLOR_COMPLETE
        assert await load_run(engine) is None


# ---------------------------------------------------------------------------
# Permission checks
# ---------------------------------------------------------------------------


class TestPermissions:
    def test_admin(self) -> None:
        assert is_admin(make_member(administrator=True))
        assert is_admin(make_member(manage_guild=True))
        assert not is_admin(make_member(manage_messages=True))

    def test_plain_user_is_nobody(self) -> None:
        user = MagicMock(spec=discord.User)
        assert not is_admin(user)
        assert not is_officer(user, None)

    def test_officer_by_permission(self) -> None:
        assert is_officer(make_member(administrator=True), None)
        assert is_officer(make_member(manage_messages=True), None)
        assert not is_officer(make_member(), None)

    def test_officer_by_role(self) -> None:
        alliance = MagicMock(officer_role_id="888")
        assert is_officer(make_member(role_ids=(888,)), alliance)
        assert not is_officer(make_member(role_ids=(889,)), alliance)


# ---------------------------------------------------------------------------
# Chat and role adapters
# ---------------------------------------------------------------------------


class TestRenderContent:
    async def test_live_board_has_buttons(self) -> None:
        view = MagicMock()
        kwargs = render_content(BoardUpdate(make_run()), lambda: view)
        assert kwargs["content"] is None
        assert isinstance(kwargs["embed"], discord.Embed)
        assert kwargs["view"] is view

    async def test_finished_board_has_no_buttons(self) -> None:
        run = make_run(lifecycle_state=LifecycleState.COMPLETED)
        kwargs = render_content(BoardUpdate(run), MagicMock)
        assert kwargs["view"] is None

    def test_text_clears_embed_and_view(self) -> None:
        assert render_content("ended", MagicMock) == {
            "content": "ended",
            "embed": None,
            "view": None,
        }


class TestDiscordChatSurface:
    def _surface(self, channel: MagicMock) -> DiscordChatSurface:
        client = MagicMock()
        client.get_channel = MagicMock(return_value=channel)
        return DiscordChatSurface(client, board_view=MagicMock)

    async def test_post_text(self) -> None:
        channel = make_channel()
        message_id = await self._surface(channel).post_message("1001", "hello")
        assert message_id == "4242"
        channel.send.assert_called_once_with(content="hello")

    async def test_fetch_when_not_cached(self) -> None:
        channel = make_channel()
        client = MagicMock()
        client.get_channel = MagicMock(return_value=None)
        client.fetch_channel = AsyncMock(return_value=channel)
        surface = DiscordChatSurface(client, board_view=MagicMock)

        await surface.post_message("1001", "hello")

        client.fetch_channel.assert_called_once_with(1001)

    async def test_edit_text(self) -> None:
        channel = make_channel()
        await self._surface(channel).edit_message("1001", "9001", "ended")
        channel.get_partial_message.assert_called_once_with(9001)
        channel.get_partial_message.return_value.edit.assert_called_once_with(
            content="ended", embed=None, view=None
        )

    async def test_create_thread(self) -> None:
        channel = make_channel()
        thread_id = await self._surface(channel).create_thread("1001", "9001", "AQ Day 1 Updates")
        assert thread_id == "5151"
        channel.get_partial_message.return_value.create_thread.assert_called_once_with(
            name="AQ Day 1 Updates", auto_archive_duration=1440
        )

    async def test_create_thread_forbidden(self) -> None:
        channel = make_channel()
        forbidden = discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "Missing Access")
        channel.get_partial_message.return_value.create_thread = AsyncMock(side_effect=forbidden)
        with pytest.raises(ThreadPermissionError):
            await self._surface(channel).create_thread("1001", "9001", "AQ Day 1 Updates")

    async def test_lock_thread(self) -> None:
        thread = MagicMock(spec=discord.Thread)
        thread.edit = AsyncMock()
        await self._surface(thread).lock_thread("3003")
        thread.edit.assert_called_once_with(locked=True)

    async def test_lock_ignores_plain_channel(self) -> None:
        channel = make_channel()
        channel.edit = AsyncMock()
        await self._surface(channel).lock_thread("1001")
        channel.edit.assert_not_called()


class TestDiscordRoleResolver:
    async def test_members(self) -> None:
        role = MagicMock(members=[MagicMock(id=1), MagicMock(id=2)])
        guild = MagicMock()
        guild.get_role = MagicMock(return_value=role)
        assert await DiscordRoleResolver(guild).resolve_role_members("777") == ["1", "2"]
        guild.get_role.assert_called_once_with(777)

    async def test_missing_role(self) -> None:
        guild = MagicMock()
        guild.get_role = MagicMock(return_value=None)
        assert await DiscordRoleResolver(guild).resolve_role_members("777") is None


# ---------------------------------------------------------------------------
# Embed builders
# ---------------------------------------------------------------------------


class TestBoardEmbed:
    def test_progress_lines(self) -> None:
        lines = build_progress_lines(make_run()).split("\n")
        assert lines[0] == "🏆 ⚔️ ⚔️ <@100>"
        assert lines[1] == "⚔️ ⚔️ ⚔️ <@200>"
        assert lines[-1] == LEGEND

    def test_no_players(self) -> None:
        empty = {"s1": {}, "s2": {}, "s3": {}}
        assert build_progress_lines(make_run(section_progress=empty)) == "No players registered"

    def test_board(self) -> None:
        run = make_run()
        embed = build_aq_board_embed(run)
        assert embed.title == "Alliance Quest – Day 2"
        assert embed.description.startswith("Status: Section 1 in Progress\n")
        assert f"<t:{int(run.scheduled_end_at.timestamp())}:R>" in embed.description
        assert embed.color.value == COLOR_ACTIVE
        assert embed.footer.text == "#aq-bg1 · tracking @BG1"

    def test_completed_board(self) -> None:
        run = make_run(lifecycle_state=LifecycleState.COMPLETED)
        assert build_aq_board_embed(run).color.value == COLOR_COMPLETE


class TestSettingsEmbeds:
    def test_reminder_settings(self) -> None:
        embed = build_reminder_settings_embed(ReminderSettings(section2_enabled=False))
        names = [field.name for field in embed.fields]
        assert names == ["Section 1 Reminder", "Section 2 Reminder", "Final Reminder"]
        assert embed.fields[1].value.startswith("❌ Inactive")
        assert embed.footer.text == "Times in UTC"

    def test_empty_schedule(self) -> None:
        alliance = MagicMock(timezone="UTC")
        alliance.name = "Summoners United"
        embed = build_schedule_embed(alliance, [])
        assert "No AQ schedules configured" in embed.description
