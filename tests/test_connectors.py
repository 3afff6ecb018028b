"""Tests for the chat connectors and message splitting."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from bobby.config import DiscordConfig
from bobby.connectors.base import ChatSurface, Connector, split_message
from bobby.connectors.cli import CLIConnector, CLISurface
from bobby.connectors.discord import DiscordConnector, DiscordSurface
from bobby.sessions import Classification, classify


class TestSplitMessage:
    def test_short_untouched(self):
        assert split_message("hello") == ["hello"]

    def test_exact_limit_untouched(self):
        text = "x" * 2000
        assert split_message(text) == [text]

    def test_hard_cut(self):
        parts = split_message("x" * 2500)
        assert len(parts) == 2
        assert parts[0] == "Part 1/2: " + "x" * 1900
        assert parts[1] == "Part 2/2: " + "x" * 600

    def test_paragraph_break(self):
        text = "a" * 1600 + "\n\n" + "b" * 1000
        parts = split_message(text)
        assert parts == ["Part 1/2: " + "a" * 1600 + "\n\n", "Part 2/2: " + "b" * 1000]

    def test_sentence_break(self):
        text = "a" * 1700 + ". " + "b" * 1000
        parts = split_message(text)
        assert parts[0].endswith("a. ")
        assert parts[1] == "Part 2/2: " + "b" * 1000

    def test_early_paragraph_ignored(self):
        text = "a" * 100 + "\n\n" + "b" * 2400
        parts = split_message(text)
        assert len(parts[0]) == len("Part 1/2: ") + 1900


class TestCLIConnector:
    def test_protocols(self):
        assert isinstance(CLIConnector(), Connector)
        assert isinstance(CLISurface(), ChatSurface)

    def test_first_message_is_new_call(self):
        connector = CLIConnector()
        msg, surface = connector._to_message("where is auth?")

        assert msg.text == "bobby where is auth?"
        assert msg.thread_id is None
        assert classify(msg) is Classification.NEW_CALL
        assert surface.thread_id is None

    def test_wake_word_not_doubled(self):
        msg, _ = CLIConnector()._to_message("Bobby, where is auth?")
        assert msg.text == "Bobby, where is auth?"

    @pytest.mark.asyncio
    async def test_follow_up_after_thread_opened(self):
        connector = CLIConnector()
        _, surface = connector._to_message("where is auth?")
        await surface.create_thread("Bobby - where is auth?")

        msg, same = connector._to_message("and logout?")

        assert same is surface
        assert msg.thread_id == surface.thread_id
        assert msg.thread_name == "Bobby - where is auth?"
        assert classify(msg) is Classification.FOLLOW_UP

    @pytest.mark.asyncio
    async def test_surface_prints(self, capsys):
        surface = CLISurface()
        await surface.send("hi there")
        assert "Bobby: hi there" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_surface_rename(self):
        surface = CLISurface("t", "Bobby - old")
        await surface.set_name("Bobby - new")
        assert surface.name == "Bobby - new"


def make_thread(thread_id=42, name="Bobby - x"):
    thread = MagicMock(spec=discord.Thread)
    thread.id = thread_id
    thread.name = name
    thread.send = AsyncMock()
    thread.edit = AsyncMock()
    return thread


def make_message(channel, *, content="bobby help", bot=False, guild_id=7):
    message = MagicMock()
    message.content = content
    message.id = 1001
    message.channel = channel
    message.author.id = 55
    message.author.bot = bot
    message.author.name = "alice"
    if guild_id is None:
        message.guild = None
    else:
        message.guild.id = guild_id
    return message


class TestDiscordSurface:
    @pytest.mark.asyncio
    async def test_send_splits(self):
        thread = make_thread()
        await DiscordSurface(thread).send("x" * 2500)
        assert thread.send.await_count == 2

    @pytest.mark.asyncio
    async def test_rename_thread(self):
        thread = make_thread()
        surface = DiscordSurface(thread)
        await surface.set_name("Bobby - t - id")
        thread.edit.assert_awaited_once_with(name="Bobby - t - id")
        assert surface.thread_id == "42"

    @pytest.mark.asyncio
    async def test_rename_channel_raises(self):
        channel = MagicMock(spec=discord.TextChannel)
        with pytest.raises(TypeError):
            await DiscordSurface(channel).set_name("x")

    @pytest.mark.asyncio
    async def test_create_thread_truncates_name(self):
        channel = MagicMock(spec=discord.TextChannel)
        channel.id = 9
        message = make_message(channel)
        message.create_thread = AsyncMock(return_value=make_thread(77))

        thread = await DiscordSurface(channel, message).create_thread("Bobby - " + "q" * 200)

        name = message.create_thread.await_args.kwargs["name"]
        assert len(name) == 100
        assert thread.thread_id == "77"

    @pytest.mark.asyncio
    async def test_create_thread_inside_thread_reuses(self):
        surface = DiscordSurface(make_thread())
        assert await surface.create_thread("Bobby - again") is surface


class TestDiscordConnector:
    def test_open_when_no_allow_list(self):
        connector = DiscordConnector(DiscordConfig(token="t"))
        assert connector.is_authorized("123")
        assert connector.is_authorized(None)

    def test_allow_list(self):
        connector = DiscordConnector(DiscordConfig(token="t", allowed_servers=["7", " 8 "]))
        assert connector.is_authorized("7")
        assert connector.is_authorized("8")
        assert not connector.is_authorized("9")
        assert not connector.is_authorized(None)

    def test_to_incoming_thread(self):
        message = make_message(make_thread(42, "Bobby - t"))
        msg = DiscordConnector.to_incoming(message)

        assert msg.thread_id == "42"
        assert msg.thread_name == "Bobby - t"
        assert msg.author_id == "55"
        assert msg.space_id == "7"
        assert msg.connector_name == "discord"

    def test_to_incoming_channel(self):
        channel = MagicMock(spec=discord.TextChannel)
        channel.id = 9
        msg = DiscordConnector.to_incoming(make_message(channel, guild_id=None))

        assert msg.thread_id is None
        assert msg.channel_id == "9"
        assert msg.space_id is None

    @pytest.mark.asyncio
    async def test_on_message_filters(self):
        connector = DiscordConnector(DiscordConfig(token="t", allowed_servers=["7"]))
        handler = AsyncMock()
        connector._handler = handler

        await connector.on_message(make_message(make_thread(), bot=True))
        await connector.on_message(make_message(make_thread(), guild_id=8))
        handler.assert_not_awaited()

        await connector.on_message(make_message(make_thread()))
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unauthorized_guild_left(self):
        connector = DiscordConnector(DiscordConfig(token="t", allowed_servers=["7"]))
        guild = MagicMock()
        guild.id = 8
        guild.leave = AsyncMock()

        await connector.on_guild_join(guild)
        guild.leave.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_authorized_guild_kept(self):
        connector = DiscordConnector(DiscordConfig(token="t", allowed_servers=["7"]))
        guild = MagicMock()
        guild.id = 7
        guild.leave = AsyncMock()

        await connector.on_guild_join(guild)
        guild.leave.assert_not_awaited()
