"""Discord gateway connector.

Receives messages over the gateway via discord.py and replies in the channel
or in a per-question thread.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from bobby.connectors.base import IncomingMessage, split_message

if TYPE_CHECKING:
    from bobby.config import DiscordConfig
    from bobby.connectors.base import ChatSurface, MessageHandler

logger = logging.getLogger(__name__)

THREAD_NAME_LIMIT = 100


class DiscordSurface:
    """ChatSurface over a text channel or thread."""

    def __init__(
        self,
        channel: discord.abc.Messageable,
        message: discord.Message | None = None,
    ) -> None:
        self._channel = channel
        self._message = message

    @property
    def thread_id(self) -> str | None:
        if isinstance(self._channel, discord.Thread):
            return str(self._channel.id)
        return None

    @property
    def name(self) -> str | None:
        return getattr(self._channel, "name", None)

    async def send(self, text: str) -> None:
        for part in split_message(text):
            await self._channel.send(part)

    async def send_typing(self) -> None:
        await self._channel.typing()

    async def set_name(self, name: str) -> None:
        if not isinstance(self._channel, discord.Thread):
            raise TypeError("Only threads can be renamed")
        await self._channel.edit(name=name)

    async def create_thread(self, name: str) -> ChatSurface:
        if isinstance(self._channel, discord.Thread) or self._message is None:
            return self
        thread = await self._message.create_thread(name=name[:THREAD_NAME_LIMIT])
        logger.info("Created thread %s (%s)", thread.name, thread.id)
        return DiscordSurface(thread)


class _BobbyClient(discord.Client):
    def __init__(self, connector: DiscordConnector, *, intents: discord.Intents) -> None:
        super().__init__(intents=intents)
        self._connector = connector

    async def on_ready(self) -> None:
        await self._connector.on_ready()

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self._connector.on_guild_join(guild)

    async def on_message(self, message: discord.Message) -> None:
        await self._connector.on_message(message)


class DiscordConnector:
    """Discord connector using the discord.py gateway client."""

    def __init__(self, config: DiscordConfig) -> None:
        self._config = config
        self._allowed = {s.strip() for s in config.allowed_servers if s.strip()}
        self._handler: MessageHandler | None = None

        intents = discord.Intents.default()
        intents.guilds = True
        intents.guild_messages = True
        intents.message_content = True
        self._client = _BobbyClient(self, intents=intents)

    @property
    def name(self) -> str:
        return "discord"

    async def start(self, handler: MessageHandler) -> None:
        self._handler = handler
        logger.info("Logging into Discord...")
        await self._client.start(self._config.token)

    async def stop(self) -> None:
        if not self._client.is_closed():
            await self._client.close()
            logger.info("Discord client closed")

    # ── Space authorization ───────────────────────────────────

    def is_authorized(self, space_id: str | None) -> bool:
        if not self._allowed:
            return True
        return space_id is not None and space_id in self._allowed

    async def _enforce(self, guild: discord.Guild) -> None:
        if not self._allowed:
            logger.warning(
                "Joined server %s (%s) with no allow-list. "
                "Set ALLOWED_DISCORD_SERVERS for production.",
                guild.name,
                guild.id,
            )
            return
        if self.is_authorized(str(guild.id)):
            logger.info("Joined authorized server: %s (%s)", guild.name, guild.id)
            return
        logger.warning("Leaving unauthorized server: %s (%s)", guild.name, guild.id)
        try:
            await guild.leave()
        except discord.HTTPException as e:
            logger.error("Failed to leave server %s: %s", guild.id, e)

    # ── Gateway events ────────────────────────────────────────

    async def on_ready(self) -> None:
        user = self._client.user
        logger.info("Logged in as %s (%s)", user, getattr(user, "id", "?"))
        for guild in list(self._client.guilds):
            await self._enforce(guild)
        logger.info("Bobby is now ready to answer queries (%d servers)", len(self._client.guilds))

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self._enforce(guild)

    async def on_message(self, message: discord.Message) -> None:
        if self._handler is None or message.author.bot:
            return

        msg = self.to_incoming(message)
        if not self.is_authorized(msg.space_id):
            logger.debug("Ignoring message from unauthorized space %s", msg.space_id)
            return

        await self._handler(msg, DiscordSurface(message.channel, message))

    @staticmethod
    def to_incoming(message: discord.Message) -> IncomingMessage:
        channel = message.channel
        is_thread = isinstance(channel, discord.Thread)
        return IncomingMessage(
            text=message.content or "",
            author_id=str(message.author.id),
            channel_id=str(channel.id),
            message_id=str(message.id),
            author_is_bot=bool(message.author.bot),
            thread_id=str(channel.id) if is_thread else None,
            thread_name=channel.name if is_thread else None,
            space_id=str(message.guild.id) if message.guild else None,
            sender=message.author.name,
            connector_name="discord",
        )
