from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import discord

from core.config import TranscriptConfig
from database.models import Ticket
from utils.constants import COLOR_ARCHIVE, HISTORY_PAGE_SIZE, TRANSCRIPT_RULE
from utils.embeds import make_embed
from utils.time import format_header_time, format_transcript_time, utc_now

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ArchiveReceipt:
    channel_id: int
    message_count: int
    pages: int
    filename: str
    stored_path: Path | None = None


@dataclass(slots=True)
class TranscriptHistory:
    messages: list[discord.Message]
    pages: int


def _embed_placeholder(message: discord.Message) -> str:
    embed = message.embeds[0]
    return f"[Embed: {embed.title or embed.description or 'No title'}]"


class TranscriptService:
    def __init__(self, config: TranscriptConfig, page_size: int = HISTORY_PAGE_SIZE) -> None:
        self.config = config
        self.page_size = page_size
        self.base_dir = Path(config.storage_directory) if config.storage_directory else None

    async def fetch_history(self, channel: discord.abc.Messageable) -> TranscriptHistory:
        """Read the whole channel, newest page first, and return it oldest first.

        A page shorter than ``page_size`` means the start of the channel was reached.
        """
        collected: list[discord.Message] = []
        before: discord.Message | None = None
        pages = 0
        while True:
            page = [message async for message in channel.history(limit=self.page_size, before=before)]
            pages += 1
            collected.extend(page)
            if len(page) < self.page_size:
                break
            before = page[-1]
        collected.reverse()
        return TranscriptHistory(messages=collected, pages=pages)

    @staticmethod
    def render(channel_name: str, messages: Sequence[discord.Message], generated_at: datetime | None = None) -> str:
        generated_at = generated_at or utc_now()
        lines = [
            f"Ticket: {channel_name}",
            f"Created: {format_header_time(generated_at)}",
            TRANSCRIPT_RULE,
            "",
        ]
        for msg in messages:
            content = msg.content or ""
            if not content and msg.embeds:
                content = _embed_placeholder(msg)
            lines.append(f"[{format_transcript_time(msg.created_at)}] {msg.author}: {content}")
            if msg.content and msg.embeds:
                lines.append(f"  {_embed_placeholder(msg)}")
            for attachment in msg.attachments:
                lines.append(f"  attachment: {attachment.url}")
        return "\n".join(lines) + "\n"

    def store(self, guild_id: int, channel_name: str, text: str) -> Path | None:
        if self.base_dir is None:
            return None
        guild_dir = self.base_dir / str(guild_id)
        guild_dir.mkdir(parents=True, exist_ok=True)
        path = guild_dir / f"transcript-{channel_name}.txt"
        path.write_text(text, encoding="utf-8")
        return path

    @staticmethod
    def build_summary(
        ticket: Ticket,
        channel_name: str,
        creator: discord.Member | None,
        closer: discord.abc.User,
    ) -> discord.Embed:
        opener = creator.mention if creator else f"User ID: {ticket.creator_id} (Left server)"
        return make_embed(
            title=f"📄 Ticket Transcript - {channel_name}",
            description=(
                f"**The opener of ticket:** {opener}\n\n"
                f"**Trade Details:** {ticket.trade_details}\n"
                f"**Other User or ID:** {ticket.other_user_input}\n"
                f"**Can you join VIP:** {ticket.can_join_vip}\n\n"
                f"**Closed by:** {closer.mention}"
            ),
            color=COLOR_ARCHIVE,
        )

    async def deliver(
        self,
        archive_channel: discord.abc.Messageable,
        ticket: Ticket,
        channel_name: str,
        closer: discord.abc.User,
        creator: discord.Member | None,
        text: str,
    ) -> str:
        """Post the summary embed with the transcript attached; returns the file name."""
        filename = f"transcript-{channel_name}.txt"
        await archive_channel.send(
            embed=self.build_summary(ticket, channel_name, creator, closer),
            file=discord.File(io.BytesIO(text.encode("utf-8")), filename=filename),
        )
        return filename

    async def archive(
        self,
        channel: discord.TextChannel,
        archive_channel: discord.abc.Messageable,
        ticket: Ticket,
        closer: discord.abc.User,
        creator: discord.Member | None,
    ) -> ArchiveReceipt:
        history = await self.fetch_history(channel)
        text = self.render(channel.name, history.messages)
        stored_path = self.store(channel.guild.id, channel.name, text)
        filename = await self.deliver(archive_channel, ticket, channel.name, closer, creator, text)
        LOGGER.info(
            "Archived transcript for channel %s (%s messages, %s pages)",
            channel.id,
            len(history.messages),
            history.pages,
        )
        return ArchiveReceipt(
            channel_id=channel.id,
            message_count=len(history.messages),
            pages=history.pages,
            filename=filename,
            stored_path=stored_path,
        )
