from __future__ import annotations

from datetime import UTC, datetime

import discord

from utils.constants import COLOR_ARCHIVE, COLOR_ERROR, COLOR_NOTICE, COLOR_SUCCESS


def make_embed(
    title: str | None,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
    timestamp: bool = True,
) -> discord.Embed:
    resolved_color = color if color is not None else COLOR_ARCHIVE
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC) if timestamp else None,
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def success_embed(message: str) -> discord.Embed:
    return make_embed(title=None, description=f"✅ {message}", color=COLOR_SUCCESS, timestamp=False)


def notice_embed(message: str) -> discord.Embed:
    return make_embed(title=None, description=message, color=COLOR_NOTICE, timestamp=False)


def error_embed(message: str) -> discord.Embed:
    return make_embed(title=None, description=f"❌ {message}", color=COLOR_ERROR, timestamp=False)
