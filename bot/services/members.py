from __future__ import annotations

import logging
import re

import discord

LOGGER = logging.getLogger(__name__)

_MENTION_CHARS = re.compile(r"[<@!>]")


def clean_user_input(raw: str) -> str:
    """Strip mention syntax so ``<@!123>``, ``@name`` and ``123`` all normalize."""
    return _MENTION_CHARS.sub("", raw).strip()


async def get_member(guild: discord.Guild, user_id: int) -> discord.Member | None:
    member = guild.get_member(user_id)
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id)
    except discord.NotFound:
        return None
    except discord.HTTPException:
        LOGGER.warning("Member lookup failed for %s in guild %s", user_id, guild.id)
        return None


async def resolve_member(guild: discord.Guild, raw: str) -> discord.Member | None:
    """Find the member a user typed.

    All-digit input is treated as a user ID. Anything else is compared
    case-insensitively against every member's username and full tag.
    """
    cleaned = clean_user_input(raw)
    if not cleaned:
        return None
    if cleaned.isdigit():
        return await get_member(guild, int(cleaned))

    wanted = cleaned.lower()
    async for member in guild.fetch_members(limit=None):
        if member.name.lower() == wanted or str(member).lower() == wanted:
            return member
    return None
