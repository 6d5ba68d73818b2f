from __future__ import annotations

import logging
from dataclasses import dataclass

import discord
from discord.ext import commands

from utils.embeds import error_embed

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class TicketNotFoundError(BotError):
    user_message: str = "Ticket data not found."


@dataclass(slots=True)
class TicketStateError(BotError):
    user_message: str = "The ticket is not in a valid state for this action."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


@dataclass(slots=True)
class MemberNotFoundError(BotError):
    user_message: str = "User not found in the server."


@dataclass(slots=True)
class ConfigurationError(BotError):
    user_message: str = "The bot is misconfigured. Please contact an administrator."


@dataclass(slots=True)
class ConfirmationExpiredError(BotError):
    user_message: str = "Close confirmation expired. Please initiate close again."


@dataclass(slots=True)
class InitiatorMismatchError(BotError):
    user_message: str = "Only the person who initiated the close can confirm it."


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction, message: str
) -> None:
    embed = error_embed(message)
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


async def report_interaction_error(interaction: discord.Interaction, error: Exception, fallback: str) -> None:
    """Answer a failed component interaction.

    ``BotError`` subclasses are expected outcomes and are shown as-is. Anything
    else is logged with its traceback and replaced by ``fallback``.
    """
    if isinstance(error, BotError):
        message = error.user_message
    else:
        LOGGER.exception(
            "Interaction failed. custom_id=%s channel=%s user=%s",
            (interaction.data or {}).get("custom_id"),
            interaction.channel_id,
            interaction.user.id if interaction.user else None,
            exc_info=error,
        )
        message = fallback
    try:
        await send_error_response(interaction, message)
    except discord.HTTPException:
        LOGGER.warning("Could not deliver error response for interaction %s", interaction.id)


def _humanize_command_error(error: Exception) -> str:
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, commands.CheckFailure):
        return "You are not authorized for this command."
    if isinstance(error, commands.BadArgument):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    if isinstance(error, commands.CommandNotFound):
        return
    original = getattr(error, "original", error)
    message = _humanize_command_error(original)
    if isinstance(original, BotError):
        LOGGER.info(
            "Prefix command rejected. command=%s user=%s reason=%s",
            getattr(ctx.command, "qualified_name", None),
            ctx.author.id,
            original.user_message,
        )
    else:
        LOGGER.exception(
            "Prefix command failed. command=%s guild=%s user=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            exc_info=error,
        )
    await send_error_response(ctx, message)
