from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, cast

import discord

from core.errors import BotError, ValidationError, report_interaction_error, send_error_response
from utils.constants import (
    CLAIM_TICKET_ID,
    CLOSE_TICKET_ID,
    CONFIRM_CLOSE_PREFIX,
    CONFIRM_CLOSE_TEMPLATE,
    UNCLAIM_TICKET_ID,
)
from utils.embeds import error_embed, notice_embed, success_embed

if TYPE_CHECKING:
    from core.bot import MiddlemanBot

LOGGER = logging.getLogger(__name__)


def _ticket_context(interaction: discord.Interaction) -> tuple[discord.TextChannel, discord.Member]:
    if not isinstance(interaction.channel, discord.TextChannel) or not isinstance(interaction.user, discord.Member):
        raise ValidationError("Guild context is required.")
    return interaction.channel, interaction.user


class ConfirmCloseButton(discord.ui.DynamicItem[discord.ui.Button], template=CONFIRM_CLOSE_TEMPLATE):
    """Second step of closing. The initiator's ID travels in the custom ID."""

    def __init__(self, initiator_id: int) -> None:
        super().__init__(
            discord.ui.Button(
                label="Close",
                style=discord.ButtonStyle.primary,
                custom_id=f"{CONFIRM_CLOSE_PREFIX}{initiator_id}",
            )
        )
        self.initiator_id = initiator_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,
        item: discord.ui.Button,
        match: re.Match[str],
        /,
    ) -> ConfirmCloseButton:
        return cls(int(match["initiator_id"]))

    async def callback(self, interaction: discord.Interaction) -> Any:
        bot = cast("MiddlemanBot", interaction.client)
        try:
            channel, _ = _ticket_context(interaction)
            key = await bot.ticket_service.check_close_confirmation(channel.id, self.initiator_id, interaction.user)
        except BotError as error:
            await send_error_response(interaction, error.user_message)
            return

        await interaction.response.defer(thinking=True)
        try:
            await bot.ticket_service.confirm_close(channel, interaction.user, key)
        except BotError as error:
            await interaction.followup.send(embed=error_embed(error.user_message))
            return
        except Exception:
            LOGGER.exception("Closing ticket %s failed", channel.id)
            await interaction.followup.send(embed=error_embed("An error occurred while closing the ticket."))
            return

        delay = bot.config.tickets.channel_delete_delay_seconds
        await interaction.followup.send(
            embed=success_embed(f"Ticket closed. Transcript saved. Deleting channel in {delay} seconds...")
        )
        await bot.ticket_service.delete_channel_later(channel)


def build_close_prompt(initiator_id: int) -> tuple[discord.Embed, discord.ui.View]:
    view = discord.ui.View(timeout=None)
    view.add_item(ConfirmCloseButton(initiator_id))
    return notice_embed("🗑️ Close Ticket?"), view


class TicketControlsView(discord.ui.View):
    def __init__(self, bot: MiddlemanBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot

    @discord.ui.button(label="Claim", style=discord.ButtonStyle.success, custom_id=CLAIM_TICKET_ID)
    async def claim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        channel, member = _ticket_context(interaction)
        await self.bot.ticket_service.claim_ticket(channel, member)
        await interaction.response.send_message(embed=success_embed(f"{member.mention} has claimed this ticket."))

    @discord.ui.button(label="Unclaim", style=discord.ButtonStyle.secondary, custom_id=UNCLAIM_TICKET_ID)
    async def unclaim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        channel, member = _ticket_context(interaction)
        await self.bot.ticket_service.unclaim_ticket(channel, member)
        await interaction.response.send_message(embed=notice_embed(f"🔓 {member.mention} has unclaimed the ticket."))

    @discord.ui.button(label="Close", style=discord.ButtonStyle.danger, custom_id=CLOSE_TICKET_ID)
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        channel, member = _ticket_context(interaction)
        await self.bot.ticket_service.request_close(channel, member)
        embed, view = build_close_prompt(member.id)
        await interaction.response.send_message(embed=embed, view=view)

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[Any]
    ) -> None:
        fallbacks = {
            CLAIM_TICKET_ID: "An error occurred while claiming the ticket.",
            UNCLAIM_TICKET_ID: "An error occurred while unclaiming the ticket.",
            CLOSE_TICKET_ID: "An error occurred while processing the close request.",
        }
        fallback = fallbacks.get(getattr(item, "custom_id", ""), "Action failed due to an unexpected error.")
        await report_interaction_error(interaction, error, fallback)
