from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import discord

from core.errors import report_interaction_error
from services.ticket_service import TicketCreation, TicketRequest
from utils.constants import (
    CAN_JOIN_VIP_MAX_LENGTH,
    COLOR_ERROR,
    COLOR_SUCCESS,
    OTHER_USER_MAX_LENGTH,
    PANEL_DESCRIPTION,
    PANEL_TITLE,
    REQUEST_TICKET_ID,
    TICKET_MODAL_ID,
    TRADE_DETAILS_MAX_LENGTH,
)
from utils.embeds import error_embed, make_embed, notice_embed, success_embed
from views.ticket_controls import TicketControlsView

if TYPE_CHECKING:
    from core.bot import MiddlemanBot


def build_panel_message(image_path: str | None) -> tuple[discord.Embed, discord.File | None]:
    embed = make_embed(title=PANEL_TITLE, description=PANEL_DESCRIPTION, color=COLOR_SUCCESS)
    if image_path and Path(image_path).is_file():
        image = discord.File(image_path, filename=Path(image_path).name)
        embed.set_image(url=f"attachment://{image.filename}")
        return embed, image
    return embed, None


def build_welcome_embeds(creation: TicketCreation, creator: discord.Member, staff_role_id: int) -> list[discord.Embed]:
    ticket = creation.ticket
    if creation.counterparty is not None:
        other_user_value = creation.counterparty.mention
        status = success_embed(
            f"The user is found, use {creation.counterparty.mention} or "
            f"`{creation.counterparty.id}` to add the person to the ticket."
        )
    else:
        other_user_value = f"❌ User \"{ticket.other_user_input}\" not found in the server"
        status = make_embed(title=None, description=other_user_value, color=COLOR_ERROR, timestamp=False)

    welcome = make_embed(
        title="🎫 New Ticket Created",
        description=f"Hello {creator.mention} and <@&{staff_role_id}>!",
        color=COLOR_SUCCESS,
    )
    welcome.add_field(name="📝 Trade Details", value=ticket.trade_details, inline=False)
    welcome.add_field(name="👤 Other User", value=other_user_value, inline=True)
    welcome.add_field(name="💎 Can Join VIP", value=ticket.can_join_vip, inline=True)

    wait = notice_embed("⏳ Please wait for a middleman member to claim this ticket and help both parties.")
    return [welcome, status, wait]


class TicketRequestModal(discord.ui.Modal, title="Middleman Ticket Request"):
    trade_details = discord.ui.TextInput(
        label="Trade Details",
        custom_id="trade_details",
        placeholder="Eg. My frost dragon for his Racoon",
        style=discord.TextStyle.paragraph,
        required=True,
        max_length=TRADE_DETAILS_MAX_LENGTH,
    )
    other_user = discord.ui.TextInput(
        label="Other User or ID",
        custom_id="other_user",
        placeholder="Eg. en5s or 123456789",
        style=discord.TextStyle.short,
        required=True,
        max_length=OTHER_USER_MAX_LENGTH,
    )
    can_join_vip = discord.ui.TextInput(
        label="Can you join VIP",
        custom_id="can_join_vip",
        placeholder="Yes/No",
        style=discord.TextStyle.short,
        required=True,
        max_length=CAN_JOIN_VIP_MAX_LENGTH,
    )

    def __init__(self, bot: MiddlemanBot) -> None:
        super().__init__(custom_id=TICKET_MODAL_ID, timeout=600)
        self.bot = bot

    def to_request(self) -> TicketRequest:
        return TicketRequest(
            trade_details=str(self.trade_details.value),
            other_user_input=str(self.other_user.value),
            can_join_vip=str(self.can_join_vip.value),
        )

    async def on_submit(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)

        creation = await self.bot.ticket_service.create_ticket(
            guild=interaction.guild,
            creator=interaction.user,
            request=self.to_request(),
        )
        await creation.channel.send(
            embeds=build_welcome_embeds(creation, interaction.user, self.bot.config.tickets.staff_role_id),
            view=TicketControlsView(self.bot),
        )
        await interaction.followup.send(
            embed=success_embed(f"Ticket created successfully! {creation.channel.mention}"),
            ephemeral=True,
        )

    async def on_error(self, interaction: discord.Interaction, error: Exception) -> None:
        await report_interaction_error(
            interaction,
            error,
            "An error occurred while creating the ticket. Please try again or contact an administrator.",
        )


class TicketPanelView(discord.ui.View):
    def __init__(self, bot: MiddlemanBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot

    @discord.ui.button(
        label="Request",
        style=discord.ButtonStyle.primary,
        emoji="🎫",
        custom_id=REQUEST_TICKET_ID,
    )
    async def request_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await interaction.response.send_modal(TicketRequestModal(self.bot))
