from __future__ import annotations

import contextlib
import logging

import discord
from discord.ext import commands

from core.bot import MiddlemanBot
from core.errors import PermissionDeniedError, ValidationError
from utils.embeds import success_embed
from views.ticket_controls import build_close_prompt
from views.ticket_panel import TicketPanelView, build_panel_message

LOGGER = logging.getLogger(__name__)


class TicketsCog(commands.Cog):
    def __init__(self, bot: MiddlemanBot) -> None:
        self.bot = bot

    @staticmethod
    def _ticket_context(ctx: commands.Context[MiddlemanBot]) -> tuple[discord.TextChannel, discord.Member]:
        if not isinstance(ctx.channel, discord.TextChannel) or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        return ctx.channel, ctx.author

    @commands.command(
        name="send",
        help="Post the middleman request panel in this channel. Restricted to the middleman role or Manage Server.",
    )
    @commands.guild_only()
    async def send_panel(self, ctx: commands.Context[MiddlemanBot]) -> None:
        _, member = self._ticket_context(ctx)
        if not self.bot.ticket_service.is_staff(member) and not member.guild_permissions.manage_guild:
            raise PermissionDeniedError("Only middleman team members can post the request panel.")

        embed, image = build_panel_message(self.bot.config.tickets.panel_image_path)
        if image is not None:
            await ctx.send(embed=embed, view=TicketPanelView(self.bot), file=image)
        else:
            await ctx.send(embed=embed, view=TicketPanelView(self.bot))
        LOGGER.info("Request panel posted in channel %s by %s", ctx.channel.id, member.id)

        with contextlib.suppress(discord.HTTPException):
            await ctx.message.delete()

    @commands.command(name="add", help="Give a user access to this ticket.")
    @commands.guild_only()
    async def add_user(self, ctx: commands.Context[MiddlemanBot], user: str | None = None) -> None:
        channel, member = self._ticket_context(ctx)
        added = await self.bot.ticket_service.add_participant(channel, member, user)
        await ctx.reply(embed=success_embed(f"{added.mention} has been added to the ticket."), mention_author=False)

    @commands.command(name="close", help="Ask to close this ticket.")
    @commands.guild_only()
    async def close_ticket(self, ctx: commands.Context[MiddlemanBot]) -> None:
        channel, member = self._ticket_context(ctx)
        await self.bot.ticket_service.request_close(channel, member)
        embed, view = build_close_prompt(member.id)
        await ctx.reply(embed=embed, view=view, mention_author=False)


async def setup(bot: MiddlemanBot) -> None:
    await bot.add_cog(TicketsCog(bot))
