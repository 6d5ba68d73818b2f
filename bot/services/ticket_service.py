from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

import discord

from core.config import AppConfig
from core.errors import (
    ConfigurationError,
    ConfirmationExpiredError,
    MemberNotFoundError,
    PermissionDeniedError,
    TicketNotFoundError,
    TicketStateError,
    ValidationError,
)
from database.models import Ticket
from database.repositories import TicketRepository
from services.confirmations import CloseConfirmationTracker, CloseRequestKey
from services.members import get_member, resolve_member
from services.permissions import PermissionManager
from services.transcript_service import ArchiveReceipt, TranscriptService
from utils.time import ticket_suffix

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TicketServiceDeps:
    ticket_repo: TicketRepository
    close_requests: CloseConfirmationTracker
    permissions: PermissionManager
    transcripts: TranscriptService


@dataclass(slots=True)
class TicketRequest:
    trade_details: str
    other_user_input: str
    can_join_vip: str


@dataclass(slots=True)
class TicketCreation:
    ticket: Ticket
    channel: discord.TextChannel
    counterparty: discord.Member | None

    @property
    def counterparty_found(self) -> bool:
        return self.counterparty is not None


class TicketService:
    def __init__(self, config: AppConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps

    def is_staff(self, member: discord.Member) -> bool:
        return any(role.id == self.config.tickets.staff_role_id for role in member.roles)

    def _staff_role(self, guild: discord.Guild) -> discord.Role:
        role = guild.get_role(self.config.tickets.staff_role_id)
        if role is None:
            raise ConfigurationError("Middleman role not found. Please contact an administrator.")
        return role

    async def get_ticket(self, channel_id: int) -> Ticket:
        ticket = await self.deps.ticket_repo.get(channel_id)
        if ticket is None:
            raise TicketNotFoundError()
        return ticket

    async def require_ticket_channel(self, channel_id: int) -> Ticket:
        ticket = await self.deps.ticket_repo.get(channel_id)
        if ticket is None:
            raise TicketNotFoundError("This command can only be used in ticket channels.")
        return ticket

    @staticmethod
    def sanitize_channel_fragment(name: str) -> str:
        name = name.strip().lower()
        name = re.sub(r"[^a-z0-9_-]+", "-", name)
        name = re.sub(r"-{2,}", "-", name).strip("-")
        return name[:32] or "user"

    def build_channel_name(self, username: str) -> str:
        return f"ticket-{self.sanitize_channel_fragment(username)}-{ticket_suffix()}"

    async def create_ticket(
        self,
        guild: discord.Guild,
        creator: discord.Member,
        request: TicketRequest,
    ) -> TicketCreation:
        counterparty = await resolve_member(guild, request.other_user_input)

        category = guild.get_channel(self.config.tickets.category_id)
        if not isinstance(category, discord.CategoryChannel):
            raise ConfigurationError("Middleman category not found. Please contact an administrator.")
        staff_role = self._staff_role(guild)

        overwrites = self.deps.permissions.creation_overwrites(
            default_role=guild.default_role,
            creator=creator,
            staff_role=staff_role,
            me=guild.me,
        )
        channel = await guild.create_text_channel(
            name=self.build_channel_name(creator.name),
            category=category,
            overwrites=overwrites,
            reason=f"Middleman ticket requested by {creator} ({creator.id})",
        )

        ticket = Ticket(
            channel_id=channel.id,
            creator_id=creator.id,
            other_user_id=counterparty.id if counterparty else None,
            other_user_input=request.other_user_input,
            trade_details=request.trade_details,
            can_join_vip=request.can_join_vip,
        )
        await self.deps.ticket_repo.upsert(ticket)
        LOGGER.info(
            "Ticket created in channel %s by %s (counterparty %s)",
            channel.id,
            creator.id,
            counterparty.id if counterparty else "unresolved",
            extra={"channel_id": channel.id, "user_id": creator.id, "guild_id": guild.id},
        )
        return TicketCreation(ticket=ticket, channel=channel, counterparty=counterparty)

    async def claim_ticket(self, channel: discord.TextChannel, member: discord.Member) -> Ticket:
        ticket = await self.get_ticket(channel.id)
        if not self.is_staff(member):
            raise PermissionDeniedError("Only middleman team members can claim tickets.")
        if ticket.claimed:
            raise TicketStateError("This ticket has already been claimed.")
        staff_role = self._staff_role(channel.guild)

        updated = ticket.claimed_by(member.id)
        await self.deps.ticket_repo.upsert(updated)

        counterparty = None
        if ticket.other_user_id is not None:
            counterparty = await get_member(channel.guild, ticket.other_user_id)
        edits = self.deps.permissions.claim_edits(staff_role, member, counterparty)
        await self.deps.permissions.apply(channel, edits, reason=f"Ticket claimed by {member} ({member.id})")
        LOGGER.info(
            "Ticket %s claimed by %s",
            channel.id,
            member.id,
            extra={"channel_id": channel.id, "user_id": member.id},
        )
        return updated

    async def unclaim_ticket(self, channel: discord.TextChannel, member: discord.Member) -> Ticket:
        ticket = await self.get_ticket(channel.id)
        if not ticket.claimed:
            raise TicketStateError("This ticket is not currently claimed.")
        if ticket.claimer_id != member.id and not self.is_staff(member):
            raise PermissionDeniedError("Only the claimer or middleman team can unclaim this ticket.")
        staff_role = self._staff_role(channel.guild)

        previous_claimer_id = ticket.claimer_id
        updated = ticket.unclaimed()
        await self.deps.ticket_repo.upsert(updated)

        previous_claimer = None
        if previous_claimer_id is not None:
            previous_claimer = await get_member(channel.guild, previous_claimer_id)
        reason = f"Ticket unclaimed by {member} ({member.id})"
        if previous_claimer is None and previous_claimer_id is not None:
            # Runs before the staff edit: it rewrites the whole overwrite map from the cache.
            LOGGER.warning("Previous claimer %s could not be resolved; removing overwrite by id", previous_claimer_id)
            await self.deps.permissions.revoke_by_id(channel, previous_claimer_id, reason=reason)
        edits = self.deps.permissions.unclaim_edits(staff_role, previous_claimer)
        await self.deps.permissions.apply(channel, edits, reason=reason)
        LOGGER.info(
            "Ticket %s unclaimed by %s",
            channel.id,
            member.id,
            extra={"channel_id": channel.id, "user_id": member.id},
        )
        return updated

    def _can_moderate(self, ticket: Ticket, member: discord.Member) -> bool:
        return ticket.claimer_id == member.id or self.is_staff(member)

    async def request_close(self, channel: discord.abc.GuildChannel, member: discord.Member) -> CloseRequestKey:
        ticket = await self.require_ticket_channel(channel.id)
        if not self._can_moderate(ticket, member):
            raise PermissionDeniedError("Only middleman team members or the ticket claimer can close tickets.")
        key = await self.deps.close_requests.request(channel.id, member.id)
        LOGGER.info("Close requested for ticket %s by %s", channel.id, member.id)
        return key

    async def check_close_confirmation(
        self, channel_id: int, initiator_id: int, user: discord.abc.User
    ) -> CloseRequestKey:
        return await self.deps.close_requests.verify(channel_id, initiator_id, user.id)

    async def confirm_close(
        self,
        channel: discord.TextChannel,
        closer: discord.abc.User,
        key: CloseRequestKey,
    ) -> ArchiveReceipt:
        """Take the pending request, archive the transcript, then delete the record.

        Only one concurrent confirmation can take the request; the others get
        ``ConfirmationExpiredError``. If archiving fails the request is put back
        so the initiator can confirm again, and the record is kept.
        """
        ticket = await self.get_ticket(channel.id)
        archive_channel = await self._archive_channel(channel.guild)
        if not await self.deps.close_requests.consume(key):
            raise ConfirmationExpiredError()
        try:
            creator = await get_member(channel.guild, ticket.creator_id)
            receipt = await self.deps.transcripts.archive(
                channel=channel,
                archive_channel=archive_channel,
                ticket=ticket,
                closer=closer,
                creator=creator,
            )
        except Exception:
            await self.deps.close_requests.restore(key)
            raise
        await self.deps.ticket_repo.delete(channel.id)
        LOGGER.info(
            "Ticket %s closed by %s",
            channel.id,
            closer.id,
            extra={"channel_id": channel.id, "user_id": closer.id, "guild_id": channel.guild.id},
        )
        return receipt

    async def _archive_channel(self, guild: discord.Guild) -> discord.TextChannel:
        channel_id = self.config.tickets.transcript_channel_id
        channel = guild.get_channel(channel_id)
        if channel is None:
            try:
                channel = await guild.fetch_channel(channel_id)
            except discord.HTTPException:
                channel = None
        if not isinstance(channel, discord.TextChannel):
            raise ConfigurationError("Transcript channel not found.")
        return channel

    async def delete_channel_later(self, channel: discord.TextChannel, delay: float | None = None) -> None:
        wait = self.config.tickets.channel_delete_delay_seconds if delay is None else delay
        await asyncio.sleep(wait)
        try:
            await channel.delete(reason="Middleman ticket closed")
        except discord.HTTPException:
            LOGGER.exception("Failed to delete closed ticket channel %s", channel.id)

    async def add_participant(
        self, channel: discord.TextChannel, actor: discord.Member, raw_input: str | None
    ) -> discord.Member:
        ticket = await self.require_ticket_channel(channel.id)
        if not self._can_moderate(ticket, actor):
            raise PermissionDeniedError("Only middleman team members or the ticket claimer can add users.")
        if not raw_input or not raw_input.strip():
            raise ValidationError(
                "Please mention a user or provide their ID.\n"
                f"Usage: `{self.config.discord.prefix}add @user` or `{self.config.discord.prefix}add 123456789`"
            )

        member = await resolve_member(channel.guild, raw_input)
        if member is None:
            raise MemberNotFoundError()
        edit = self.deps.permissions.participant_edit(member)
        await self.deps.permissions.apply(channel, [edit], reason=f"Added to ticket by {actor} ({actor.id})")
        LOGGER.info("User %s added to ticket %s by %s", member.id, channel.id, actor.id)
        return member

    async def list_tickets(self, limit: int = 100) -> list[Ticket]:
        return await self.deps.ticket_repo.list_all(limit=limit)
