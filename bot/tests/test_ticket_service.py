from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
import pytest_asyncio

from core.config import AppConfig, DiscordConfig, TicketsConfig, TranscriptConfig
from core.errors import (
    ConfigurationError,
    ConfirmationExpiredError,
    InitiatorMismatchError,
    MemberNotFoundError,
    PermissionDeniedError,
    TicketNotFoundError,
    TicketStateError,
    ValidationError,
)
from database.base import Database
from database.migrations.runner import MIGRATIONS_DIR, run_migrations
from database.models import Ticket
from database.repositories import TicketRepository
from services.confirmations import CloseConfirmationTracker, MemoryCloseRequestStore
from services.permissions import PermissionManager, moderator_overwrite
from services.ticket_service import TicketRequest, TicketService, TicketServiceDeps
from services.transcript_service import ArchiveReceipt

CATEGORY_ID = 111
STAFF_ROLE_ID = 222
TRANSCRIPTS_ID = 333
TICKET_CHANNEL_ID = 555


def _not_found() -> discord.NotFound:
    return discord.NotFound(MagicMock(status=404, reason="Not Found"), "Unknown")


def _member(member_id: int, staff: bool = False) -> MagicMock:
    member = MagicMock()
    member.id = member_id
    member.name = f"user{member_id}"
    member.mention = f"<@{member_id}>"
    member.roles = [SimpleNamespace(id=STAFF_ROLE_ID if staff else 1)]
    return member


@dataclass
class Harness:
    service: TicketService
    repo: TicketRepository
    guild: MagicMock
    channel: MagicMock
    staff_role: MagicMock
    archive_channel: MagicMock
    transcripts: MagicMock
    members: dict[int, MagicMock]
    guild_channels: dict[int, object]

    def overwrite_for(self, target: object) -> discord.PermissionOverwrite | None:
        for call in reversed(self.channel.set_permissions.await_args_list):
            if call.args[0] is target:
                return call.kwargs["overwrite"]
        raise AssertionError("no overwrite set for target")


@pytest_asyncio.fixture
async def harness(tmp_path: Path) -> AsyncIterator[Harness]:
    db = Database(url=f"sqlite:///{tmp_path / 'tickets.db'}")
    await db.connect()
    await run_migrations(db, MIGRATIONS_DIR)

    members: dict[int, MagicMock] = {}
    staff_role = MagicMock()
    staff_role.id = STAFF_ROLE_ID
    archive_channel = MagicMock(spec=discord.TextChannel)
    archive_channel.send = AsyncMock()
    guild_channels: dict[int, object] = {
        CATEGORY_ID: MagicMock(spec=discord.CategoryChannel),
        TRANSCRIPTS_ID: archive_channel,
    }

    guild = MagicMock()
    guild.id = 9
    guild.get_role = MagicMock(side_effect=lambda role_id: staff_role if role_id == STAFF_ROLE_ID else None)
    guild.get_channel = MagicMock(side_effect=lambda channel_id: guild_channels.get(channel_id))
    guild.fetch_channel = AsyncMock(side_effect=_not_found())
    guild.get_member = MagicMock(side_effect=lambda user_id: members.get(user_id))
    guild.fetch_member = AsyncMock(side_effect=_not_found())

    channel = MagicMock()
    channel.id = TICKET_CHANNEL_ID
    channel.name = "ticket-user42-123456"
    channel.guild = guild
    channel.set_permissions = AsyncMock()
    channel.edit = AsyncMock()
    channel.overwrites = {}
    channel.delete = AsyncMock()
    guild.create_text_channel = AsyncMock(return_value=channel)

    transcripts = MagicMock()
    transcripts.archive = AsyncMock(
        return_value=ArchiveReceipt(
            channel_id=TICKET_CHANNEL_ID, message_count=3, pages=1, filename="transcript-ticket-user42-123456.txt"
        )
    )

    repo = TicketRepository(db)
    config = AppConfig(
        discord=DiscordConfig(token="x"),
        tickets=TicketsConfig(
            category_id=CATEGORY_ID,
            staff_role_id=STAFF_ROLE_ID,
            transcript_channel_id=TRANSCRIPTS_ID,
            channel_delete_delay_seconds=0,
        ),
        transcripts=TranscriptConfig(storage_directory=None),
    )
    deps = TicketServiceDeps(
        ticket_repo=repo,
        close_requests=CloseConfirmationTracker(MemoryCloseRequestStore()),
        permissions=PermissionManager(),
        transcripts=transcripts,
    )
    yield Harness(
        service=TicketService(config, deps),
        repo=repo,
        guild=guild,
        channel=channel,
        staff_role=staff_role,
        archive_channel=archive_channel,
        transcripts=transcripts,
        members=members,
        guild_channels=guild_channels,
    )
    await db.close()


async def _seed(h: Harness, other_user_id: int | None = None, claimer_id: int | None = None) -> Ticket:
    ticket = Ticket(
        channel_id=TICKET_CHANNEL_ID,
        creator_id=42,
        other_user_id=other_user_id,
        other_user_input=str(other_user_id or "123456789"),
        trade_details="Dragon for Racoon",
        can_join_vip="Yes",
        claimed=claimer_id is not None,
        claimer_id=claimer_id,
    )
    await h.repo.upsert(ticket)
    return ticket


def test_channel_name_fragment_is_sanitized() -> None:
    assert TicketService.sanitize_channel_fragment("Hello World !!!") == "hello-world"
    assert TicketService.sanitize_channel_fragment("***") == "user"


@pytest.mark.asyncio
async def test_create_ticket_with_unresolved_counterparty(harness: Harness) -> None:
    creator = _member(42)
    request = TicketRequest(trade_details="Dragon for Racoon", other_user_input="123456789", can_join_vip="Yes")

    creation = await harness.service.create_ticket(harness.guild, creator, request)

    assert not creation.counterparty_found
    assert creation.ticket.other_user_id is None
    assert creation.ticket.other_user_input == "123456789"
    stored = await harness.repo.get(TICKET_CHANNEL_ID)
    assert stored is not None
    assert stored.creator_id == 42
    assert stored.other_user_id is None
    assert stored.claimed is False

    kwargs = harness.guild.create_text_channel.await_args.kwargs
    assert kwargs["name"].startswith("ticket-user42-")
    assert kwargs["category"] is harness.guild_channels[CATEGORY_ID]
    overwrites = kwargs["overwrites"]
    assert overwrites[harness.guild.default_role].view_channel is False
    assert overwrites[creator].send_messages is True
    assert overwrites[harness.staff_role].manage_messages is True


@pytest.mark.asyncio
async def test_create_ticket_records_resolved_counterparty(harness: Harness) -> None:
    harness.members[77] = _member(77)
    request = TicketRequest(trade_details="trade", other_user_input="<@77>", can_join_vip="No")

    creation = await harness.service.create_ticket(harness.guild, _member(42), request)

    assert creation.counterparty_found
    assert creation.ticket.other_user_id == 77
    assert creation.ticket.other_user_input == "<@77>"


@pytest.mark.asyncio
async def test_create_ticket_without_category_writes_nothing(harness: Harness) -> None:
    del harness.guild_channels[CATEGORY_ID]
    request = TicketRequest(trade_details="trade", other_user_input="", can_join_vip="")

    with pytest.raises(ConfigurationError):
        await harness.service.create_ticket(harness.guild, _member(42), request)

    harness.guild.create_text_channel.assert_not_awaited()
    assert await harness.repo.get(TICKET_CHANNEL_ID) is None


@pytest.mark.asyncio
async def test_claim_hides_ticket_from_other_staff(harness: Harness) -> None:
    await _seed(harness, other_user_id=77)
    counterparty = harness.members[77] = _member(77)
    claimer = _member(500, staff=True)

    updated = await harness.service.claim_ticket(harness.channel, claimer)

    assert updated.claimer_id == 500
    stored = await harness.repo.get(TICKET_CHANNEL_ID)
    assert stored is not None
    assert stored.claimed is True
    assert stored.claimer_id == 500

    staff_overwrite = harness.overwrite_for(harness.staff_role)
    assert staff_overwrite is not None
    assert staff_overwrite.view_channel is False
    assert staff_overwrite.send_messages is False
    assert harness.overwrite_for(claimer).manage_messages is True
    assert harness.overwrite_for(counterparty).view_channel is True


@pytest.mark.asyncio
async def test_second_claim_is_rejected_without_changes(harness: Harness) -> None:
    await _seed(harness)
    await harness.service.claim_ticket(harness.channel, _member(500, staff=True))
    edits_after_first_claim = harness.channel.set_permissions.await_count

    with pytest.raises(TicketStateError):
        await harness.service.claim_ticket(harness.channel, _member(501, staff=True))

    stored = await harness.repo.get(TICKET_CHANNEL_ID)
    assert stored is not None
    assert stored.claimer_id == 500
    assert harness.channel.set_permissions.await_count == edits_after_first_claim


@pytest.mark.asyncio
async def test_non_staff_cannot_claim(harness: Harness) -> None:
    await _seed(harness)
    with pytest.raises(PermissionDeniedError):
        await harness.service.claim_ticket(harness.channel, _member(42))
    harness.channel.set_permissions.assert_not_awaited()


@pytest.mark.asyncio
async def test_claim_in_unknown_channel_fails(harness: Harness) -> None:
    with pytest.raises(TicketNotFoundError):
        await harness.service.claim_ticket(harness.channel, _member(500, staff=True))


@pytest.mark.asyncio
async def test_unclaim_open_ticket_is_rejected(harness: Harness) -> None:
    await _seed(harness)
    with pytest.raises(TicketStateError):
        await harness.service.unclaim_ticket(harness.channel, _member(500, staff=True))
    harness.channel.set_permissions.assert_not_awaited()


@pytest.mark.asyncio
async def test_claimer_can_unclaim_and_loses_overwrite(harness: Harness) -> None:
    await _seed(harness, claimer_id=600)
    claimer = harness.members[600] = _member(600)

    updated = await harness.service.unclaim_ticket(harness.channel, claimer)

    assert updated.claimer_id is None
    stored = await harness.repo.get(TICKET_CHANNEL_ID)
    assert stored is not None
    assert stored.claimed is False
    assert stored.claimer_id is None
    staff_overwrite = harness.overwrite_for(harness.staff_role)
    assert staff_overwrite is not None
    assert staff_overwrite.view_channel is True
    assert harness.overwrite_for(claimer) is None


@pytest.mark.asyncio
async def test_unclaim_by_unrelated_member_is_denied(harness: Harness) -> None:
    await _seed(harness, claimer_id=600)
    with pytest.raises(PermissionDeniedError):
        await harness.service.unclaim_ticket(harness.channel, _member(42))

    stored = await harness.repo.get(TICKET_CHANNEL_ID)
    assert stored is not None
    assert stored.claimer_id == 600


@pytest.mark.asyncio
async def test_request_close_requires_ticket_channel_and_authority(harness: Harness) -> None:
    with pytest.raises(TicketNotFoundError) as missing:
        await harness.service.request_close(harness.channel, _member(500, staff=True))
    assert missing.value.user_message == "This command can only be used in ticket channels."

    await _seed(harness)
    with pytest.raises(PermissionDeniedError):
        await harness.service.request_close(harness.channel, _member(42))


@pytest.mark.asyncio
async def test_only_close_initiator_can_confirm(harness: Harness) -> None:
    await _seed(harness)
    staff_a = _member(500, staff=True)
    staff_b = _member(501, staff=True)
    await harness.service.claim_ticket(harness.channel, staff_a)
    await harness.service.request_close(harness.channel, staff_a)

    with pytest.raises(InitiatorMismatchError):
        await harness.service.check_close_confirmation(TICKET_CHANNEL_ID, 500, staff_b)
    assert await harness.service.deps.close_requests.is_pending(TICKET_CHANNEL_ID, 500)

    key = await harness.service.check_close_confirmation(TICKET_CHANNEL_ID, 500, staff_a)
    receipt = await harness.service.confirm_close(harness.channel, staff_a, key)

    assert receipt.message_count == 3
    harness.transcripts.archive.assert_awaited_once()
    assert harness.transcripts.archive.await_args.kwargs["archive_channel"] is harness.archive_channel
    assert await harness.repo.get(TICKET_CHANNEL_ID) is None
    assert not await harness.service.deps.close_requests.is_pending(TICKET_CHANNEL_ID, 500)

    with pytest.raises(ConfirmationExpiredError):
        await harness.service.check_close_confirmation(TICKET_CHANNEL_ID, 500, staff_a)


@pytest.mark.asyncio
async def test_confirm_close_keeps_ticket_when_archive_fails(harness: Harness) -> None:
    await _seed(harness)
    staff = _member(500, staff=True)
    key = await harness.service.request_close(harness.channel, staff)
    harness.transcripts.archive.side_effect = discord.HTTPException(MagicMock(status=403, reason="x"), "denied")

    with pytest.raises(discord.HTTPException):
        await harness.service.confirm_close(harness.channel, staff, key)

    assert await harness.repo.get(TICKET_CHANNEL_ID) is not None
    assert await harness.service.deps.close_requests.is_pending(TICKET_CHANNEL_ID, 500)


@pytest.mark.asyncio
async def test_confirm_close_without_transcript_channel(harness: Harness) -> None:
    await _seed(harness)
    del harness.guild_channels[TRANSCRIPTS_ID]
    staff = _member(500, staff=True)
    key = await harness.service.request_close(harness.channel, staff)

    with pytest.raises(ConfigurationError):
        await harness.service.confirm_close(harness.channel, staff, key)

    harness.transcripts.archive.assert_not_awaited()
    assert await harness.repo.get(TICKET_CHANNEL_ID) is not None


@pytest.mark.asyncio
async def test_add_participant_validates_input(harness: Harness) -> None:
    await _seed(harness)
    staff = _member(500, staff=True)

    with pytest.raises(ValidationError) as empty:
        await harness.service.add_participant(harness.channel, staff, "  ")
    assert "`.add @user`" in empty.value.user_message

    with pytest.raises(MemberNotFoundError):
        await harness.service.add_participant(harness.channel, staff, "123456789")
    harness.channel.set_permissions.assert_not_awaited()


@pytest.mark.asyncio
async def test_add_participant_grants_access(harness: Harness) -> None:
    await _seed(harness, claimer_id=600)
    guest = harness.members[88] = _member(88)

    added = await harness.service.add_participant(harness.channel, _member(600), "<@88>")

    assert added is guest
    overwrite = harness.overwrite_for(guest)
    assert overwrite is not None
    assert overwrite.view_channel is True
    assert overwrite.send_messages is True
    assert overwrite.read_message_history is True


@pytest.mark.asyncio
async def test_delete_channel_later_logs_failures(harness: Harness) -> None:
    await harness.service.delete_channel_later(harness.channel, delay=0)
    harness.channel.delete.assert_awaited_once()

    harness.channel.delete = AsyncMock(side_effect=discord.HTTPException(MagicMock(status=500, reason="x"), "boom"))
    await harness.service.delete_channel_later(harness.channel)
    harness.channel.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_unclaim_removes_overwrite_of_unresolvable_claimer(harness: Harness) -> None:
    await _seed(harness, claimer_id=600)
    harness.guild.fetch_member.side_effect = discord.HTTPException(MagicMock(status=503, reason="x"), "unavailable")
    departed = MagicMock()
    departed.id = 600
    harness.channel.overwrites = {
        harness.staff_role: discord.PermissionOverwrite(view_channel=False, send_messages=False),
        departed: moderator_overwrite(),
    }

    await harness.service.unclaim_ticket(harness.channel, _member(500, staff=True))

    harness.channel.edit.assert_awaited_once()
    remaining = harness.channel.edit.await_args.kwargs["overwrites"]
    assert [target.id for target in remaining] == [STAFF_ROLE_ID]
    staff_overwrite = harness.overwrite_for(harness.staff_role)
    assert staff_overwrite is not None
    assert staff_overwrite.view_channel is True
    stored = await harness.repo.get(TICKET_CHANNEL_ID)
    assert stored is not None
    assert stored.claimer_id is None


@pytest.mark.asyncio
async def test_unclaim_with_resolved_claimer_does_not_rewrite_overwrites(harness: Harness) -> None:
    await _seed(harness, claimer_id=600)
    harness.members[600] = _member(600)

    await harness.service.unclaim_ticket(harness.channel, _member(500, staff=True))

    harness.channel.edit.assert_not_awaited()


@pytest.mark.asyncio
async def test_concurrent_confirmations_archive_once(harness: Harness) -> None:
    await _seed(harness)
    staff = _member(500, staff=True)
    key = await harness.service.request_close(harness.channel, staff)
    receipt = ArchiveReceipt(channel_id=TICKET_CHANNEL_ID, message_count=250, pages=3, filename="t.txt")

    async def _slow_archive(**_: object) -> ArchiveReceipt:
        await asyncio.sleep(0.05)
        return receipt

    harness.transcripts.archive = AsyncMock(side_effect=_slow_archive)

    results = await asyncio.gather(
        harness.service.confirm_close(harness.channel, staff, key),
        harness.service.confirm_close(harness.channel, staff, key),
        return_exceptions=True,
    )

    assert sum(1 for result in results if result is receipt) == 1
    assert sum(1 for result in results if isinstance(result, ConfirmationExpiredError)) == 1
    harness.transcripts.archive.assert_awaited_once()
    assert await harness.repo.get(TICKET_CHANNEL_ID) is None
    assert not await harness.service.deps.close_requests.is_pending(TICKET_CHANNEL_ID, 500)


@pytest.mark.asyncio
async def test_failed_archive_allows_another_confirmation(harness: Harness) -> None:
    await _seed(harness)
    staff = _member(500, staff=True)
    key = await harness.service.request_close(harness.channel, staff)
    receipt = harness.transcripts.archive.return_value
    harness.transcripts.archive.side_effect = [RuntimeError("history fetch failed"), receipt]

    with pytest.raises(RuntimeError):
        await harness.service.confirm_close(harness.channel, staff, key)

    assert await harness.service.confirm_close(harness.channel, staff, key) is receipt
    assert harness.transcripts.archive.await_count == 2
    assert await harness.repo.get(TICKET_CHANNEL_ID) is None
