from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from services.permissions import PermissionManager


def _target(target_id: int) -> MagicMock:
    target = MagicMock()
    target.id = target_id
    return target


def test_creation_hides_channel_from_everyone_else() -> None:
    default_role, creator, staff, me = _target(1), _target(2), _target(3), _target(4)
    overwrites = PermissionManager().creation_overwrites(default_role, creator, staff, me=me)

    assert overwrites[default_role].view_channel is False
    assert overwrites[creator].view_channel is True
    assert overwrites[creator].send_messages is True
    assert overwrites[creator].read_message_history is True
    assert overwrites[creator].manage_messages is None
    assert overwrites[staff].manage_messages is True
    assert overwrites[me].manage_channels is True


def test_claim_hides_staff_and_promotes_claimer() -> None:
    staff, claimer, counterparty = _target(3), _target(5), _target(6)
    edits = PermissionManager().claim_edits(staff, claimer, counterparty)

    by_target = {edit.target: edit.overwrite for edit in edits}
    assert by_target[staff].view_channel is False
    assert by_target[staff].send_messages is False
    assert by_target[claimer].manage_messages is True
    assert by_target[counterparty].view_channel is True
    assert by_target[counterparty].manage_messages is None


def test_claim_without_counterparty_skips_that_edit() -> None:
    edits = PermissionManager().claim_edits(_target(3), _target(5), None)
    assert len(edits) == 2


def test_unclaim_restores_staff_and_clears_claimer() -> None:
    staff, claimer = _target(3), _target(5)
    edits = PermissionManager().unclaim_edits(staff, claimer)

    assert edits[0].target is staff
    assert edits[0].overwrite is not None
    assert edits[0].overwrite.view_channel is True
    assert edits[0].overwrite.manage_messages is True
    assert edits[1].target is claimer
    assert edits[1].overwrite is None


@pytest.mark.asyncio
async def test_apply_sets_each_overwrite_in_order() -> None:
    channel = MagicMock()
    channel.id = 100
    channel.set_permissions = AsyncMock()
    staff, claimer = _target(3), _target(5)

    manager = PermissionManager()
    await manager.apply(channel, manager.unclaim_edits(staff, claimer), reason="unclaim")

    assert channel.set_permissions.await_count == 2
    first, second = channel.set_permissions.await_args_list
    assert first.args == (staff,)
    assert first.kwargs["reason"] == "unclaim"
    assert second.args == (claimer,)
    assert second.kwargs["overwrite"] is None


@pytest.mark.asyncio
async def test_revoke_by_id_rewrites_overwrites_without_target() -> None:
    staff, departed = _target(3), _target(600)
    channel = MagicMock()
    channel.id = 100
    channel.overwrites = {staff: MagicMock(), departed: MagicMock()}
    channel.edit = AsyncMock()

    manager = PermissionManager()
    assert await manager.revoke_by_id(channel, 600, reason="unclaim") is True
    channel.edit.assert_awaited_once()
    assert list(channel.edit.await_args.kwargs["overwrites"]) == [staff]

    channel.edit.reset_mock()
    assert await manager.revoke_by_id(channel, 999) is False
    channel.edit.assert_not_awaited()
