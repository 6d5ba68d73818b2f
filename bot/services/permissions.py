from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import discord

LOGGER = logging.getLogger(__name__)

PermissionTarget = discord.Role | discord.Member


@dataclass(slots=True, frozen=True)
class PermissionEdit:
    target: PermissionTarget
    # None removes the target's explicit overwrite.
    overwrite: discord.PermissionOverwrite | None


def participant_overwrite() -> discord.PermissionOverwrite:
    return discord.PermissionOverwrite(
        view_channel=True,
        send_messages=True,
        read_message_history=True,
    )


def moderator_overwrite() -> discord.PermissionOverwrite:
    return discord.PermissionOverwrite(
        view_channel=True,
        send_messages=True,
        read_message_history=True,
        manage_messages=True,
    )


class PermissionManager:
    """Maps ticket visibility changes to channel permission overwrites.

    The ``*_edits`` methods only describe the change; ``apply`` performs it.
    Failed edits propagate and earlier edits in the same batch are kept.
    """

    def creation_overwrites(
        self,
        default_role: discord.Role,
        creator: discord.Member,
        staff_role: discord.Role,
        me: discord.Member | None = None,
    ) -> dict[PermissionTarget, discord.PermissionOverwrite]:
        overwrites: dict[PermissionTarget, discord.PermissionOverwrite] = {
            default_role: discord.PermissionOverwrite(view_channel=False),
            creator: participant_overwrite(),
            staff_role: moderator_overwrite(),
        }
        if me is not None:
            overwrites[me] = discord.PermissionOverwrite(
                view_channel=True,
                send_messages=True,
                read_message_history=True,
                manage_channels=True,
                manage_messages=True,
            )
        return overwrites

    def claim_edits(
        self,
        staff_role: discord.Role,
        claimer: discord.Member,
        counterparty: discord.Member | None,
    ) -> list[PermissionEdit]:
        edits = [
            PermissionEdit(staff_role, discord.PermissionOverwrite(view_channel=False, send_messages=False)),
            PermissionEdit(claimer, moderator_overwrite()),
        ]
        if counterparty is not None:
            edits.append(PermissionEdit(counterparty, participant_overwrite()))
        return edits

    def unclaim_edits(
        self,
        staff_role: discord.Role,
        previous_claimer: discord.Member | None,
    ) -> list[PermissionEdit]:
        edits = [PermissionEdit(staff_role, moderator_overwrite())]
        if previous_claimer is not None:
            edits.append(PermissionEdit(previous_claimer, None))
        return edits

    def participant_edit(self, member: discord.Member) -> PermissionEdit:
        return PermissionEdit(member, participant_overwrite())

    async def revoke_by_id(self, channel: discord.TextChannel, target_id: int, reason: str | None = None) -> bool:
        """Drop the overwrite for a target that can no longer be resolved to a Member.

        ``set_permissions`` only accepts a Member or Role, so the channel's whole
        overwrite map is rewritten without that entry. Returns whether one was removed.
        """
        remaining = {target: overwrite for target, overwrite in channel.overwrites.items() if target.id != target_id}
        if len(remaining) == len(channel.overwrites):
            return False
        await channel.edit(overwrites=remaining, reason=reason)
        LOGGER.debug("Permission overwrite removed by id for %s in channel %s", target_id, channel.id)
        return True

    async def apply(
        self,
        channel: discord.TextChannel,
        edits: Iterable[PermissionEdit],
        reason: str | None = None,
    ) -> None:
        for edit in edits:
            await channel.set_permissions(edit.target, overwrite=edit.overwrite, reason=reason)
            LOGGER.debug(
                "Permission overwrite %s for %s in channel %s",
                "removed" if edit.overwrite is None else "set",
                edit.target.id,
                channel.id,
            )
