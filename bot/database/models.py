from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class TicketState(str, Enum):
    OPEN = "open"
    CLAIMED = "claimed"


@dataclass(slots=True, frozen=True)
class Ticket:
    """One active middleman ticket, keyed by its Discord channel.

    Only ``claimed`` and ``claimer_id`` change after creation, and they always
    change together: a ticket is claimed exactly when it has a claimer.
    """

    channel_id: int
    creator_id: int
    other_user_id: int | None
    other_user_input: str
    trade_details: str
    can_join_vip: str
    claimed: bool = False
    claimer_id: int | None = None
    created_at: str | None = None

    def __post_init__(self) -> None:
        if self.claimed != (self.claimer_id is not None):
            raise ValueError("claimed must be set exactly when claimer_id is set")

    @property
    def state(self) -> TicketState:
        return TicketState.CLAIMED if self.claimed else TicketState.OPEN

    def claimed_by(self, user_id: int) -> Ticket:
        return replace(self, claimed=True, claimer_id=user_id)

    def unclaimed(self) -> Ticket:
        return replace(self, claimed=False, claimer_id=None)
