from __future__ import annotations

from typing import Any

from database.base import Database
from database.models import Ticket


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _row_to_ticket(row: dict[str, Any]) -> Ticket:
    created_at = row.get("created_at")
    return Ticket(
        channel_id=int(row["channel_id"]),
        creator_id=int(row["creator_id"]),
        other_user_id=_optional_int(row["other_user_id"]),
        other_user_input=row["other_user_input"] or "",
        trade_details=row["trade_details"] or "",
        can_join_vip=row["can_join_vip"] or "",
        claimed=bool(row["claimed"]),
        claimer_id=_optional_int(row["claimer_id"]),
        created_at=str(created_at) if created_at is not None else None,
    )


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, channel_id: int) -> Ticket | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE channel_id = ?;", [channel_id])
        if not row:
            return None
        return _row_to_ticket(row)

    async def upsert(self, ticket: Ticket) -> None:
        # Everything except the claim columns is fixed when the row is first written.
        await self.db.execute(
            """
            INSERT INTO tickets(
                channel_id, creator_id, other_user_id, other_user_input,
                trade_details, can_join_vip, claimed, claimer_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(channel_id) DO UPDATE SET
                claimed = excluded.claimed,
                claimer_id = excluded.claimer_id;
            """,
            [
                ticket.channel_id,
                ticket.creator_id,
                ticket.other_user_id,
                ticket.other_user_input,
                ticket.trade_details,
                ticket.can_join_vip,
                ticket.claimed,
                ticket.claimer_id,
            ],
        )

    async def delete(self, channel_id: int) -> int:
        return await self.db.execute("DELETE FROM tickets WHERE channel_id = ?;", [channel_id])

    async def list_all(self, limit: int = 100) -> list[Ticket]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            ORDER BY created_at DESC
            LIMIT ?;
            """,
            [limit],
        )
        return [_row_to_ticket(row) for row in rows]
