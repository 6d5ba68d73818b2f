from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Header, HTTPException

from database.models import Ticket

if TYPE_CHECKING:
    from core.bot import MiddlemanBot


def _auth(x_api_key: str | None, expected: str) -> None:
    if not expected:
        return
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _ticket_payload(ticket: Ticket) -> dict[str, object]:
    return {
        "channel_id": ticket.channel_id,
        "creator_id": ticket.creator_id,
        "other_user_id": ticket.other_user_id,
        "other_user_input": ticket.other_user_input,
        "can_join_vip": ticket.can_join_vip,
        "state": ticket.state.value,
        "claimer_id": ticket.claimer_id,
        "created_at": ticket.created_at,
    }


def create_api_app(bot: MiddlemanBot) -> FastAPI:
    """Read-only status API over the active tickets."""
    app = FastAPI(title="Middleman Ticket Bot API", version="1.0.0")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/tickets")
    async def tickets(limit: int = 100, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        rows = await bot.ticket_service.list_tickets(limit=max(1, min(limit, 500)))
        return {"items": [_ticket_payload(row) for row in rows]}

    @app.get("/tickets/{channel_id}")
    async def ticket_detail(channel_id: int, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        ticket = await bot.ticket_service.deps.ticket_repo.get(channel_id)
        if ticket is None:
            raise HTTPException(status_code=404, detail="Ticket not found")
        return _ticket_payload(ticket)

    return app
