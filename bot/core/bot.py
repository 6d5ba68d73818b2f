from __future__ import annotations

import logging
from typing import Any

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_prefix_command_error
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import TicketRepository
from services.confirmations import CloseConfirmationTracker, CloseRequestStore, build_close_request_store
from services.permissions import PermissionManager
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService
from views.ticket_controls import ConfirmCloseButton, TicketControlsView
from views.ticket_panel import TicketPanelView

LOGGER = logging.getLogger(__name__)


class MiddlemanBot(commands.Bot):
    def __init__(self, config: AppConfig, database: Database | None = None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=True, users=True, replied_user=False),
            help_command=None,
        )
        self.config = config
        self.database = database or Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )

        # Collaborators are built in setup_hook, once the database is reachable.
        self.ticket_repo: TicketRepository
        self.close_request_store: CloseRequestStore
        self.ticket_service: TicketService

    def build_ticket_service(self, close_request_store: CloseRequestStore) -> TicketService:
        deps = TicketServiceDeps(
            ticket_repo=self.ticket_repo,
            close_requests=CloseConfirmationTracker(
                close_request_store, ttl_seconds=self.config.tickets.close_confirmation_ttl_seconds
            ),
            permissions=PermissionManager(),
            transcripts=TranscriptService(self.config.transcripts, page_size=self.config.tickets.history_page_size),
        )
        return TicketService(self.config, deps)

    async def setup_hook(self) -> None:
        await self.database.connect()
        await run_migrations(self.database)

        self.ticket_repo = TicketRepository(self.database)
        self.close_request_store = build_close_request_store(self.config.redis)
        self.ticket_service = self.build_ticket_service(self.close_request_store)

        self.add_view(TicketPanelView(self))
        self.add_view(TicketControlsView(self))
        self.add_dynamic_items(ConfirmCloseButton)

        for ext in self.config.enabled_extensions:
            try:
                await self.load_extension(ext)
                LOGGER.info("Loaded extension: %s", ext)
            except commands.ExtensionError:
                LOGGER.exception("Failed to load extension: %s", ext)

    async def on_ready(self) -> None:
        tickets = self.config.tickets
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        LOGGER.info(
            "Prefix %r | category %s | middleman role %s | transcripts channel %s",
            self.config.discord.prefix,
            tickets.category_id,
            tickets.staff_role_id,
            tickets.transcript_channel_id,
        )
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(type=discord.ActivityType.listening, name=self.config.discord.status_text)
        else:
            activity = discord.Activity(type=discord.ActivityType.watching, name=self.config.discord.status_text)
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        LOGGER.exception("Unhandled error in event %s", event_method)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        await super().close()
        await self.database.close()
        store = getattr(self, "close_request_store", None)
        if store is not None:
            await store.close()
