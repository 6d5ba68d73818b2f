from __future__ import annotations

import discord

REQUEST_TICKET_ID = "request_ticket"
TICKET_MODAL_ID = "ticket_modal"
CLAIM_TICKET_ID = "claim_ticket"
UNCLAIM_TICKET_ID = "unclaim_ticket"
CLOSE_TICKET_ID = "close_ticket"
CONFIRM_CLOSE_PREFIX = "confirm_close_"
CONFIRM_CLOSE_TEMPLATE = r"confirm_close_(?P<initiator_id>[0-9]+)"

TRADE_DETAILS_MAX_LENGTH = 1000
OTHER_USER_MAX_LENGTH = 100
CAN_JOIN_VIP_MAX_LENGTH = 10

HISTORY_PAGE_SIZE = 100
TRANSCRIPT_RULE = "=" * 60

COLOR_SUCCESS = discord.Color(0x00FF00)
COLOR_ERROR = discord.Color(0xFF0000)
COLOR_NOTICE = discord.Color(0xFFA500)
COLOR_ARCHIVE = discord.Color(0x5865F2)

PANEL_TITLE = "🛡️ Middleman Service"
PANEL_DESCRIPTION = (
    "Found a trade and would like to ensure a safe trading experience?\n\n"
    "## Open a ticket below\n\n"
    "**What we provide:**\n"
    "• We provide safe traders between 2 parties\n"
    "• We provide fast and easy deals\n\n"
    "## Important Notes\n"
    "• Both parties must agree before opening a ticket\n"
    "• Fake/Troll tickets will result into a ban or ticket blacklist\n"
    "• Follow Discord Terms of Service and server guidelines"
)
