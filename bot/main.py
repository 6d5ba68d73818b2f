from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import uvicorn

from core.api import create_api_app
from core.bot import MiddlemanBot
from core.config import AppConfig, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger(__name__)


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    error = context.get("exception")
    LOGGER.error(
        "Unhandled asyncio error: %s",
        context.get("message", "no message"),
        exc_info=error if isinstance(error, BaseException) else None,
    )


async def _run_bot(config: AppConfig) -> None:
    asyncio.get_running_loop().set_exception_handler(_log_unhandled)
    bot = MiddlemanBot(config=config)
    async with bot:
        api_task: asyncio.Task[None] | None = None
        if config.fastapi.enabled:
            server = uvicorn.Server(
                uvicorn.Config(
                    app=create_api_app(bot),
                    host=config.fastapi.host,
                    port=config.fastapi.port,
                    log_level=config.logging.level.lower(),
                )
            )
            api_task = asyncio.create_task(server.serve())
        try:
            await bot.start(config.discord.token)
        finally:
            if api_task:
                api_task.cancel()


def main() -> None:
    root = Path(__file__).resolve().parent
    config = load_config(root / "config" / "config.yaml")
    configure_logging(config.logging)
    asyncio.run(_run_bot(config))


if __name__ == "__main__":
    main()
