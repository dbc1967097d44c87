#!/usr/bin/env python3
"""
Entry point for running the Groupkeeper moderation bot with logging enabled.

Usage:
    python run_bot.py

Environment:
    - GROUPKEEPER_TELEGRAM_TOKEN
    - GROUPKEEPER_OPENAI__API_KEY
    - GROUPKEEPER_OPERATOR_USER_ID (optional)

The script loads configuration via BotSettings (reads .env by default) and starts
the TelegramModerationApp; ffmpeg must be on PATH for video moderation.
"""

import asyncio

from groupkeeper_bot import TelegramModerationApp
from groupkeeper_bot.config import BotSettings


async def _main() -> None:
    settings = BotSettings()
    app = TelegramModerationApp(settings)
    await app.run()


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\n\n🛑 Bot shutdown requested by user.")
