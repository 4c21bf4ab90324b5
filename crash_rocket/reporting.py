# reporting.py
"""
Outcome channel – send-only link to the host controller.

The engine hands each settled round's report (``kind: crash_v1``) to an
OutcomeChannel exactly once, after releasing its lock. Channels may raise;
the engine turns that into a TransientReportError and moves on without
retrying.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger("crash_rocket.reporting")


def encode_report(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


class OutcomeChannel(Protocol):
    async def start(self) -> None:
        ...

    async def send(self, payload: Dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


class LoggingChannel:
    """Default channel when no host is attached: the report goes to the log."""

    async def start(self) -> None:
        pass

    async def send(self, payload: Dict[str, Any]) -> None:
        logger.info(f"payload: {encode_report(payload)}")

    async def close(self) -> None:
        pass


class TelegramChannel:
    """
    Delivers the JSON report as a message to a Telegram chat
    (the bot that issued the round token).
    The Bot is initialized once and reused for every report.
    """

    def __init__(self, bot_token: str, chat_id: int | str) -> None:
        from telegram import Bot

        self._bot = Bot(bot_token)
        self._chat_id = chat_id
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self._bot.initialize()
        self._started = True
        logger.info("Telegram outcome channel ready")

    async def send(self, payload: Dict[str, Any]) -> None:
        if not self._started:
            await self.start()
        await self._bot.send_message(chat_id=self._chat_id, text=encode_report(payload))
        logger.debug(f"Report delivered to chat {self._chat_id}")

    async def close(self) -> None:
        if not self._started:
            return
        await self._bot.shutdown()
        self._started = False
