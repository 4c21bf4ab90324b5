# scheduler.py
"""
Tick scheduler – drives the round engine once per display frame
while a round is active, and stops as soon as the round is settled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from crash_rocket.engine import CrashRoundEngine
from crash_rocket.errors import EngineError, StateError

logger = logging.getLogger("crash_rocket.scheduler")


class TickScheduler:
    def __init__(self, engine: CrashRoundEngine, interval: Optional[float] = None) -> None:
        self._engine = engine
        self._interval = interval if interval is not None else engine.config.frame_interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Begin ticking. Idempotent while a tick loop is already alive."""
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Cancel any pending tick and wait for the loop to exit."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Tick loop cancelled")

    async def restart(self, token: Optional[str] = None, init_data: str = "") -> int:
        """
        Release the pending tick, then ask the engine for a fresh round.
        A live round is refused before the loop is touched, so it keeps ticking.
        """
        if self._engine.is_active:
            raise StateError(f"Round in progress (Status: {self._engine.state.value})")
        await self.stop()
        return await self._engine.request_new_round(token=token, init_data=init_data)

    async def _run(self) -> None:
        ticks = 0
        while True:
            try:
                await self._engine.tick()
            except EngineError as e:
                logger.warning(f"Tick failed: {e}")
            ticks += 1

            if not self._engine.is_active:
                logger.debug(f"Tick loop finished after {ticks} ticks ({self._engine.state.value})")
                return

            await asyncio.sleep(self._interval)
