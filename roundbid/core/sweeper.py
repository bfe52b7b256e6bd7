"""
Claim Sweeper - Periodic clock resync and re-read of claim tickets.

Claim state is derived on read, so correctness never depends on this
loop. It exists so that a hand-off notification reaches the next rank
shortly after the previous holder's deadline even when nobody queries.

It is also where the clock talks to its time source: the HTTP round trip
and the sweep both run in worker threads so the event loop never blocks
on them.
"""

import asyncio
from typing import Dict, Optional

from roundbid.core.engine import AuctionEngine
from roundbid.utils.logger import get_logger

logger = get_logger("sweeper")


class ClaimSweeper:
    """Runs `Clock.sync_if_due()` and `AuctionEngine.sweep()` every `interval` seconds."""

    def __init__(self, engine: AuctionEngine, interval: Optional[float] = None):
        self.engine = engine
        self.interval = interval if interval is not None else engine.config.sweep_interval
        self.runs = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Claim sweeper started (every {self.interval}s)")

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Claim sweeper stopped")

    def run_once(self) -> Dict[str, int]:
        result = self.engine.sweep()
        self.runs += 1
        return result

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.to_thread(self.engine.clock.sync_if_due)
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.error(f"Claim sweep failed: {e}")
            await asyncio.sleep(self.interval)
