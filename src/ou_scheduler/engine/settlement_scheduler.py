"""SettlementScheduler: periodic sweep that settles overdue games.

A guard set keeps overlapping ticks from settling the same game twice;
each id is released a short delay after its attempt finishes so a later
sweep can retry a game whose merge did not complete.
"""

import asyncio
import contextlib
import logging

from src.ou_common.clock import Clock, utc_now
from src.ou_settlement.engine.engine import SettlementEngine

logger = logging.getLogger(__name__)


class SettlementScheduler:
    def __init__(
        self,
        engine: SettlementEngine,
        interval: float = 1.0,
        release_delay: float = 0.1,
        clock: Clock = utc_now,
    ) -> None:
        self._engine = engine
        self._interval = interval
        self._release_delay = release_delay
        self._clock = clock
        self.settling: set[int] = set()
        self._inflight: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("[settlement] scheduler started")

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        for task in list(self._inflight):
            task.cancel()
        logger.info("[settlement] scheduler stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[settlement] sweep failed")
            await asyncio.sleep(self._interval)

    async def tick(self) -> list[asyncio.Task[None]]:
        """Launch one settle attempt per overdue game not already in flight."""
        started_before = self._clock() - self._engine.game_duration
        async with self._engine.session_factory() as db:
            async with db.begin():
                games = await self._engine.repo.list_games_to_settle(db, started_before)

        launched = []
        for game in games:
            if game.id in self.settling:
                continue
            self.settling.add(game.id)
            task = asyncio.create_task(self._settle(game.id))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            launched.append(task)
        return launched

    async def _settle(self, game_id: int) -> None:
        logger.info("[settlement] settling game %s", game_id)
        try:
            await self._engine.settle(game_id)
        finally:
            asyncio.get_running_loop().call_later(
                self._release_delay, self.settling.discard, game_id
            )
