"""Periodic auto-repost scheduler.

Runs one asyncio task that, every ``interval`` seconds, runs the sync & repost
cycle for each active user with at least one source and one destination
account.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy import exists, select

from skybridge.models.account import DestinationAccount, SourceAccount
from skybridge.models.user import User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from skybridge.services.sync_service import SyncEngine

logger = logging.getLogger(__name__)


async def eligible_user_ids(session: AsyncSession) -> list[int]:
    """Active users owning at least one source and one destination account."""
    stmt = (
        select(User.id)
        .where(
            User.is_active.is_(True),
            exists().where(SourceAccount.user_id == User.id),
            exists().where(DestinationAccount.user_id == User.id),
        )
        .order_by(User.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


class AutoRepostScheduler:
    """Fixed-cadence driver for :meth:`SyncEngine.process_auto_repost`.

    Usage:
        scheduler = AutoRepostScheduler(engine, session_factory, interval=60)
        scheduler.start()
        ...
        await scheduler.stop()  # waits for an in-flight tick
    """

    def __init__(
        self,
        engine: SyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval: float = 60.0,
        max_concurrency: int = 1,
    ) -> None:
        if interval <= 0:
            msg = "Scheduler interval must be positive"
            raise ValueError(msg)
        if max_concurrency < 1:
            msg = "Scheduler concurrency must be at least 1"
            raise ValueError(msg)
        self._engine = engine
        self._session_factory = session_factory
        self._interval = interval
        self._max_concurrency = max_concurrency
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop. Calling it while already running is a no-op."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="auto_repost_scheduler")
        logger.info("Auto-repost scheduler started (every %ss)", self._interval)

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight tick finish. Safe if never started."""
        task = self._task
        if task is None:
            return
        self._stopping.set()
        await asyncio.gather(task, return_exceptions=True)
        self._task = None
        logger.info("Auto-repost scheduler stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            else:
                break

            try:
                await self.run_tick()
            except Exception:
                logger.exception("Auto-repost tick failed")

    async def run_tick(self) -> int:
        """Run one cycle for every eligible user. Returns the number of users processed."""
        async with self._session_factory() as session:
            user_ids = await eligible_user_ids(session)
        if not user_ids:
            return 0

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _process(user_id: int) -> None:
            async with semaphore:
                try:
                    await self._engine.process_auto_repost(user_id)
                except Exception:
                    logger.exception("Auto-repost for user %s failed", user_id)

        await asyncio.gather(*(_process(user_id) for user_id in user_ids))
        logger.debug("Auto-repost tick processed %d users", len(user_ids))
        return len(user_ids)
