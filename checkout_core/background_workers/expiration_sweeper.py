import asyncio
from datetime import timedelta
from typing import Dict, Optional
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from checkout_core.checkout import repository as checkout_repo
from checkout_core.common.logging_setup import get_logger
from checkout_core.common.utils import now
from checkout_core.config.settings import config_settings
from checkout_core.metrics.custom_instrumentator import sweeper_rows
from checkout_core.reservations import repository as reservation_store

logger = get_logger("checkout_core.sweeper")


class SweepResult(BaseModel):
    released_reservations: int
    expired_sessions: int


class PurgeResult(BaseModel):
    deleted_reservations: int
    deleted_sessions: int


class ExpirationSweeper:
    """Returns abandoned holds to the pool on a fixed interval.

    Every write is predicated on rows still being ACTIVE / open, so a sweep
    racing a finalizer can only touch what the finalizer has not claimed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval: Optional[float] = None,
        retention_days: Optional[int] = None,
        retention_every: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.interval = interval if interval is not None else config_settings.SWEEP_INTERVAL_SECONDS
        self.retention_days = retention_days if retention_days is not None else config_settings.RETENTION_DAYS
        self.retention_every = retention_every if retention_every is not None else config_settings.RETENTION_EVERY_N_SWEEPS
        self._stop = asyncio.Event()
        self._sweeps = 0

    async def sweep(self) -> SweepResult:
        ts = now()
        async with self.session_factory() as session:
            async with session.begin():
                released = await reservation_store.expire_overdue(session, ts)
                expired = await checkout_repo.expire_overdue(session, ts)

        sweeper_rows.labels(kind="reservations_expired").inc(released)
        sweeper_rows.labels(kind="sessions_expired").inc(expired)
        if released or expired:
            logger.info("sweeper.sweep", extra={"released_reservations": released, "expired_sessions": expired})
        return SweepResult(released_reservations=released, expired_sessions=expired)

    async def purge_terminal(self, retention_days: Optional[int] = None) -> PurgeResult:
        days = self.retention_days if retention_days is None else retention_days
        cutoff = now() - timedelta(days=days)
        async with self.session_factory() as session:
            async with session.begin():
                deleted_res = await reservation_store.delete_terminal_before(session, cutoff)
                deleted_cs = await checkout_repo.delete_unprocessed_before(session, cutoff)

        sweeper_rows.labels(kind="reservations_deleted").inc(deleted_res)
        sweeper_rows.labels(kind="sessions_deleted").inc(deleted_cs)
        logger.info("sweeper.purge", extra={"deleted_reservations": deleted_res, "deleted_sessions": deleted_cs,
                                            "retention_days": days})
        return PurgeResult(deleted_reservations=deleted_res, deleted_sessions=deleted_cs)

    async def session_stats(self) -> Dict[str, int]:
        async with self.session_factory() as session:
            return await checkout_repo.count_sessions(session, now())

    def stop(self):
        self._stop.set()

    async def run(self):
        logger.info("sweeper.starting", extra={"interval": self.interval})
        while not self._stop.is_set():
            try:
                await self.sweep()
                self._sweeps += 1
                if self.retention_every and self._sweeps % self.retention_every == 0:
                    await self.purge_terminal()
            except Exception:
                logger.exception("sweeper.loop_error; retrying next interval")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("sweeper.stopped")
