"""
Background Expiry Worker
========================

Runs every ``EXPIRY_SWEEP_INTERVAL_SECONDS`` (default 30 s).

Per sweep
---------
1. **Request expiry** -- REQUESTED bookings nobody accepted before
   ``request_expires_at`` become CANCELLED_BY_DRIVER (actor ``system``).
2. **Payment expiry** -- ACCEPTED bookings still unpaid at
   ``payment_expires_at`` become CANCELLED_BY_USER.  When a payment was
   initiated, the gateway is polled once first so a capture that landed
   just before the deadline is not thrown away.

Concurrency safety
------------------
* Every forced transition is a conditional write that re-checks status
  and deadline, so a booking accepted/paid/cancelled between the scan and
  the write is skipped rather than clobbered.
* A **Redis distributed lock** keeps several API processes from sweeping
  at once.  It is an optimisation only: if Redis is unreachable the sweep
  still runs.
* One failing booking is logged and does not stop the rest of the sweep.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.config import settings
from src.infrastructure.locks import DistributedLock
from src.infrastructure.repositories import BookingRepository
from src.services.bookings import BookingStateMachine

logger = logging.getLogger(__name__)

LOCK_NAME = "expiry_sweep"


@dataclass
class SweepReport:
    expired_requests: int = 0
    expired_payments: int = 0
    skipped: int = 0
    failed: int = 0
    lock_held: bool = False

    @property
    def changed(self) -> int:
        return self.expired_requests + self.expired_payments


class ExpiryScheduler:
    def __init__(
        self,
        machine: BookingStateMachine,
        *,
        redis: Optional[aioredis.Redis] = None,
        interval_seconds: Optional[float] = None,
        batch_size: int = 500,
    ):
        self.machine = machine
        self.redis = redis
        self.interval = interval_seconds or settings.expiry_sweep_interval_seconds
        self.batch_size = batch_size
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    # ── Loop control ──────────────────────────────────────────────────

    def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Expiry worker started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Expiry worker stopped")

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_sweep()
            except Exception:
                logger.exception("Unhandled error in expiry sweep")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

    # ── One sweep ─────────────────────────────────────────────────────

    async def run_sweep(self) -> SweepReport:
        lock = None
        if self.redis is not None:
            lock = DistributedLock(self.redis, LOCK_NAME, ttl_seconds=max(int(self.interval * 2), 10))
            try:
                if not await lock.acquire():
                    logger.debug("Lock held by another worker - skipping sweep")
                    return SweepReport(lock_held=True)
            except RedisError:
                logger.warning("Redis unavailable; sweeping without the lock", exc_info=True)
                lock = None

        try:
            report = await self._sweep()
        finally:
            if lock is not None:
                try:
                    await lock.release()
                except RedisError:
                    logger.warning("Could not release sweep lock", exc_info=True)

        if report.changed or report.failed:
            logger.info(
                "Expiry sweep: %d request(s) expired, %d payment(s) timed out, "
                "%d skipped, %d failed",
                report.expired_requests, report.expired_payments,
                report.skipped, report.failed,
            )
        return report

    async def _sweep(self) -> SweepReport:
        report = SweepReport()
        now = self.machine.clock.now()
        async with self.machine.session_factory() as session:
            repo = BookingRepository(session)
            request_ids = await repo.due_request_expiries(now, self.batch_size)
            payment_ids = await repo.due_payment_expiries(now, self.batch_size)

        for booking_id in request_ids:
            try:
                if await self.machine.expire_request(booking_id):
                    report.expired_requests += 1
                else:
                    report.skipped += 1
            except Exception:
                report.failed += 1
                logger.exception("Failed to expire request for booking %d", booking_id)

        for booking_id in payment_ids:
            try:
                if await self._settle_or_expire_payment(booking_id):
                    report.expired_payments += 1
                else:
                    report.skipped += 1
            except Exception:
                report.failed += 1
                logger.exception("Failed to expire payment for booking %d", booking_id)

        return report

    async def _settle_or_expire_payment(self, booking_id: int) -> bool:
        booking = await self.machine.get(booking_id)
        if booking.payment.payment_id and self.machine.payments is not None:
            try:
                booking = await self.machine.confirm_payment(booking_id)
            except Exception:
                logger.warning(
                    "Payment poll failed for booking %s; expiring anyway",
                    booking.booking_number, exc_info=True,
                )
            else:
                if booking.payment.is_completed:
                    logger.info(
                        "Booking %s paid at the deadline; not expiring",
                        booking.booking_number,
                    )
                    return False
        return await self.machine.expire_payment(booking_id) is not None


# ── Process-wide worker used by the API lifespan ──────────────────────

_scheduler: ExpiryScheduler | None = None


async def start_expiry_loop(
    machine: BookingStateMachine, redis: Optional[aioredis.Redis] = None
) -> ExpiryScheduler:
    global _scheduler
    _scheduler = ExpiryScheduler(machine, redis=redis)
    _scheduler.start()
    return _scheduler


async def stop_expiry_loop() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
