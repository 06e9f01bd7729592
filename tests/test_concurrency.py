"""
Concurrency safety tests.

Demonstrates:
1. Many drivers racing to accept one booking: exactly one wins.
2. Racing transitions on one booking serialise through the conditional write.
3. Distributed lock prevents simultaneous acquire.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.domain.enums import BookingStatus, NotificationKind, PaymentStatus
from src.domain.errors import AlreadyAssignedError, InvalidStateTransitionError
from src.infrastructure.locks import DistributedLock, LockNotAcquired
from src.infrastructure.repositories import BookingRepository
from tests.conftest import REQUESTER_ID


class TestAcceptanceRace:
    @pytest.mark.asyncio
    async def test_exactly_one_driver_wins(self, make_booking, make_driver, machine, notifier):
        drivers = [await make_driver() for _ in range(6)]
        booking = await make_booking()

        results = await asyncio.gather(
            *(machine.accept(booking.id, d.driver_id) for d in drivers),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == len(drivers) - 1
        assert all(isinstance(e, AlreadyAssignedError) for e in losers)

        stored = await machine.get(booking.id)
        assert stored.status == BookingStatus.ACCEPTED
        assert stored.driver_id == winners[0].driver_id
        assert stored.version == 2
        assert notifier.kinds().count(NotificationKind.BOOKING_ACCEPTED) == 1

    @pytest.mark.asyncio
    async def test_stale_compare_and_set_is_rejected(self, make_booking, session_factory):
        booking = await make_booking()
        async with session_factory() as session:
            repo = BookingRepository(session)
            assert await repo.compare_and_set(
                booking.id, BookingStatus.REQUESTED, {"notes": "first"}, expected_version=1
            )
            assert not await repo.compare_and_set(
                booking.id, BookingStatus.REQUESTED, {"notes": "second"}, expected_version=1
            )
            await session.commit()
            assert (await repo.get_by_id(booking.id)).notes == "first"


class TestTransitionRaces:
    @pytest.mark.asyncio
    async def test_double_cancel_applies_once(self, make_booking, machine):
        booking = await make_booking()
        results = await asyncio.gather(
            machine.cancel_by_requester(booking.id, REQUESTER_ID, "first"),
            machine.cancel_by_requester(booking.id, REQUESTER_ID, "second"),
            return_exceptions=True,
        )
        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1 and isinstance(failed[0], InvalidStateTransitionError)

        stored = await machine.get(booking.id)
        assert stored.cancellation.reason == succeeded[0].cancellation.reason

    @pytest.mark.asyncio
    async def test_duplicate_payment_confirmation_notifies_once(
        self, make_booking, make_driver, machine, payments, notifier
    ):
        driver = await make_driver()
        booking = await make_booking()
        await machine.accept(booking.id, driver.driver_id)
        initiated = await machine.initiate_payment(booking.id, REQUESTER_ID)
        payments.statuses[initiated.payment.payment_id] = PaymentStatus.COMPLETED

        results = await asyncio.gather(
            machine.confirm_payment(booking.id, initiated.payment.payment_id),
            machine.confirm_payment(booking.id, initiated.payment.payment_id),
        )
        assert all(r.payment.is_completed for r in results)
        assert notifier.kinds().count(NotificationKind.PAYMENT_COMPLETED) == 1


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "towdispatch:lock:expiry_sweep", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_only_deletes_own_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        mock_redis.eval.assert_awaited_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, lock.key, lock.token
        )

    @pytest.mark.asyncio
    async def test_tokens_are_unique_per_holder(self):
        mock_redis = AsyncMock()
        assert DistributedLock(mock_redis, "a").token != DistributedLock(mock_redis, "a").token

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "expiry_sweep", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass

    @pytest.mark.asyncio
    async def test_context_manager_releases(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        async with DistributedLock(mock_redis, "expiry_sweep"):
            mock_redis.eval.assert_not_awaited()
        mock_redis.eval.assert_awaited_once()
