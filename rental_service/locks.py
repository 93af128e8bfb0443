import asyncio
import logging
from contextlib import asynccontextmanager

from redis.exceptions import LockError, RedisError

from .config import LEDGER_LOCK_TIMEOUT_SECONDS
from .errors import LedgerFailure

logger = logging.getLogger(__name__)


class BookingLocks:
    """
    Serializes ledger work per booking.

    Inside one process an asyncio.Lock per key is enough. When a Redis client
    is configured the critical section is additionally guarded by a Redis
    lock, so several service replicas cannot interleave their rebalances.
    """

    def __init__(self, redis_client=None, timeout_seconds: float = LEDGER_LOCK_TIMEOUT_SECONDS):
        self.redis_client = redis_client
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def _key(self, booking_pk) -> str:
        return f"ledger_lock:booking:{booking_pk}"

    @asynccontextmanager
    async def _local(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold(self, booking_pk):
        key = self._key(booking_pk)
        async with self._local(key):
            if self.redis_client is None:
                yield
                return

            lock = self.redis_client.lock(
                key,
                timeout=self.timeout_seconds,
                blocking_timeout=self.timeout_seconds,
            )
            try:
                acquired = await lock.acquire()
            except RedisError as e:
                raise LedgerFailure(f"Could not reach lock store for booking {booking_pk}") from e
            if not acquired:
                raise LedgerFailure(f"Timed out waiting for ledger lock on booking {booking_pk}")
            try:
                yield
            finally:
                try:
                    await lock.release()
                except (LockError, RedisError) as e:
                    # lock expired under us; the transaction already decided the outcome
                    logger.warning(f"[rental-service] releasing {key} failed: {e}")

    def held_keys(self) -> list[str]:
        return list(self._locks)
