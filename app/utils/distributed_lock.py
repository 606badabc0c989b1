"""
Distributed locking utility.

Locks are taken in Redis (``SET NX PX`` plus a token-checked release) when
``REDIS_URL`` is configured, and in a process-local ``asyncio.Lock``
registry otherwise. A Redis error while acquiring degrades to the local
registry so that a Redis outage does not stop order processing.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Optional

from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.redis_client import get_redis_client
from app.utils.error_handler import LockAcquisitionError

settings = get_settings()
logger = logging.getLogger(__name__)

__all__ = ["DistributedLock", "LocalLockRegistry", "LockAcquisitionError"]

# Delete the key only if it still holds our token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LocalLockRegistry:
    """
    Process-local locks keyed by string.

    Entries are dropped once no task holds or waits for them, so the
    registry does not grow with the number of orders ever seen.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str):
        remaining = self._users.get(key, 0) - 1
        if remaining <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = remaining

    async def acquire(self, key: str, wait_seconds: Optional[float]) -> bool:
        lock = self._checkout(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            self._checkin(key)
            return False
        except BaseException:
            self._checkin(key)
            raise
        return True

    def release(self, key: str):
        lock = self._locks.get(key)
        if lock is not None and lock.locked():
            lock.release()
        self._checkin(key)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


_local_locks = LocalLockRegistry()


class DistributedLock:
    """
    Async context manager around one lock key.

    Example:
        async with DistributedLock("order:easyecom_orders:555"):
            ...
    """

    def __init__(
        self,
        lock_key: str,
        timeout_seconds: int = 30,
        wait_seconds: float = 10.0,
        retry_delay: float = 0.05,
        use_redis: Optional[bool] = None,
    ):
        """
        Args:
            lock_key: Unique key for the lock
            timeout_seconds: Redis TTL; a crashed holder frees the lock after it
            wait_seconds: Max time to wait for the lock before giving up
            retry_delay: Initial Redis polling delay (doubles up to 1s)
            use_redis: Force the backend; defaults to "Redis if configured"
        """
        self.lock_key = lock_key
        self.redis_key = f"lock:{lock_key}"
        self.timeout_seconds = timeout_seconds
        self.wait_seconds = wait_seconds
        self.retry_delay = retry_delay
        self.use_redis = bool(settings.REDIS_URL) if use_redis is None else use_redis
        self.token = uuid.uuid4().hex
        self.acquired = False
        self.backend: Optional[str] = None
        self.start_time: Optional[float] = None

    async def _acquire_redis(self) -> bool:
        client = get_redis_client()
        deadline = time.monotonic() + self.wait_seconds
        delay = self.retry_delay

        while True:
            if await client.set(self.redis_key, self.token, nx=True, px=int(self.timeout_seconds * 1000)):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, 1.0)

    async def acquire(self) -> bool:
        """
        Acquire the lock, waiting up to ``wait_seconds``.

        Returns:
            bool: True if the lock was acquired
        """
        self.start_time = time.monotonic()

        if self.use_redis:
            try:
                if await self._acquire_redis():
                    self.acquired = True
                    self.backend = "redis"
                    logger.debug(f"🔒 Acquired redis lock '{self.lock_key}'")
                return self.acquired
            except RedisError as e:
                logger.warning(f"⚠️ Redis lock unavailable for '{self.lock_key}', using local lock: {e}")

        if await _local_locks.acquire(self.lock_key, self.wait_seconds):
            self.acquired = True
            self.backend = "local"
            logger.debug(f"🔒 Acquired local lock '{self.lock_key}'")
        return self.acquired

    async def release(self):
        """Release the lock if held."""
        if not self.acquired:
            return

        if self.backend == "redis":
            try:
                await get_redis_client().eval(RELEASE_SCRIPT, 1, self.redis_key, self.token)
            except RedisError as e:
                logger.warning(f"Failed to release redis lock '{self.lock_key}' (expires in TTL): {e}")
        else:
            _local_locks.release(self.lock_key)

        self.acquired = False
        held = time.monotonic() - (self.start_time or time.monotonic())
        logger.debug(f"🔓 Released lock '{self.lock_key}' (held for {held:.3f}s)")

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            waited = time.monotonic() - (self.start_time or time.monotonic())
            raise LockAcquisitionError(
                message=f"Could not acquire lock '{self.lock_key}' within {self.wait_seconds}s",
                lock_key=self.lock_key,
                waited_seconds=waited,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False
