"""
OrderLock - per-order lock for read-modify-replace of order documents.

Webhooks for the same order may arrive back to back (EasyEcom status
webhooks, ClickPost tracking updates, credit notes). Holding this lock
across the read, diff and replace of one order keeps their status history
entries from overwriting each other.

Usage:
    from app.utils.order_lock import OrderLock, LockAcquisitionError

    async with OrderLock(555, namespace="easyecom_orders"):
        ...
"""

import logging
from typing import Optional

from app.core.config import get_settings
from app.utils.distributed_lock import DistributedLock, LockAcquisitionError

settings = get_settings()
logger = logging.getLogger(__name__)

# Re-export for convenience
__all__ = ["OrderLock", "LockAcquisitionError"]


class OrderLock(DistributedLock):
    """
    Distributed lock keyed by collection and order id.

    Notes:
        - Lock key format: ``order:{namespace}:{order_id}``
        - TTL defaults to ORDER_LOCK_TIMEOUT_SECONDS
        - Wait defaults to ORDER_LOCK_WAIT_SECONDS, then LockAcquisitionError
    """

    def __init__(
        self,
        order_id: int,
        namespace: str = "orders",
        timeout_seconds: Optional[int] = None,
        wait_seconds: Optional[float] = None,
        use_redis: Optional[bool] = None,
    ):
        super().__init__(
            lock_key=f"order:{namespace}:{order_id}",
            timeout_seconds=timeout_seconds or settings.ORDER_LOCK_TIMEOUT_SECONDS,
            wait_seconds=settings.ORDER_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds,
            use_redis=use_redis,
        )
        self.order_id = order_id
        self.namespace = namespace

    async def __aenter__(self):
        logger.debug(f"Attempting to acquire lock for order {self.order_id} ({self.namespace})")
        return await super().__aenter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        result = await super().__aexit__(exc_type, exc_val, exc_tb)
        if exc_type:
            logger.debug(
                f"Lock released for order {self.order_id} ({self.namespace}) "
                f"(exception occurred: {exc_type.__name__})"
            )
        return result
