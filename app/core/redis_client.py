"""
Cliente Redis para locks distribuidos de pedidos.

Redis es opcional: sin REDIS_URL los locks por pedido se resuelven
dentro del proceso.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[redis.Redis] = None


def is_redis_configured() -> bool:
    """True si hay REDIS_URL."""
    return bool(settings.REDIS_URL)


def get_redis_client() -> redis.Redis:
    """
    Returns a Redis client instance.

    Returns:
        redis.Redis: Redis client instance

    Raises:
        RuntimeError: If Redis URL is not configured
    """
    global _redis_client

    if not settings.REDIS_URL:
        raise RuntimeError("Redis URL not configured")

    if _redis_client is None:
        # Connection is established lazily on first command
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        logger.debug("Redis client instance created")

    return _redis_client


async def test_redis_connection() -> bool:
    """
    Verifica la conectividad con Redis.

    Returns:
        bool: True si la conexión es exitosa, False en caso contrario
    """
    if not is_redis_configured():
        return False

    try:
        return bool(await get_redis_client().ping())
    except RedisError as e:
        logger.error(f"Redis connection test failed: {e}")
        return False


async def initialize_redis():
    """
    Verifica Redis al arrancar; un fallo solo degrada los locks a locales.
    """
    if not is_redis_configured():
        logger.info("Redis not configured - order locks are process-local")
        return

    if await test_redis_connection():
        logger.info("✅ Redis connection established")
    else:
        logger.warning("⚠️ Redis unreachable - order locks will fall back to process-local locks")


async def close_redis():
    """
    Cierra el cliente Redis.
    """
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis client closed")
