"""Tests unitarios para los locks por pedido."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.utils.distributed_lock import DistributedLock, LocalLockRegistry
from app.utils.error_handler import LockAcquisitionError
from app.utils.order_lock import OrderLock


class TestLocalLockRegistry:
    """Tests para LocalLockRegistry."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        """Debe bloquear la clave y liberar la entrada al soltarla."""
        registry = LocalLockRegistry()

        assert await registry.acquire("order:a:1", 1.0)
        assert registry.is_locked("order:a:1")

        registry.release("order:a:1")
        assert not registry.is_locked("order:a:1")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self):
        """Debe devolver False si la clave sigue tomada al vencer la espera."""
        registry = LocalLockRegistry()
        await registry.acquire("k", 1.0)

        assert await registry.acquire("k", 0.01) is False

        registry.release("k")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        """Debe permitir locks simultáneos en claves distintas."""
        registry = LocalLockRegistry()

        assert await registry.acquire("k1", 0.01)
        assert await registry.acquire("k2", 0.01)

    @pytest.mark.asyncio
    async def test_waiter_gets_lock_after_release(self):
        """Debe entregar el lock al siguiente en espera."""
        registry = LocalLockRegistry()
        await registry.acquire("k", 1.0)

        waiter = asyncio.create_task(registry.acquire("k", 1.0))
        await asyncio.sleep(0)
        registry.release("k")

        assert await waiter is True
        assert registry.is_locked("k")


class TestOrderLock:
    """Tests para OrderLock con el backend local."""

    @pytest.mark.asyncio
    async def test_lock_key_format(self):
        """Debe usar order:{namespace}:{order_id}."""
        lock = OrderLock(555, namespace="easyecom_orders", use_redis=False)

        assert lock.lock_key == "order:easyecom_orders:555"

    @pytest.mark.asyncio
    async def test_serializes_same_order(self):
        """Debe serializar secciones críticas del mismo pedido."""
        events = []

        async def critical(tag):
            async with OrderLock(1, namespace="serial_test", use_redis=False):
                events.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                events.append(f"{tag}-out")

        await asyncio.gather(critical("a"), critical("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        """Debe lanzar LockAcquisitionError al vencer la espera."""
        async with OrderLock(2, namespace="timeout_test", use_redis=False):
            with pytest.raises(LockAcquisitionError) as exc_info:
                async with OrderLock(2, namespace="timeout_test", wait_seconds=0.01, use_redis=False):
                    pass

        assert exc_info.value.lock_key == "order:timeout_test:2"

    @pytest.mark.asyncio
    async def test_released_on_exception(self):
        """Debe liberar el lock aunque el bloque falle."""
        with pytest.raises(ValueError):
            async with OrderLock(3, namespace="error_test", use_redis=False):
                raise ValueError("boom")

        async with OrderLock(3, namespace="error_test", wait_seconds=0.01, use_redis=False) as lock:
            assert lock.acquired


class TestRedisBackend:
    """Tests para el backend Redis con cliente simulado."""

    @pytest.mark.asyncio
    async def test_acquires_with_set_nx(self):
        """Debe usar SET NX PX y liberar con el script de token."""
        client = MagicMock()
        client.set = AsyncMock(return_value=True)
        client.eval = AsyncMock(return_value=1)

        with patch("app.utils.distributed_lock.get_redis_client", return_value=client):
            lock = DistributedLock("order:redis_test:1", timeout_seconds=30, use_redis=True)
            async with lock:
                assert lock.backend == "redis"

        kwargs = client.set.await_args.kwargs
        assert kwargs["nx"] is True
        assert kwargs["px"] == 30000
        assert client.eval.await_args.args[2:] == ("lock:order:redis_test:1", lock.token)

    @pytest.mark.asyncio
    async def test_falls_back_to_local_on_redis_error(self):
        """Debe usar el lock local si Redis falla."""
        client = MagicMock()
        client.set = AsyncMock(side_effect=RedisConnectionError("redis down"))

        with patch("app.utils.distributed_lock.get_redis_client", return_value=client):
            lock = DistributedLock("order:redis_test:2", use_redis=True)
            async with lock:
                assert lock.backend == "local"

    @pytest.mark.asyncio
    async def test_busy_key_times_out(self):
        """Debe rendirse si la clave sigue ocupada en Redis."""
        client = MagicMock()
        client.set = AsyncMock(return_value=None)

        with patch("app.utils.distributed_lock.get_redis_client", return_value=client):
            with pytest.raises(LockAcquisitionError):
                async with DistributedLock("order:redis_test:3", wait_seconds=0.05, use_redis=True):
                    pass
