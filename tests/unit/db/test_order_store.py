"""Tests unitarios para los almacenes de pedidos (memoria y SQLAlchemy/aiosqlite)."""

from datetime import UTC, datetime

import pytest

from app.db.connection import ConnDB
from app.db.order_store import InMemoryOrderStore, SQLAlchemyOrderStore
from app.db.store_registry import OrderStoreRegistry, UnknownCollectionError
from app.domain.models import SyncAction
from app.services.orders.synchronizer import OrderSynchronizer
from app.utils.error_handler import OrderWriteConflictException, StorageUnavailableException


async def _sql_store(tmp_path, collection="easyecom_orders"):
    conn = ConnDB(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}", name="orders-test")
    await conn.initialize()
    return conn, SQLAlchemyOrderStore(conn, collection=collection)


class TestInMemoryOrderStore:
    """Tests para InMemoryOrderStore."""

    @pytest.mark.asyncio
    async def test_reads_are_independent_copies(self):
        """Debe devolver copias que no alteran lo almacenado."""
        store = InMemoryOrderStore()
        await store.insert_one({"order_id": 1, "order_status": "A", "items": [1]})

        stored = await store.find_one(1)
        stored.document["items"].append(2)

        assert (await store.find_one(1)).document["items"] == [1]

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self):
        """Debe rechazar insertar dos veces el mismo pedido."""
        store = InMemoryOrderStore()
        await store.insert_one({"order_id": 1, "order_status": "A"})

        with pytest.raises(OrderWriteConflictException):
            await store.insert_one({"order_id": 1, "order_status": "B"})

    @pytest.mark.asyncio
    async def test_replace_is_conditioned_on_revision(self):
        """Debe no escribir si la revisión cambió."""
        store = InMemoryOrderStore()
        storage_id = await store.insert_one({"order_id": 1, "order_status": "A"})

        first = await store.replace_one(storage_id, {"order_id": 1, "order_status": "B"}, expected_revision=1)
        stale = await store.replace_one(storage_id, {"order_id": 1, "order_status": "C"}, expected_revision=1)

        assert first.matched and first.revision == 2
        assert not stale.matched
        assert (await store.find_one(1)).document["order_status"] == "B"

    @pytest.mark.asyncio
    async def test_listing_and_stats(self):
        """Debe paginar más recientes primero y agrupar por estado."""
        store = InMemoryOrderStore()
        for order_id, status in [(1, "A"), (2, "B"), (3, "A")]:
            await store.insert_one({"order_id": order_id, "order_status": status})

        assert [doc["order_id"] for doc in await store.find_many(limit=2)] == [3, 2]
        assert [doc["order_id"] for doc in await store.find_many(status="A")] == [3, 1]
        assert await store.count() == 3
        assert await store.count("B") == 1
        assert await store.status_breakdown() == {"A": 2, "B": 1}

    @pytest.mark.asyncio
    async def test_find_by_waybill(self):
        """Debe encontrar el pedido por su guía y devolver None si nadie la tiene."""
        store = InMemoryOrderStore()
        await store.insert_one({"order_id": 1, "order_status": "Pending", "waybill": "CPAWB1"})
        await store.insert_one({"order_id": 2, "order_status": "Pending"})

        found = await store.find_by_waybill("CPAWB1")

        assert found.document["order_id"] == 1
        assert found.revision == 1
        assert await store.find_by_waybill("CPAWB2") is None

    @pytest.mark.asyncio
    async def test_date_range_uses_document_created_at(self):
        """Debe filtrar por el created_at del documento con límites incluidos."""
        store = InMemoryOrderStore()
        await store.insert_one({"order_id": 1, "order_status": "A", "created_at": "2024-03-01T10:00:00.000000+00:00"})
        await store.insert_one({"order_id": 2, "order_status": "A", "created_at": "2024-03-05T10:00:00.000000+00:00"})
        await store.insert_one({"order_id": 3, "order_status": "B", "created_at": "2024-03-09T10:00:00.000000+00:00"})

        start = datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        end = datetime(2024, 3, 5, 10, 0, tzinfo=UTC)

        assert [doc["order_id"] for doc in await store.find_many(start=start, end=end)] == [2, 1]
        assert await store.count(start=start, end=end) == 2
        assert await store.count("B", start=start) == 1
        assert await store.count(end=datetime(2024, 2, 1, tzinfo=UTC)) == 0

    @pytest.mark.asyncio
    async def test_unavailable(self):
        """Debe simular caídas con StorageUnavailableException."""
        store = InMemoryOrderStore()
        store.available = False

        with pytest.raises(StorageUnavailableException):
            await store.find_one(1)
        assert (await store.health_check())["test_passed"] is False


class TestSQLAlchemyOrderStore:
    """Tests para SQLAlchemyOrderStore sobre SQLite."""

    @pytest.mark.asyncio
    async def test_insert_find_replace(self, tmp_path):
        """Debe guardar, leer y reemplazar documentos con revisión."""
        conn, store = await _sql_store(tmp_path)
        try:
            storage_id = await store.insert_one(
                {"order_id": 555, "order_status": "Created", "order_items": [{"suborder_id": 1}]}
            )

            stored = await store.find_one(555)
            assert stored.storage_id == storage_id
            assert stored.revision == 1
            assert stored.document["order_items"] == [{"suborder_id": 1}]

            replaced = await store.replace_one(
                storage_id, {**stored.document, "order_status": "Confirmed"}, expected_revision=1
            )
            stale = await store.replace_one(storage_id, stored.document, expected_revision=1)

            assert replaced.matched and replaced.revision == 2
            assert not stale.matched
            assert (await store.find_one(555)).document["order_status"] == "Confirmed"
            assert await store.find_one(999) is None
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, tmp_path):
        """Debe mapear la violación de unicidad a OrderWriteConflictException."""
        conn, store = await _sql_store(tmp_path)
        try:
            await store.insert_one({"order_id": 1, "order_status": "A"})
            with pytest.raises(OrderWriteConflictException):
                await store.insert_one({"order_id": 1, "order_status": "A"})
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, tmp_path):
        """Debe aislar colecciones que comparten base de datos."""
        conn, easyecom = await _sql_store(tmp_path, "easyecom_orders")
        clickpost = SQLAlchemyOrderStore(conn, collection="clickpost_orders")
        try:
            await easyecom.insert_one({"order_id": 1, "order_status": "A"})
            await clickpost.insert_one({"order_id": 1, "order_status": "OFD"})

            assert (await easyecom.find_one(1)).document["order_status"] == "A"
            assert (await clickpost.find_one(1)).document["order_status"] == "OFD"
            assert await easyecom.status_breakdown() == {"A": 1}
            assert await clickpost.count("OFD") == 1
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_find_by_waybill(self, tmp_path):
        """Debe buscar por la columna waybill, también tras un reemplazo."""
        conn, store = await _sql_store(tmp_path, "clickpost_orders")
        try:
            storage_id = await store.insert_one({"order_id": 7, "order_status": "Pending"})
            assert await store.find_by_waybill("CPAWB7") is None

            await store.replace_one(
                storage_id, {"order_id": 7, "order_status": "Pending", "waybill": "CPAWB7"}, expected_revision=1
            )

            found = await store.find_by_waybill("CPAWB7")
            assert found.storage_id == storage_id
            assert found.revision == 2
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_date_range(self, tmp_path):
        """Debe filtrar created_at en UTC aunque los límites traigan otra zona."""
        conn, store = await _sql_store(tmp_path)
        try:
            for order_id, created_at in [
                (1, "2024-03-01T10:00:00.000000+00:00"),
                (2, "2024-03-05T10:00:00.000000+00:00"),
                (3, "2024-03-09T10:00:00.000000+00:00"),
            ]:
                await store.insert_one({"order_id": order_id, "order_status": "A", "created_at": created_at})

            start = datetime.fromisoformat("2024-03-04T15:30:00+05:30")
            end = datetime(2024, 3, 9, 10, 0, tzinfo=UTC)

            assert [doc["order_id"] for doc in await store.find_many(start=start, end=end)] == [3, 2]
            assert await store.count(start=start, end=end) == 2
            assert await store.count(end=datetime(2024, 3, 1, 9, 59, tzinfo=UTC)) == 0
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_synchronizer_on_sql_store(self, tmp_path):
        """Debe ejecutar el ciclo crear/actualizar/no_change sobre SQL."""
        conn, store = await _sql_store(tmp_path)
        synchronizer = OrderSynchronizer(store)
        try:
            created = await synchronizer.sync(
                555,
                {"order_status": "Created", "order_items": [{"suborder_id": 1, "item_status": "Created"}]},
                "create",
            )
            updated = await synchronizer.sync(555, {"order_status": "Confirmed"}, "confirm")
            unchanged = await synchronizer.sync(555, {"order_status": "Confirmed"}, "confirm-again")

            assert [created.action, updated.action, unchanged.action] == [
                SyncAction.INSERTED,
                SyncAction.UPDATED,
                SyncAction.NO_CHANGE,
            ]
            stored = await store.find_one(555)
            assert stored.revision == 2
            assert len(stored.document["status_history"]) == 2
            assert len(stored.document["order_items"][0]["status_history"]) == 1
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_uninitialized_connection_is_unavailable(self):
        """Debe lanzar StorageUnavailableException sin conexión inicializada."""
        store = SQLAlchemyOrderStore(ConnDB("sqlite+aiosqlite:///unused.db", name="cold"), collection="x")

        with pytest.raises(StorageUnavailableException):
            await store.find_one(1)


class TestOrderStoreRegistry:
    """Tests para OrderStoreRegistry."""

    def test_lookup(self):
        """Debe resolver colecciones registradas y rechazar las demás."""
        store = InMemoryOrderStore("easyecom_orders")
        registry = OrderStoreRegistry({"easyecom_orders": store})

        assert registry.get("easyecom_orders") is store
        assert registry.has("easyecom_orders")
        assert registry.collections() == ["easyecom_orders"]
        with pytest.raises(UnknownCollectionError):
            registry.get("legacy_orders")
