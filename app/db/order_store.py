"""
Almacenes de documentos de pedidos.

- SQLAlchemyOrderStore: una colección lógica dentro de la tabla
  ``order_documents`` (producción).
- InMemoryOrderStore: misma interfaz sobre diccionarios en memoria
  (pruebas y ORDER_STORE_BACKEND=memory).

Ambos devuelven copias independientes de los documentos: quien lee puede
mutar libremente sin afectar lo almacenado hasta que llame a replace_one.
"""

import asyncio
import copy
import logging
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.db.connection import ConnDB
from app.db.tables import order_documents
from app.domain.models import ReplaceResult, StoredOrder
from app.domain.models.order_document import CREATED_AT, ORDER_ID, ORDER_STATUS, parse_timestamp, utc_now
from app.utils.error_handler import OrderWriteConflictException, StorageUnavailableException

logger = logging.getLogger(__name__)


def _status_column(document: Dict[str, Any]) -> Optional[str]:
    """Valor desnormalizado de order_status para filtros."""
    status = document.get(ORDER_STATUS)
    return None if status is None else str(status)[:128]


def _waybill_column(document: Dict[str, Any]) -> Optional[str]:
    waybill = document.get("waybill")
    return None if waybill in (None, "") else str(waybill)[:128]


def _created_at(document: Dict[str, Any]) -> datetime:
    """created_at del documento (UTC) o el momento actual."""
    return (parse_timestamp(document.get(CREATED_AT)) or utc_now()).astimezone(UTC)


def _in_range(moment: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    return (start is None or moment >= start) and (end is None or moment <= end)


class SQLAlchemyOrderStore:
    """
    Colección de pedidos respaldada por SQLAlchemy (async).
    """

    def __init__(self, conn_db: ConnDB, collection: str):
        """
        Args:
            conn_db: Conexión inicializada a la base de datos
            collection: Nombre de la colección lógica
        """
        self.conn_db = conn_db
        self.collection = collection
        self.name = collection

    def _unavailable(self, operation: str, error: Exception) -> StorageUnavailableException:
        logger.error(f"❌ Order store '{self.collection}' unavailable during {operation}: {error}")
        return StorageUnavailableException(
            message=f"Order store unavailable during {operation}: {error}",
            backend=self.conn_db.name,
            operation=operation,
            details={"collection": self.collection},
        )

    async def find_one(self, order_id: int) -> Optional[StoredOrder]:
        """
        Lee un pedido por su identificador.

        Args:
            order_id: Identificador entero del pedido

        Returns:
            StoredOrder o None si no existe

        Raises:
            StorageUnavailableException: Si la base de datos no responde
        """
        stmt = select(order_documents.c.id, order_documents.c.revision, order_documents.c.document).where(
            order_documents.c.collection == self.collection,
            order_documents.c.order_id == order_id,
        )
        try:
            async with self.conn_db.get_session() as session:
                row = (await session.execute(stmt)).first()
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("find_one", e) from e

        if row is None:
            return None

        return StoredOrder(storage_id=row.id, revision=row.revision, document=copy.deepcopy(row.document))

    async def insert_one(self, document: Dict[str, Any]) -> Any:
        """
        Inserta un pedido nuevo.

        Returns:
            Identificador de almacenamiento de la fila

        Raises:
            OrderWriteConflictException: Si otro proceso insertó el mismo pedido
            StorageUnavailableException: Si la base de datos no responde
        """
        stmt = insert(order_documents).values(
            collection=self.collection,
            order_id=document[ORDER_ID],
            order_status=_status_column(document),
            waybill=_waybill_column(document),
            document=document,
            revision=1,
            created_at=_created_at(document),
            updated_at=utc_now(),
        )
        try:
            async with self.conn_db.get_session() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except IntegrityError as e:
            raise OrderWriteConflictException(
                message=f"Order {document[ORDER_ID]} was inserted concurrently",
                order_id=document[ORDER_ID],
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("insert_one", e) from e

        return result.inserted_primary_key[0]

    async def replace_one(
        self, storage_id: Any, document: Dict[str, Any], expected_revision: Optional[int] = None
    ) -> ReplaceResult:
        """
        Reemplaza el documento completo.

        Args:
            storage_id: Identificador de la fila
            document: Documento nuevo
            expected_revision: Revisión leída; si no coincide no se escribe

        Returns:
            ReplaceResult: matched=False si la revisión cambió entre lectura y escritura
        """
        stmt = update(order_documents).where(
            order_documents.c.id == storage_id,
            order_documents.c.collection == self.collection,
        )
        if expected_revision is not None:
            stmt = stmt.where(order_documents.c.revision == expected_revision)
        stmt = stmt.values(
            document=document,
            order_status=_status_column(document),
            waybill=_waybill_column(document),
            revision=order_documents.c.revision + 1,
            updated_at=utc_now(),
        )

        try:
            async with self.conn_db.get_session() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("replace_one", e) from e

        matched = result.rowcount == 1
        new_revision = expected_revision + 1 if matched and expected_revision is not None else None
        return ReplaceResult(matched=matched, revision=new_revision)

    async def find_by_waybill(self, waybill: str) -> Optional[StoredOrder]:
        """
        Lee un pedido por su número de guía.

        Returns:
            StoredOrder o None si ningún pedido tiene esa guía
        """
        stmt = (
            select(order_documents.c.id, order_documents.c.revision, order_documents.c.document)
            .where(
                order_documents.c.collection == self.collection,
                order_documents.c.waybill == str(waybill),
            )
            .order_by(order_documents.c.id.desc())
        )
        try:
            async with self.conn_db.get_session() as session:
                row = (await session.execute(stmt)).first()
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("find_by_waybill", e) from e

        if row is None:
            return None

        return StoredOrder(storage_id=row.id, revision=row.revision, document=copy.deepcopy(row.document))

    def _filtered(
        self,
        stmt,
        status: Optional[str],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ):
        stmt = stmt.where(order_documents.c.collection == self.collection)
        if status:
            stmt = stmt.where(order_documents.c.order_status == status)
        # SQLite guarda DateTime sin zona: los límites se comparan en UTC
        if start is not None:
            stmt = stmt.where(order_documents.c.created_at >= start.astimezone(UTC))
        if end is not None:
            stmt = stmt.where(order_documents.c.created_at <= end.astimezone(UTC))
        return stmt

    async def find_many(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Página de pedidos, más recientes primero, opcionalmente acotada por created_at."""
        stmt = (
            self._filtered(select(order_documents.c.document), status, start, end)
            .order_by(order_documents.c.created_at.desc(), order_documents.c.id.desc())
            .offset(skip)
            .limit(limit)
        )
        try:
            async with self.conn_db.get_session() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("find_many", e) from e

        return [copy.deepcopy(row.document) for row in rows]

    async def count(
        self, status: Optional[str] = None, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> int:
        stmt = self._filtered(select(func.count()).select_from(order_documents), status, start, end)
        try:
            async with self.conn_db.get_session() as session:
                return int((await session.execute(stmt)).scalar() or 0)
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("count", e) from e

    async def status_breakdown(self) -> Dict[str, int]:
        stmt = self._filtered(
            select(order_documents.c.order_status, func.count()).select_from(order_documents), None
        ).group_by(order_documents.c.order_status)
        try:
            async with self.conn_db.get_session() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("status_breakdown", e) from e

        return {(status if status is not None else "unknown"): total for status, total in rows}

    async def health_check(self) -> Dict[str, Any]:
        health = await self.conn_db.health_check()
        health["collection"] = self.collection
        return health


class InMemoryOrderStore:
    """
    Colección de pedidos en memoria con la misma semántica que la SQL.

    ``latency`` cede el control al event loop en cada operación para que
    las pruebas puedan intercalar llamadas concurrentes. ``available=False``
    simula una caída del almacén.
    """

    def __init__(self, name: str = "memory", latency: float = 0.0):
        self.name = name
        self.latency = latency
        self.available = True
        self.write_count = 0
        self._rows: Dict[int, Dict[str, Any]] = {}
        self._index: Dict[int, int] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def _io(self, operation: str):
        await asyncio.sleep(self.latency)
        if not self.available:
            raise StorageUnavailableException(
                message=f"In-memory store '{self.name}' is unavailable",
                backend="memory",
                operation=operation,
            )

    async def find_one(self, order_id: int) -> Optional[StoredOrder]:
        await self._io("find_one")
        storage_id = self._index.get(order_id)
        if storage_id is None:
            return None
        row = self._rows[storage_id]
        return StoredOrder(storage_id=storage_id, revision=row["revision"], document=copy.deepcopy(row["document"]))

    async def insert_one(self, document: Dict[str, Any]) -> Any:
        await self._io("insert_one")
        order_id = document[ORDER_ID]
        async with self._lock:
            if order_id in self._index:
                raise OrderWriteConflictException(
                    message=f"Order {order_id} was inserted concurrently",
                    order_id=order_id,
                )
            storage_id = self._next_id
            self._next_id += 1
            self._rows[storage_id] = {
                "revision": 1,
                "document": copy.deepcopy(document),
                "created_at": _created_at(document),
            }
            self._index[order_id] = storage_id
            self.write_count += 1
        return storage_id

    async def replace_one(
        self, storage_id: Any, document: Dict[str, Any], expected_revision: Optional[int] = None
    ) -> ReplaceResult:
        await self._io("replace_one")
        async with self._lock:
            row = self._rows.get(storage_id)
            if row is None:
                return ReplaceResult(matched=False)
            if expected_revision is not None and row["revision"] != expected_revision:
                return ReplaceResult(matched=False)
            row["revision"] += 1
            row["document"] = copy.deepcopy(document)
            self.write_count += 1
            return ReplaceResult(matched=True, revision=row["revision"])

    async def find_by_waybill(self, waybill: str) -> Optional[StoredOrder]:
        await self._io("find_by_waybill")
        for storage_id in sorted(self._rows, reverse=True):
            row = self._rows[storage_id]
            if _waybill_column(row["document"]) == str(waybill):
                return StoredOrder(
                    storage_id=storage_id, revision=row["revision"], document=copy.deepcopy(row["document"])
                )
        return None

    def _matching(
        self, status: Optional[str], start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        rows = sorted(self._rows.items(), key=lambda item: (item[1]["created_at"], item[0]), reverse=True)
        return [
            row
            for _, row in rows
            if (not status or _status_column(row["document"]) == status) and _in_range(row["created_at"], start, end)
        ]

    async def find_many(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        await self._io("find_many")
        return [copy.deepcopy(row["document"]) for row in self._matching(status, start, end)[skip : skip + limit]]

    async def count(
        self, status: Optional[str] = None, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> int:
        await self._io("count")
        return len(self._matching(status, start, end))

    async def status_breakdown(self) -> Dict[str, int]:
        await self._io("status_breakdown")
        breakdown: Dict[str, int] = {}
        for row in self._rows.values():
            status = _status_column(row["document"]) or "unknown"
            breakdown[status] = breakdown.get(status, 0) + 1
        return breakdown

    async def health_check(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "collection": self.name,
            "connection_initialized": True,
            "test_passed": self.available,
            "orders": len(self._rows),
        }
