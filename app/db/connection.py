# app/db/connection.py
"""
Clase ConnDB para gestión de conexiones a la base de datos de pedidos.

Esta clase maneja únicamente la conexión, configuración del pool,
creación del esquema y ciclo de vida de las conexiones. Hay una instancia
por base de datos (producción y, opcionalmente, la instancia dev de ClickPost).
"""

import logging
import time
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings
from app.db.tables import metadata
from app.utils.error_handler import StorageUnavailableException

settings = get_settings()
logger = logging.getLogger(__name__)


class ConnDB:
    """
    Gestión de conexiones a una base de datos de pedidos.

    Encapsula el engine asíncrono de SQLAlchemy y la factory de sesiones.
    """

    def __init__(self, connection_string: str, name: str = "default"):
        """
        Inicializa la clase ConnDB.

        Args:
            connection_string: URL asíncrona de SQLAlchemy
            name: Nombre lógico de la conexión (para logs y health checks)
        """
        self.name = name
        self.connection_string = connection_string
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._connection_tested = False
        logger.info(f"ConnDB instance created: {name}")

    def _engine_options(self) -> dict:
        """Opciones del engine según el dialecto."""
        options = {
            "pool_pre_ping": True,
            "echo": settings.ORDERS_DB_ECHO,
        }
        # SQLite no usa pool de conexiones configurable
        if not make_url(self.connection_string).get_backend_name().startswith("sqlite"):
            options.update(
                {
                    "pool_size": settings.ORDERS_DB_POOL_SIZE,
                    "max_overflow": 20,
                    "pool_recycle": 3600,
                    "pool_timeout": 30,
                }
            )
        return options

    async def initialize(self):
        """
        Inicializa el engine, la factory de sesiones y el esquema.

        Raises:
            StorageUnavailableException: Si falla la inicialización
        """
        try:
            if self.engine is not None:
                logger.info(f"Database connection '{self.name}' already initialized")
                return

            logger.info(f"Initializing database connection '{self.name}'...")

            self.engine = create_async_engine(self.connection_string, **self._engine_options())
            self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)

            await self._test_connection()

            logger.info(f"✅ Database connection '{self.name}' initialized successfully")

        except Exception as e:
            logger.error(f"❌ Failed to initialize database connection '{self.name}': {e}")
            await self._cleanup_failed_initialization()
            raise StorageUnavailableException(
                message=f"Failed to initialize database connection: {str(e)}",
                backend=self.name,
                operation="initialization",
            ) from e

    async def _test_connection(self):
        """
        Prueba la conexión a la base de datos.

        Raises:
            StorageUnavailableException: Si la prueba de conexión falla
        """
        async with self.session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            if result.scalar() != 1:
                raise StorageUnavailableException(
                    message="Connection test returned unexpected value",
                    backend=self.name,
                    operation="test",
                )
        self._connection_tested = True

    async def _cleanup_failed_initialization(self):
        """Limpia recursos en caso de fallo de inicialización."""
        if self.engine:
            await self.engine.dispose()
        self.engine = None
        self.session_factory = None
        self._connection_tested = False

    def get_session(self) -> AsyncSession:
        """
        Obtiene una nueva sesión de base de datos.

        Returns:
            AsyncSession: Sesión asíncrona de SQLAlchemy

        Raises:
            StorageUnavailableException: Si no hay conexión inicializada
        """
        if not self.is_initialized():
            raise StorageUnavailableException(
                message=f"Database connection '{self.name}' not initialized. Call initialize() first.",
                backend=self.name,
                operation="session_creation",
            )

        return self.session_factory()

    def is_initialized(self) -> bool:
        """
        Verifica si la conexión está inicializada.

        Returns:
            bool: True si está inicializada y probada
        """
        return self.engine is not None and self.session_factory is not None and self._connection_tested

    async def test_connection(self) -> bool:
        """
        Prueba la conexión a la base de datos de forma no destructiva.

        Returns:
            bool: True si la conexión funciona correctamente
        """
        if not self.is_initialized():
            return False

        try:
            async with self.get_session() as session:
                result = await session.execute(text("SELECT 1"))
                return result.scalar() == 1

        except Exception as e:
            logger.error(f"Connection test failed for '{self.name}': {e}")
            return False

    async def close(self):
        """
        Cierra la conexión y limpia todos los recursos.
        """
        logger.info(f"Closing database connection '{self.name}'...")

        if self.engine:
            await self.engine.dispose()
            logger.info(f"Database engine '{self.name}' disposed")

        self.engine = None
        self.session_factory = None
        self._connection_tested = False

    def get_engine_info(self) -> dict:
        """
        Obtiene información sobre el engine de base de datos.

        Returns:
            dict: Información del engine y pool de conexiones
        """
        if not self.engine:
            return {"status": "not_initialized"}

        return {
            "status": "initialized",
            "dialect": self.engine.dialect.name,
            "database": make_url(self.connection_string).render_as_string(hide_password=True),
            "is_tested": self._connection_tested,
        }

    async def health_check(self) -> dict:
        """
        Realiza un health check completo de la conexión.

        Returns:
            dict: Estado de salud de la conexión
        """
        start_time = time.time()
        test_passed = await self.test_connection()

        return {
            "name": self.name,
            "connection_initialized": self.is_initialized(),
            "engine_info": self.get_engine_info(),
            "test_passed": test_passed,
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }

    def __repr__(self) -> str:
        """Representación detallada de la conexión."""
        return f"ConnDB(name={self.name!r}, initialized={self.is_initialized()})"


# Conexiones por URL (producción y dev pueden compartir base de datos)
_connections: Dict[str, ConnDB] = {}


def get_db_connection(connection_string: Optional[str] = None, name: str = "default") -> ConnDB:
    """
    Obtiene la instancia de ConnDB para una URL.

    Args:
        connection_string: URL de la base de datos (por defecto ORDERS_DB_URL)
        name: Nombre lógico usado al crear la instancia

    Returns:
        ConnDB: Instancia de conexión a base de datos
    """
    url = connection_string or settings.ORDERS_DB_URL

    if url not in _connections:
        _connections[url] = ConnDB(url, name=name)

    return _connections[url]


async def close_all_connections():
    """
    Cierra todas las conexiones abiertas.
    """
    for conn in list(_connections.values()):
        await conn.close()
    _connections.clear()
