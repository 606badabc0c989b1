"""
Registro de colecciones de pedidos.

Cada integración escribe en su propia colección:

- easyecom_orders: webhooks y pull de EasyEcom
- clickpost_orders: webhooks y status updates de ClickPost
- clickpost_dev_orders: instancia dev de ClickPost (base de datos propia opcional)
"""

import logging
from typing import Dict, List, Optional

from app.core.config import get_settings
from app.db.connection import close_all_connections, get_db_connection
from app.db.order_store import InMemoryOrderStore, SQLAlchemyOrderStore
from app.services.orders.interfaces import IOrderStore

settings = get_settings()
logger = logging.getLogger(__name__)

EASYECOM_ORDERS = "easyecom_orders"
CLICKPOST_ORDERS = "clickpost_orders"
CLICKPOST_DEV_ORDERS = "clickpost_dev_orders"


class UnknownCollectionError(KeyError):
    """La colección pedida no está registrada."""


class OrderStoreRegistry:
    """
    Mapa colección -> almacén.
    """

    def __init__(self, stores: Dict[str, IOrderStore]):
        self._stores = dict(stores)

    def get(self, collection: str) -> IOrderStore:
        try:
            return self._stores[collection]
        except KeyError:
            raise UnknownCollectionError(collection) from None

    def has(self, collection: str) -> bool:
        return collection in self._stores

    def collections(self) -> List[str]:
        return list(self._stores)

    async def health_check(self) -> Dict[str, dict]:
        return {name: await store.health_check() for name, store in self._stores.items()}


def _enabled_collections() -> List[str]:
    collections = [EASYECOM_ORDERS, CLICKPOST_ORDERS]
    if settings.CLICKPOST_DEV_ENABLED:
        collections.append(CLICKPOST_DEV_ORDERS)
    return collections


def build_order_store_registry() -> OrderStoreRegistry:
    """
    Construye los almacenes según ORDER_STORE_BACKEND.

    Returns:
        OrderStoreRegistry: Registro con una colección por integración
    """
    if settings.ORDER_STORE_BACKEND == "memory":
        logger.warning("⚠️ Using in-memory order stores - data is lost on restart")
        return OrderStoreRegistry({name: InMemoryOrderStore(name=name) for name in _enabled_collections()})

    stores: Dict[str, IOrderStore] = {}
    for name in _enabled_collections():
        if name == CLICKPOST_DEV_ORDERS:
            conn = get_db_connection(settings.orders_dev_db_url, name="orders-dev")
        else:
            conn = get_db_connection(settings.ORDERS_DB_URL, name="orders")
        stores[name] = SQLAlchemyOrderStore(conn, collection=name)

    return OrderStoreRegistry(stores)


_registry: Optional[OrderStoreRegistry] = None


def get_order_store_registry() -> OrderStoreRegistry:
    """
    Obtiene el registro global de almacenes.

    Returns:
        OrderStoreRegistry: Registro (se construye en el primer uso)
    """
    global _registry

    if _registry is None:
        _registry = build_order_store_registry()

    return _registry


async def initialize_order_stores() -> OrderStoreRegistry:
    """
    Inicializa las conexiones de base de datos de todas las colecciones.
    """
    registry = get_order_store_registry()

    if settings.ORDER_STORE_BACKEND == "sqlalchemy":
        initialized = set()
        for name in registry.collections():
            conn = registry.get(name).conn_db
            if id(conn) not in initialized:
                await conn.initialize()
                initialized.add(id(conn))

    logger.info(f"✅ Order stores ready: {', '.join(registry.collections())}")
    return registry


async def close_order_stores():
    """
    Cierra las conexiones y descarta el registro.
    """
    global _registry

    await close_all_connections()
    _registry = None
