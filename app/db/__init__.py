"""
Módulo de acceso a datos del gateway de pedidos.

- ConnDB: gestión exclusiva de conexiones SQLAlchemy
- SQLAlchemyOrderStore / InMemoryOrderStore: almacenes de documentos de pedidos
- Clientes HTTP de EasyEcom y ClickPost
"""

from app.db.connection import ConnDB, close_all_connections, get_db_connection
from app.db.order_store import InMemoryOrderStore, SQLAlchemyOrderStore

__all__ = [
    "ConnDB",
    "get_db_connection",
    "close_all_connections",
    "InMemoryOrderStore",
    "SQLAlchemyOrderStore",
]
