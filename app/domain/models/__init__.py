"""
Modelos de dominio para documentos de pedidos y resultados de sincronización.
"""

from .order_document import (
    ChangeType,
    OrderChange,
    ReplaceResult,
    StatusChange,
    StoredOrder,
    SyncAction,
    SyncOptions,
    SyncResult,
)

__all__ = [
    "ChangeType",
    "OrderChange",
    "ReplaceResult",
    "StatusChange",
    "StoredOrder",
    "SyncAction",
    "SyncOptions",
    "SyncResult",
]
