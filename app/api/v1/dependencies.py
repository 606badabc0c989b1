"""
Dependencias compartidas de los endpoints v1.

Todas se resuelven con ``Depends`` para poder sustituirlas en tests
(``app.dependency_overrides``).
"""

from typing import Callable

from fastapi import Depends, HTTPException, status

from app.db.partner_clients import ClickPostClient, EasyEcomClient
from app.db.store_registry import OrderStoreRegistry, UnknownCollectionError, get_order_store_registry
from app.services.orders.synchronizer import OrderSynchronizer


def get_store_registry() -> OrderStoreRegistry:
    """Registro global de almacenes de pedidos."""
    return get_order_store_registry()


def get_synchronizer_factory(
    registry: OrderStoreRegistry = Depends(get_store_registry),
) -> Callable[[str], OrderSynchronizer]:
    """
    Devuelve una función colección -> OrderSynchronizer.

    Raises:
        HTTPException: 404 si la colección no está habilitada
    """

    def factory(collection: str) -> OrderSynchronizer:
        try:
            store = registry.get(collection)
        except UnknownCollectionError:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Collection '{collection}' is not enabled"
            ) from None
        return OrderSynchronizer(store)

    return factory


def get_clickpost_client_factory() -> Callable[[], ClickPostClient]:
    return ClickPostClient


def get_easyecom_client_factory() -> Callable[[], EasyEcomClient]:
    return EasyEcomClient
