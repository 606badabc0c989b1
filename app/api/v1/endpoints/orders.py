"""
Endpoints de consulta de pedidos sincronizados.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.v1.dependencies import get_store_registry
from app.api.v1.schemas.order_schemas import OrderDateRangeResponse, OrderListResponse, OrderStatsResponse
from app.db.store_registry import OrderStoreRegistry, UnknownCollectionError
from app.domain.models.order_document import format_timestamp, parse_timestamp, utc_now
from app.services.orders.interfaces import IOrderStore
from app.utils.error_handler import ValidationException
from app.utils.id_utils import try_parse_order_id

logger = logging.getLogger(__name__)

router = APIRouter()

DATE_FORMAT_HINT = "ISO 8601 or 'YYYY-MM-DD HH:MM:SS' (UTC when no offset is given)"

DEFAULT_QUERY_PAGE = Query(default=1, ge=1)
DEFAULT_QUERY_LIMIT = Query(default=10, ge=1, le=100)
DEFAULT_QUERY_STATUS = Query(default=None, alias="status", description="Filtrar por order_status")
START_DATE_QUERY = Query(default=None, description=f"Inicio del rango sobre created_at, {DATE_FORMAT_HINT}")
END_DATE_QUERY = Query(default=None, description=f"Fin del rango sobre created_at, {DATE_FORMAT_HINT}")
RANGE_LIMIT_QUERY = Query(default=1000, ge=1, le=5000)


def _store(registry: OrderStoreRegistry, collection: str) -> IOrderStore:
    try:
        return registry.get(collection)
    except UnknownCollectionError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Collection '{collection}' is not enabled"
        ) from None


def _parse_bound(value: Optional[str], field: str) -> Optional[datetime]:
    if value is None or not value.strip():
        return None
    moment = parse_timestamp(value.strip())
    if moment is None:
        raise ValidationException(
            message=f"Invalid {field}: {value!r}",
            field=field,
            invalid_value=value,
            expected_format=DATE_FORMAT_HINT,
            status_code=400,
        )
    return moment


def _date_range(start_date: Optional[str], end_date: Optional[str], required: bool = False):
    start = _parse_bound(start_date, "start_date")
    end = _parse_bound(end_date, "end_date")

    if required and (start is None or end is None):
        missing = [name for name, bound in (("start_date", start), ("end_date", end)) if bound is None]
        raise ValidationException(
            message="start_date and end_date are required",
            field=missing[0],
            expected_format=DATE_FORMAT_HINT,
            status_code=400,
            details={"missing_fields": missing},
        )
    if start is not None and end is not None and start > end:
        raise ValidationException(
            message="start_date must not be after end_date",
            field="start_date",
            invalid_value=start_date,
            status_code=400,
        )
    return start, end


@router.get("/{collection}", response_model=OrderListResponse)
async def list_orders(
    collection: str,
    page: int = DEFAULT_QUERY_PAGE,
    limit: int = DEFAULT_QUERY_LIMIT,
    order_status: Optional[str] = DEFAULT_QUERY_STATUS,
    start_date: Optional[str] = START_DATE_QUERY,
    end_date: Optional[str] = END_DATE_QUERY,
    registry: OrderStoreRegistry = Depends(get_store_registry),
) -> Dict[str, Any]:
    """
    Lista paginada de pedidos, los más recientes primero.

    Args:
        collection: easyecom_orders, clickpost_orders o clickpost_dev_orders
        page: Página (desde 1)
        limit: Pedidos por página
        order_status: Filtro opcional por estado
        start_date / end_date: Límites opcionales sobre created_at
    """
    store = _store(registry, collection)
    start, end = _date_range(start_date, end_date)

    total = await store.count(order_status, start=start, end=end)
    orders = await store.find_many(order_status, skip=(page - 1) * limit, limit=limit, start=start, end=end)

    return {
        "success": True,
        "collection": collection,
        "orders": orders,
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
            "total_orders": total,
            "orders_per_page": limit,
        },
    }


@router.get("/{collection}/stats", response_model=OrderStatsResponse)
async def order_stats(
    collection: str,
    registry: OrderStoreRegistry = Depends(get_store_registry),
) -> Dict[str, Any]:
    """Total de pedidos, pedidos creados hoy (UTC) y desglose por estado."""
    store = _store(registry, collection)
    now = utc_now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    return {
        "success": True,
        "collection": collection,
        "total_orders": await store.count(),
        "today_orders": await store.count(start=midnight),
        "status_breakdown": await store.status_breakdown(),
        "generated_at": format_timestamp(now),
    }


@router.get("/{collection}/by-date", response_model=OrderDateRangeResponse)
async def orders_by_date(
    collection: str,
    start_date: Optional[str] = START_DATE_QUERY,
    end_date: Optional[str] = END_DATE_QUERY,
    limit: int = RANGE_LIMIT_QUERY,
    registry: OrderStoreRegistry = Depends(get_store_registry),
) -> Dict[str, Any]:
    """
    Pedidos creados entre start_date y end_date (ambos incluidos).

    Raises:
        ValidationException: 400 si falta un límite o no se puede leer
    """
    store = _store(registry, collection)
    start, end = _date_range(start_date, end_date, required=True)

    orders = await store.find_many(limit=limit, start=start, end=end)
    logger.info(f"📅 {len(orders)} orders in {collection} between {start.isoformat()} and {end.isoformat()}")

    return {
        "success": True,
        "collection": collection,
        "orders": orders,
        "count": len(orders),
        "date_range": {"start_date": format_timestamp(start), "end_date": format_timestamp(end)},
    }


@router.get("/{collection}/{identifier}")
async def get_order(
    collection: str,
    identifier: str,
    registry: OrderStoreRegistry = Depends(get_store_registry),
) -> Dict[str, Any]:
    """
    Documento completo de un pedido, buscado por order_id o por número de guía.

    Un identificador numérico se busca primero como order_id y después como
    guía; cualquier otro, solo como guía.

    Raises:
        HTTPException: 404 si ningún pedido coincide
    """
    store = _store(registry, collection)

    stored = None
    key = try_parse_order_id(identifier)
    if key is not None:
        stored = await store.find_one(key)
    if stored is None:
        stored = await store.find_by_waybill(identifier.strip())
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {identifier} not found in {collection}"
        )

    return {"success": True, "collection": collection, "order": stored.document, "revision": stored.revision}
