"""
Endpoints para webhooks de EasyEcom y ClickPost.

Cada endpoint valida el token de la plataforma, normaliza el payload y
ejecuta el lote contra la colección de la integración. Los fallos de una
orden se reportan por entrada; un fallo de almacenamiento devuelve 503.
"""

import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status

from app.api.v1.dependencies import get_clickpost_client_factory, get_synchronizer_factory
from app.api.v1.schemas.order_schemas import (
    BatchResponse,
    ClickPostStatusUpdate,
    OrderIntakeResponse,
    StatusUpdateResponse,
)
from app.core.config import get_settings
from app.core.logging_config import log_webhook_received
from app.core.middleware import get_client_ip
from app.db.store_registry import CLICKPOST_DEV_ORDERS, CLICKPOST_ORDERS, EASYECOM_ORDERS
from app.services.status_update import StatusUpdateService
from app.services.webhook_handler import WebhookBatchProcessor, get_webhook_metrics, validate_webhook_token
from app.services.webhooks.normalizers import (
    SOURCE_CLICKPOST_ORDER_INTAKE,
    SOURCE_CLICKPOST_WEBHOOK,
    SOURCE_EASYECOM_CREDIT_NOTE,
    SOURCE_EASYECOM_WEBHOOK,
    build_order_intake,
    normalize_clickpost_shipments,
    normalize_credit_notes,
    normalize_easyecom_orders,
    validate_order_intake,
)
from app.utils.retry_handler import get_all_metrics

settings = get_settings()
logger = logging.getLogger(__name__)

# Crear router
router = APIRouter()

# Body singleton para evitar B008
RAW_PAYLOAD = Body(..., description="Payload tal como lo envía la plataforma")


# === EASYECOM ===


@router.post("/easyecom/orders", response_model=BatchResponse, status_code=status.HTTP_200_OK)
async def easyecom_orders_webhook(
    request: Request,
    payload: Any = RAW_PAYLOAD,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
) -> Dict[str, Any]:
    """
    Webhook de pedidos de EasyEcom (creación o cambio de estado).

    Args:
        request: Request HTTP (headers de autenticación)
        payload: Array de pedidos, {"orders": [...]}, {"data": {"orders": [...]}} o un pedido

    Returns:
        Dict: Resumen del lote
    """
    validate_webhook_token(request, settings.EASYECOM_WEBHOOK_TOKEN, "easyecom")

    entries = normalize_easyecom_orders(payload)
    log_webhook_received("easyecom", "orders", len(entries))

    processor = WebhookBatchProcessor(synchronizer_for(EASYECOM_ORDERS), EASYECOM_ORDERS)
    return await processor.process_batch(entries, SOURCE_EASYECOM_WEBHOOK)


@router.post("/easyecom/credit-notes", response_model=BatchResponse, status_code=status.HTTP_200_OK)
async def easyecom_credit_notes_webhook(
    request: Request,
    payload: Any = RAW_PAYLOAD,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
) -> Dict[str, Any]:
    """
    Webhook de notas de crédito (devoluciones) de EasyEcom.

    Cada nota se agrega a ``returns`` del pedido.
    """
    validate_webhook_token(request, settings.EASYECOM_WEBHOOK_TOKEN, "easyecom")

    entries = normalize_credit_notes(payload)
    log_webhook_received("easyecom", "credit_notes", len(entries))

    processor = WebhookBatchProcessor(synchronizer_for(EASYECOM_ORDERS), EASYECOM_ORDERS)
    return await processor.process_batch(entries, SOURCE_EASYECOM_CREDIT_NOTE)


# === CLICKPOST ===


async def _process_clickpost_shipments(
    request: Request, payload: Any, synchronizer_for: Callable, collection: str
) -> Dict[str, Any]:
    validate_webhook_token(request, settings.CLICKPOST_WEBHOOK_TOKEN, "clickpost")

    entries = normalize_clickpost_shipments(payload)
    log_webhook_received("clickpost", "shipments", len(entries), collection=collection)

    processor = WebhookBatchProcessor(synchronizer_for(collection), collection)
    return await processor.process_batch(entries, SOURCE_CLICKPOST_WEBHOOK)


@router.post("/clickpost/shipments", response_model=BatchResponse, status_code=status.HTTP_200_OK)
async def clickpost_shipments_webhook(
    request: Request,
    payload: Any = RAW_PAYLOAD,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
) -> Dict[str, Any]:
    """
    Webhook de tracking de envíos de ClickPost.

    Args:
        request: Request HTTP (headers de autenticación)
        payload: Array de eventos o {"shipments": [...]}

    Returns:
        Dict: Resumen del lote
    """
    return await _process_clickpost_shipments(request, payload, synchronizer_for, CLICKPOST_ORDERS)


@router.post("/clickpost-dev/shipments", response_model=BatchResponse, status_code=status.HTTP_200_OK)
async def clickpost_dev_shipments_webhook(
    request: Request,
    payload: Any = RAW_PAYLOAD,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
) -> Dict[str, Any]:
    """
    Igual que /clickpost/shipments contra la colección de desarrollo.
    """
    if not settings.CLICKPOST_DEV_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ClickPost dev instance is disabled")

    return await _process_clickpost_shipments(request, payload, synchronizer_for, CLICKPOST_DEV_ORDERS)


async def _create_clickpost_order(
    request: Request, payload: Any, synchronizer_for: Callable, collection: str
) -> Dict[str, Any]:
    validate_webhook_token(request, settings.CLICKPOST_WEBHOOK_TOKEN, "clickpost")
    validate_order_intake(payload)

    metadata = {"ip_address": get_client_ip(request), "user_agent": request.headers.get("user-agent")}
    entry = build_order_intake(payload, webhook_metadata=metadata)
    log_webhook_received("clickpost", "order_intake", 1, collection=collection, order_id=str(entry.order_id))

    # OrderAlreadyExistsException -> 409 con existing_waybill
    result = await synchronizer_for(collection).sync(
        entry.order_id, entry.desired_state, SOURCE_CLICKPOST_ORDER_INTAKE, entry.options
    )
    logger.info(f"📦 ClickPost order {result.order_id} created in {collection} with waybill {entry.waybill}")

    return {
        "success": True,
        "message": "Order created successfully",
        "collection": collection,
        "data": {"order_id": result.order_id, "waybill": entry.waybill, "status": entry.desired_state["order_status"]},
    }


@router.post("/clickpost/orders", response_model=OrderIntakeResponse, status_code=status.HTTP_200_OK)
async def clickpost_order_intake(
    request: Request,
    payload: Any = RAW_PAYLOAD,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
) -> Dict[str, Any]:
    """
    Alta de un pedido ClickPost.

    El pedido se crea en estado Pending con la guía recibida o una generada
    (CPAWB...). Campos faltantes devuelven 400; un pedido ya existente, 409.

    Args:
        request: Request HTTP (headers de autenticación)
        payload: {order_id, pickup_info, drop_info, shipment_details: {items: [...]}}
    """
    return await _create_clickpost_order(request, payload, synchronizer_for, CLICKPOST_ORDERS)


@router.post("/clickpost-dev/orders", response_model=OrderIntakeResponse, status_code=status.HTTP_200_OK)
async def clickpost_dev_order_intake(
    request: Request,
    payload: Any = RAW_PAYLOAD,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
) -> Dict[str, Any]:
    """
    Igual que /clickpost/orders contra la colección de desarrollo.
    """
    if not settings.CLICKPOST_DEV_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ClickPost dev instance is disabled")

    return await _create_clickpost_order(request, payload, synchronizer_for, CLICKPOST_DEV_ORDERS)


@router.post("/clickpost/status/update", response_model=StatusUpdateResponse, status_code=status.HTTP_200_OK)
async def clickpost_status_update(
    request: Request,
    update: ClickPostStatusUpdate,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
    client_factory: Callable = Depends(get_clickpost_client_factory),
) -> Dict[str, Any]:
    """
    Actualiza el estado de un envío localmente y lo empuja a ClickPost.

    Un fallo del envío a ClickPost no revierte la actualización local; se
    reporta en ``upstream_push``.
    """
    validate_webhook_token(request, settings.CLICKPOST_WEBHOOK_TOKEN, "clickpost")
    log_webhook_received("clickpost", "status_update", 1, order_id=str(update.order_id))

    service = StatusUpdateService(synchronizer_for(CLICKPOST_ORDERS), client_factory=client_factory)
    return await service.update_status(
        update.order_id,
        update.waybill,
        update.status_code,
        status_description=update.status_description,
        location=update.location,
        remarks=update.remarks,
        suborder_id=update.suborder_id,
    )


# === MÉTRICAS ===


@router.get("/metrics")
async def webhook_metrics() -> Dict[str, Any]:
    """
    Contadores acumulados de los lotes procesados desde el arranque.
    """
    return {"success": True, "metrics": get_webhook_metrics(), "partner_clients": get_all_metrics()}
