"""
Endpoints de sincronización bajo demanda.

Pull de pedidos desde EasyEcom: se descargan los pedidos de un rango de
fechas y se sincronizan con el mismo procesador de lotes que los webhooks.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, Query, status

from app.api.v1.dependencies import get_easyecom_client_factory, get_synchronizer_factory
from app.api.v1.schemas.order_schemas import BatchResponse
from app.core.config import get_settings
from app.db.store_registry import EASYECOM_ORDERS
from app.services.webhook_handler import WebhookBatchProcessor
from app.services.webhooks.normalizers import SOURCE_EASYECOM_PULL, normalize_easyecom_order
from app.utils.error_handler import ValidationException

settings = get_settings()
logger = logging.getLogger(__name__)

# Crear router
router = APIRouter()

EASYECOM_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Un pull a la vez: EasyEcom limita por cuenta
_pull_lock = asyncio.Lock()

# Query parameter singletons para evitar B008
START_DATE_QUERY = Query(..., description="Inicio del rango, 'YYYY-MM-DD HH:MM:SS'")
END_DATE_QUERY = Query(..., description="Fin del rango, 'YYYY-MM-DD HH:MM:SS'")


def _parse_date(value: str, field: str) -> datetime:
    try:
        return datetime.strptime(value.strip(), EASYECOM_DATE_FORMAT)
    except ValueError:
        raise ValidationException(
            message=f"Invalid {field}: {value!r}",
            field=field,
            invalid_value=value,
            expected_format=EASYECOM_DATE_FORMAT,
        ) from None


@router.post(
    "/easyecom/pull",
    response_model=BatchResponse,
    status_code=status.HTTP_200_OK,
    summary="Pull de pedidos EasyEcom",
    description="Descarga los pedidos de EasyEcom de un rango de fechas y los sincroniza",
)
async def pull_easyecom_orders(
    start_date: str = START_DATE_QUERY,
    end_date: str = END_DATE_QUERY,
    synchronizer_for: Callable = Depends(get_synchronizer_factory),
    client_factory: Callable = Depends(get_easyecom_client_factory),
) -> Dict[str, Any]:
    """
    Sincroniza los pedidos de EasyEcom de un rango.

    Args:
        start_date: Inicio del rango
        end_date: Fin del rango

    Returns:
        Dict: Resumen del lote

    Raises:
        ValidationException: Fechas inválidas o rango invertido
        PartnerAPIException: EasyEcom no respondió correctamente
    """
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if start > end:
        raise ValidationException(
            message="start_date must not be after end_date",
            field="start_date",
            invalid_value=start_date,
        )

    async with _pull_lock:
        logger.info(f"🔄 Pulling EasyEcom orders {start_date} → {end_date}")

        async with client_factory() as client:
            raw_orders = await client.fetch_orders(
                start.strftime(EASYECOM_DATE_FORMAT), end.strftime(EASYECOM_DATE_FORMAT)
            )

        entries = [normalize_easyecom_order(order) for order in raw_orders]
        processor = WebhookBatchProcessor(synchronizer_for(EASYECOM_ORDERS), EASYECOM_ORDERS)
        result = await processor.process_batch(entries, SOURCE_EASYECOM_PULL)

    logger.info(f"✅ EasyEcom pull finished: {result['message']}")
    return result
