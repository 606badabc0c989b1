"""
Actualización de estado ClickPost con envío hacia el origen.

Solo se actualizan pedidos existentes. Primero se sincroniza el pedido
local; después, si ENABLE_STATUS_PUSH está activo, el estado se empuja a
ClickPost. Un fallo del envío se reporta en la respuesta y nunca revierte
la sincronización local.
"""

import logging
from typing import Any, Callable, Dict, Optional

from app.core.config import get_settings
from app.db.partner_clients import ClickPostClient
from app.domain.models import SyncOptions
from app.domain.models.order_document import ITEM_STATUS, ORDER_STATUS, SUB_ITEMS, SUBORDER_ID, format_timestamp, utc_now
from app.services.orders.interfaces import IOrderSynchronizer
from app.services.webhooks.normalizers import SOURCE_CLICKPOST_STATUS_UPDATE, normalize_status_code
from app.utils.error_handler import PartnerAPIException

settings = get_settings()
logger = logging.getLogger(__name__)


class StatusUpdateService:
    """
    Aplica un cambio de estado ClickPost localmente y lo propaga.
    """

    def __init__(
        self,
        synchronizer: IOrderSynchronizer,
        client_factory: Callable[[], ClickPostClient] = ClickPostClient,
        push_enabled: Optional[bool] = None,
    ):
        self.synchronizer = synchronizer
        self.client_factory = client_factory
        self.push_enabled = settings.ENABLE_STATUS_PUSH if push_enabled is None else push_enabled

    async def update_status(
        self,
        order_id: Any,
        waybill: str,
        status_code: str,
        status_description: Optional[str] = None,
        location: Optional[str] = None,
        remarks: Optional[str] = None,
        suborder_id: Any = None,
    ) -> Dict[str, Any]:
        """
        Sincroniza el estado y lo empuja a ClickPost.

        Args:
            order_id: Identificador del pedido
            waybill: Número de guía
            status_code: Código ClickPost
            status_description: Descripción del estado
            location: Ubicación del evento
            remarks: Observaciones
            suborder_id: Subpedido al que aplica (opcional)

        Returns:
            Dict: {success, database_updated, sync_result, upstream_push}

        Raises:
            OrderNotFoundException: El pedido no existe; no se escribe ni se empuja nada
            MalformedStateException: Pedido o payload inválido
            StorageUnavailableException: El almacenamiento no responde
        """
        code = normalize_status_code(status_code)
        last_status_update = {
            "waybill": waybill,
            "status_code": code,
            "status_description": status_description,
            "location": location,
            "remarks": remarks,
            "requested_at": format_timestamp(utc_now()),
        }

        if suborder_id is not None:
            desired = {SUB_ITEMS: [{SUBORDER_ID: suborder_id, ITEM_STATUS: code}]}
        else:
            desired = {ORDER_STATUS: code}

        result = await self.synchronizer.sync(
            order_id,
            desired,
            SOURCE_CLICKPOST_STATUS_UPDATE,
            SyncOptions(
                extra_set={"last_status_update": last_status_update, "waybill": waybill},
                must_exist=True,
            ),
        )

        upstream = await self._push(waybill, code, status_description, location, remarks)

        return {
            "success": True,
            "database_updated": result.changed,
            "sync_result": result.to_dict(),
            "upstream_push": upstream,
        }

    async def _push(
        self,
        waybill: str,
        code: str,
        status_description: Optional[str],
        location: Optional[str],
        remarks: Optional[str],
    ) -> Dict[str, Any]:
        if not self.push_enabled:
            return {"attempted": False, "success": False, "error": None}

        try:
            async with self.client_factory() as client:
                response = await client.push_status(
                    waybill,
                    code,
                    status_description=status_description,
                    location=location,
                    remarks=remarks,
                )
        except PartnerAPIException as e:
            logger.error(f"❌ ClickPost status push failed for waybill {waybill}: {e.message}")
            return {"attempted": True, "success": False, "error": e.message}

        logger.info(f"✅ Status {code} pushed to ClickPost for waybill {waybill}")
        return {"attempted": True, "success": True, "error": None, "response": response}
