"""
ClickPost API client: pushes shipment status updates upstream.
"""

import logging
from typing import Any, Dict, Optional

import aiohttp

from app.core.config import get_settings
from app.db.partner_clients.base_client import BasePartnerClient
from app.domain.models.order_document import format_timestamp, utc_now
from app.utils.error_handler import PartnerAPIException

settings = get_settings()
logger = logging.getLogger(__name__)

STATUS_UPDATE_ENDPOINT = "/status/update/"

# Códigos de estado documentados por ClickPost
CLICKPOST_STATUS_CODES = frozenset({"OFD", "DEL", "RTO", "POD", "NDR", "OOD", "PPD", "DEX", "INT", "EXP"})


class ClickPostClient(BasePartnerClient):
    """
    Cliente para la API de ClickPost.
    """

    platform = "clickpost"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(settings.CLICKPOST_BASE_URL, session=session)

    async def push_status(
        self,
        waybill: str,
        status_code: str,
        status_description: Optional[str] = None,
        location: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Empuja un cambio de estado de un envío a ClickPost.

        Args:
            waybill: Número de guía
            status_code: Código ClickPost (OFD, DEL, ...)
            status_description: Descripción legible (por defecto el código)
            location: Ubicación del evento
            remarks: Observaciones

        Returns:
            Dict: Respuesta de ClickPost

        Raises:
            PartnerAPIException: Credenciales ausentes o error de la API
        """
        if not self.settings.clickpost_configured:
            raise PartnerAPIException(
                "ClickPost credentials not configured",
                platform=self.platform,
                endpoint=STATUS_UPDATE_ENDPOINT,
                auth_failed=True,
            )

        code = status_code.strip().upper()
        if code not in CLICKPOST_STATUS_CODES:
            logger.warning(f"⚠️ Unusual ClickPost status code: {code}")

        payload = {
            "waybill": waybill.strip(),
            "status": {
                "clickpost_status_code": code,
                "clickpost_status_description": status_description or code,
                "timestamp": format_timestamp(utc_now()),
                "location": location or "Unknown",
                "remarks": remarks or "",
            },
        }
        params = {"username": self.settings.CLICKPOST_USERNAME, "key": self.settings.CLICKPOST_API_KEY}

        logger.info(f"📤 Pushing status {code} for waybill {payload['waybill']} to ClickPost")
        return await self._request("POST", STATUS_UPDATE_ENDPOINT, params=params, json=payload)
