"""
EasyEcom API client.

Only two calls are used: the JWT token exchange and the order pull.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from app.core.config import get_settings
from app.db.partner_clients.base_client import BasePartnerClient
from app.utils.error_handler import PartnerAPIException

settings = get_settings()
logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "/access/token"
ORDERS_ENDPOINT = "/orders/V2/getAllOrders"


class EasyEcomClient(BasePartnerClient):
    """
    Cliente para la API de EasyEcom.

    El token JWT se pide una vez por instancia y se reutiliza; un 401 en
    el pull fuerza un token nuevo y un segundo intento.
    """

    platform = "easyecom"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(settings.EASYECOM_API_URL, session=session)
        self._access_token: Optional[str] = None

    def _api_key_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.settings.EASYECOM_API_KEY or ""}

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Obtiene un token JWT de EasyEcom.

        Args:
            force_refresh: Ignorar el token en memoria

        Returns:
            str: Token JWT

        Raises:
            PartnerAPIException: Credenciales ausentes o respuesta sin token
        """
        if self._access_token and not force_refresh:
            return self._access_token

        if not self.settings.easyecom_configured:
            raise PartnerAPIException(
                "EasyEcom credentials not configured",
                platform=self.platform,
                endpoint=TOKEN_ENDPOINT,
                auth_failed=True,
            )

        logger.info("🔑 Requesting EasyEcom access token")
        payload = {
            "email": self.settings.EASYECOM_EMAIL,
            "password": self.settings.EASYECOM_PASSWORD,
            "location_key": self.settings.EASYECOM_LOCATION_KEY,
        }
        data = await self._request("POST", TOKEN_ENDPOINT, json=payload, headers=self._api_key_headers())

        token = ((data.get("data") or {}).get("token") or {}).get("jwt_token")
        if not token:
            raise PartnerAPIException(
                "Token not found in EasyEcom response",
                platform=self.platform,
                endpoint=TOKEN_ENDPOINT,
                auth_failed=True,
            )

        self._access_token = token
        logger.info("✅ EasyEcom access token obtained")
        return token

    async def fetch_orders(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """
        Descarga los pedidos de un rango de fechas.

        Args:
            start_date: "YYYY-MM-DD HH:MM:SS"
            end_date: "YYYY-MM-DD HH:MM:SS"

        Returns:
            List[Dict]: Pedidos tal como los devuelve EasyEcom
        """
        params = {"start_date": start_date, "end_date": end_date}

        try:
            data = await self._fetch_orders_page(params, await self.get_access_token())
        except PartnerAPIException as e:
            if e.api_response_code != 401:
                raise
            logger.warning("⚠️ EasyEcom token rejected, requesting a new one")
            data = await self._fetch_orders_page(params, await self.get_access_token(force_refresh=True))

        payload = data.get("data")
        orders = payload.get("orders") if isinstance(payload, dict) else payload
        orders = [order for order in orders or [] if isinstance(order, dict)]

        logger.info(f"📦 Pulled {len(orders)} orders from EasyEcom ({start_date} → {end_date})")
        return orders

    async def _fetch_orders_page(self, params: Dict[str, Any], token: str) -> Dict[str, Any]:
        headers = {**self._api_key_headers(), "Authorization": f"Bearer {token}"}
        return await self._request("GET", ORDERS_ENDPOINT, params=params, headers=headers)
