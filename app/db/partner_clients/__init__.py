"""
Clientes HTTP (aiohttp) para las APIs de EasyEcom y ClickPost.
"""

from app.db.partner_clients.base_client import BasePartnerClient
from app.db.partner_clients.clickpost_client import CLICKPOST_STATUS_CODES, ClickPostClient
from app.db.partner_clients.easyecom_client import EasyEcomClient

__all__ = ["BasePartnerClient", "ClickPostClient", "EasyEcomClient", "CLICKPOST_STATUS_CODES"]
