"""
Base HTTP client for partner REST APIs.

Provides session management, request logging, error mapping to
PartnerAPIException and retries through the shared per-platform
RetryHandler.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

from app.core.config import get_settings
from app.core.logging_config import log_api_call
from app.utils.error_handler import PartnerAPIException
from app.utils.retry_handler import get_handler

logger = logging.getLogger(__name__)


def _error_message(data: Any) -> str:
    if isinstance(data, dict):
        for key in ("message", "error", "meta"):
            if data.get(key):
                return str(data[key])
    return str(data)[:200]


class BasePartnerClient:
    """
    Base client for one partner platform.

    Usable as an async context manager; an externally created
    ``aiohttp.ClientSession`` may be injected and is then not closed here.
    """

    platform = "partner"

    def __init__(self, base_url: str, session: Optional[aiohttp.ClientSession] = None):
        self.settings = get_settings()
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = self.settings.PARTNER_REQUEST_TIMEOUT
        self.session = session
        self._owns_session = session is None
        self.retry_handler = get_handler(self.platform)

    async def initialize(self):
        """Create the HTTP session if none was injected."""
        if self.session is not None:
            return

        timeout = ClientTimeout(total=self.timeout_seconds, connect=min(5, self.timeout_seconds))
        connector = aiohttp.TCPConnector(limit=50, limit_per_host=20)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"{self.settings.APP_NAME}/{self.settings.APP_VERSION}",
            },
        )
        logger.debug(f"{self.platform} HTTP session created")

    async def close(self):
        """Close the HTTP session and clean up resources."""
        if self.session and self._owns_session:
            await self.session.close()
            logger.debug(f"{self.platform} HTTP session closed")
        if self._owns_session:
            self.session = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        retry: bool = True,
    ) -> Dict[str, Any]:
        """
        Send a request, retrying retryable failures.

        Returns:
            Dict: Decoded JSON body (non-object bodies wrapped under "data")

        Raises:
            PartnerAPIException: On HTTP >= 400, network errors or timeouts
        """
        if retry:
            return await self.retry_handler.execute(
                self._send,
                method,
                path,
                params=params,
                json=json,
                headers=headers,
                context={"platform": self.platform, "path": path},
            )
        return await self._send(method, path, params=params, json=json, headers=headers)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if not self.session:
            raise PartnerAPIException(
                "Client not initialized. Call initialize() first.", platform=self.platform, endpoint=path
            )

        url = f"{self.base_url}/{path.lstrip('/')}"
        start_time = time.time()

        try:
            async with self.session.request(method, url, params=params, json=json, headers=headers) as response:
                log_api_call(self.platform, method, url, response.status, time.time() - start_time)
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = {"raw": await response.text()}

                if response.status >= 400:
                    raise PartnerAPIException(
                        f"{self.platform} HTTP {response.status}: {_error_message(data)}",
                        platform=self.platform,
                        api_response_code=response.status,
                        endpoint=path,
                        auth_failed=response.status in (401, 403),
                    )

        except aiohttp.ClientError as e:
            raise PartnerAPIException(
                f"{self.platform} network error: {e}", platform=self.platform, endpoint=path
            ) from e
        except asyncio.TimeoutError as e:
            raise PartnerAPIException(
                f"{self.platform} request timed out after {self.timeout_seconds}s",
                platform=self.platform,
                endpoint=path,
            ) from e

        if data is None:
            return {}
        return data if isinstance(data, dict) else {"data": data}
