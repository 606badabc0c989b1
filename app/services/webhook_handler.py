"""
Procesamiento de lotes de webhooks de EasyEcom y ClickPost.

Este módulo ejecuta OrderSynchronizer.sync una vez por entrada normalizada,
convierte los fallos de una sola orden en resultados por entrada y deja
propagar los fallos de almacenamiento para que el emisor reintente.
"""

import hmac
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import Request

from app.core.config import get_settings
from app.services.orders.interfaces import IOrderSynchronizer
from app.services.webhooks.normalizers import NormalizedEntry
from app.utils.error_handler import (
    ErrorAggregator,
    LockAcquisitionError,
    MalformedStateException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
    OrderWriteConflictException,
    WebhookAuthenticationException,
)

settings = get_settings()
logger = logging.getLogger(__name__)

# Fallos que afectan a una sola orden; el lote continúa
PER_ENTRY_FAILURES = (
    MalformedStateException,
    LockAcquisitionError,
    OrderWriteConflictException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
)

_METRICS: Dict[str, Any] = {
    "batches": 0,
    "entries": 0,
    "inserted": 0,
    "updated": 0,
    "no_change": 0,
    "failed": 0,
    "by_source": {},
    "last_batch_at": None,
}
_ERROR_AGGREGATOR = ErrorAggregator()


class WebhookBatchProcessor:
    """
    Procesador de lotes de órdenes normalizadas.
    """

    def __init__(self, synchronizer: IOrderSynchronizer, collection: str):
        """
        Args:
            synchronizer: Sincronizador ligado al store de la colección
            collection: Nombre de la colección (para logs y respuesta)
        """
        self.synchronizer = synchronizer
        self.collection = collection

    async def process_batch(self, entries: List[NormalizedEntry], source: str) -> Dict[str, Any]:
        """
        Sincroniza cada entrada en orden.

        Args:
            entries: Entradas normalizadas
            source: Etiqueta de origen para el historial

        Returns:
            Dict: {success, message, summary, details}

        Raises:
            StorageUnavailableException: El almacenamiento no responde
        """
        start_time = time.time()
        summary = {"total_processed": len(entries), "inserted": 0, "updated": 0, "no_change": 0, "failed": 0}
        details: List[Dict[str, Any]] = []

        for entry in entries:
            _ERROR_AGGREGATOR.increment_processed()

            if entry.error or entry.order_id is None:
                summary["failed"] += 1
                details.append({"order_id": entry.raw_id, "success": False, "error": entry.error})
                logger.warning(f"⚠️ Skipping entry in {self.collection}: {entry.error}")
                continue

            try:
                result = await self.synchronizer.sync(entry.order_id, entry.desired_state, source, entry.options)
            except PER_ENTRY_FAILURES as e:
                summary["failed"] += 1
                _ERROR_AGGREGATOR.add_error(e, {"order_id": entry.order_id, "source": source})
                details.append(
                    {
                        "order_id": entry.order_id,
                        "success": False,
                        "error": e.message,
                        "error_code": e.error_code.value,
                    }
                )
                logger.error(f"❌ Order {entry.order_id} failed in {self.collection}: {e.message}")
                continue

            summary[result.action.value] += 1
            details.append({"success": True, **result.to_dict()})

        _record_metrics(source, summary)

        duration = time.time() - start_time
        succeeded = summary["total_processed"] - summary["failed"]
        logger.info(
            f"📦 Batch {source} → {self.collection}: {succeeded}/{summary['total_processed']} ok "
            f"(inserted={summary['inserted']}, updated={summary['updated']}, "
            f"no_change={summary['no_change']}, failed={summary['failed']}) in {duration:.2f}s"
        )

        return {
            "success": summary["failed"] == 0,
            "message": f"Processed {summary['total_processed']} entries, {summary['failed']} failed",
            "collection": self.collection,
            "summary": summary,
            "details": details,
        }


# === MÉTRICAS ===


def _record_metrics(source: str, summary: Dict[str, int]):
    _METRICS["batches"] += 1
    _METRICS["entries"] += summary["total_processed"]
    for key in ("inserted", "updated", "no_change", "failed"):
        _METRICS[key] += summary[key]
    _METRICS["by_source"][source] = _METRICS["by_source"].get(source, 0) + summary["total_processed"]
    _METRICS["last_batch_at"] = time.time()


def get_webhook_metrics() -> Dict[str, Any]:
    """
    Obtiene métricas acumuladas de los webhooks procesados.

    Returns:
        Dict: Contadores por acción y origen más resumen de errores
    """
    return {
        **{key: value for key, value in _METRICS.items() if key != "by_source"},
        "by_source": dict(_METRICS["by_source"]),
        "error_summary": _ERROR_AGGREGATOR.get_summary(),
    }


def reset_webhook_metrics():
    """Reinicia contadores (tests)."""
    global _ERROR_AGGREGATOR
    for key in ("batches", "entries", "inserted", "updated", "no_change", "failed"):
        _METRICS[key] = 0
    _METRICS["by_source"] = {}
    _METRICS["last_batch_at"] = None
    _ERROR_AGGREGATOR = ErrorAggregator()


# === AUTENTICACIÓN ===


def _presented_token(request: Request) -> Optional[str]:
    api_key = request.headers.get("x-api-key")
    if api_key:
        return api_key

    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None


def validate_webhook_token(request: Request, expected_token: Optional[str], platform: str):
    """
    Valida el token de un webhook.

    Acepta ``x-api-key: <token>`` o ``Authorization: Bearer <token>``.

    Args:
        request: Request de FastAPI
        expected_token: Token configurado para la plataforma
        platform: Nombre de la plataforma (para logs y error)

    Raises:
        WebhookAuthenticationException: Token ausente o incorrecto
    """
    if not expected_token:
        logger.warning(f"No webhook token configured for {platform}, skipping verification")
        return

    presented = _presented_token(request)
    if presented is None:
        raise WebhookAuthenticationException(f"Missing {platform} webhook token", platform=platform)

    if not hmac.compare_digest(presented.encode("utf-8"), expected_token.encode("utf-8")):
        raise WebhookAuthenticationException(f"Invalid {platform} webhook token", platform=platform)
