"""
Gestión del ciclo de vida de la aplicación FastAPI.

Este módulo maneja los eventos de startup y shutdown de la aplicación:
logging, Redis, almacenes de pedidos y su cierre ordenado.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI

from app.core.config import get_settings
from app.core.logging_config import setup_logging
from app.core.redis_client import close_redis, initialize_redis, is_redis_configured
from app.db.store_registry import close_order_stores, initialize_order_stores

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gestión del ciclo de vida de la aplicación.
    Maneja eventos de startup y shutdown de manera ordenada.

    Args:
        app: Instancia de FastAPI
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"🚀 Iniciando {settings.APP_NAME} v{settings.APP_VERSION}...")

    try:
        await startup_verify_configuration()
        await initialize_redis()
        registry = await initialize_order_stores()
        app.state.store_registry = registry
        logger.info(f"📋 Configuración activa: {get_startup_info()}")
        logger.info("🎉 Aplicación iniciada correctamente")

    except Exception as e:
        logger.error(f"❌ Error durante el startup: {e}")
        await shutdown_close_connections()
        raise

    # === YIELD (aplicación corriendo) ===
    yield

    # === SHUTDOWN ===
    logger.info(f"🛑 Cerrando {settings.APP_NAME}...")
    await shutdown_close_connections()
    logger.info("👋 Aplicación cerrada correctamente")


# === FUNCIONES DE STARTUP ===


async def startup_verify_configuration():
    """
    Advierte sobre configuración incompleta.

    Nada de esto impide arrancar: los webhooks funcionan sin credenciales
    salientes y sin tokens (con advertencia).
    """
    if not settings.easyecom_configured:
        logger.warning("⚠️ EasyEcom credentials incomplete - /sync/easyecom/pull will fail")
    if settings.ENABLE_STATUS_PUSH and not settings.clickpost_configured:
        logger.warning("⚠️ ClickPost credentials incomplete - status pushes will be reported as failed")
    if not settings.EASYECOM_WEBHOOK_TOKEN or not settings.CLICKPOST_WEBHOOK_TOKEN:
        logger.warning("⚠️ Webhook token missing for at least one platform - those webhooks are unauthenticated")
    if settings.ORDER_STORE_BACKEND == "memory" and settings.is_production:
        logger.warning("⚠️ In-memory order store in production - orders are lost on restart")

    logger.info("✅ Configuración verificada")


# === FUNCIONES DE SHUTDOWN ===


async def shutdown_close_connections():
    """Cierra conexiones de manera limpia."""
    try:
        await close_order_stores()
        logger.info("✅ Almacenes de pedidos cerrados")
    except Exception as e:
        logger.error(f"Error cerrando almacenes de pedidos: {e}")

    if is_redis_configured():
        try:
            await close_redis()
            logger.info("✅ Cliente Redis cerrado")
        except Exception as e:
            logger.error(f"Error cerrando Redis: {e}")


def get_startup_info() -> Dict[str, Any]:
    """
    Obtiene información sobre la configuración activa.

    Returns:
        Dict: Información del startup
    """
    return {
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "debug": settings.DEBUG,
        "features": {
            "status_push": settings.ENABLE_STATUS_PUSH,
            "clickpost_dev": settings.CLICKPOST_DEV_ENABLED,
        },
        "services": {
            "order_store_backend": settings.ORDER_STORE_BACKEND,
            "redis_enabled": is_redis_configured(),
            "easyecom_configured": settings.easyecom_configured,
            "clickpost_configured": settings.clickpost_configured,
        },
    }
