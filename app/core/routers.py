"""
Configuración centralizada de routers para la aplicación FastAPI.

Este módulo se encarga de registrar todos los routers de la API,
configurar endpoints base y organizar las rutas de manera estructurada.
"""

import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from app.api.v1.dependencies import get_store_registry
from app.api.v1.endpoints.orders import router as orders_router
from app.api.v1.endpoints.sync import router as sync_router
from app.api.v1.endpoints.webhooks import router as webhooks_router
from app.core.config import get_settings
from app.core.health import get_health_status
from app.db.store_registry import OrderStoreRegistry
from app.version import version_info as build_version_info

settings = get_settings()
logger = logging.getLogger(__name__)


def create_root_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints raíz de la aplicación.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/", tags=["Root"], summary="API Info")
    async def root():
        """
        Endpoint raíz que proporciona información básica de la API.

        Returns:
            Dict con información de la API
        """
        return {
            "message": settings.APP_NAME,
            "description": "Sincronización de estados de pedidos EasyEcom / ClickPost",
            "version": settings.APP_VERSION,
            "status": "running",
            "documentation": "/docs" if (settings.DEBUG or settings.ENABLE_DOCS) else "disabled",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "health": "/health",
                "webhooks": "/api/v1/webhooks",
                "sync": "/api/v1/sync",
                "orders": "/api/v1/orders",
            },
        }

    @app.get("/ping", tags=["Root"], summary="Simple Ping")
    async def ping():
        """
        Endpoint simple para verificar que la API responde.

        Returns:
            Dict con pong y timestamp
        """
        return {"message": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}


def create_health_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints de health check y monitoreo.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/health", tags=["Health"], summary="Health Check")
    async def health_check(registry: OrderStoreRegistry = Depends(get_store_registry)):
        """
        Conectividad de los almacenes de pedidos y de Redis.

        Returns:
            JSONResponse: 200 si todo está sano, 503 si no
        """
        health_status = await get_health_status(registry)
        status_code = 200 if health_status["overall"] else 503

        return JSONResponse(
            status_code=status_code,
            content={
                "status": "healthy" if health_status["overall"] else "unhealthy",
                "version": settings.APP_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": health_status.get("uptime"),
                "services": health_status["services"],
                "environment": settings.ENVIRONMENT,
            },
        )

    @app.get("/health/liveness", tags=["Health"], summary="Liveness Probe")
    async def liveness_probe():
        """
        Endpoint para liveness probe de Kubernetes.
        Verifica que la aplicación esté ejecutándose.

        Returns:
            Dict simple con estado
        """
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


def create_info_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints informativos adicionales.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/version", tags=["Info"], summary="Version Info")
    async def version_info():
        """
        Endpoint que retorna información de versión.

        Returns:
            Dict con información de versión
        """
        return {
            **build_version_info(),
            "name": settings.APP_NAME,
            "environment": settings.ENVIRONMENT,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def configure_api_v1_routers(app: FastAPI) -> None:
    """
    Configura todos los routers de la API v1.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando routers de API v1...")

    app.include_router(
        webhooks_router,
        prefix="/api/v1/webhooks",
        tags=["Webhooks"],
        responses={
            401: {"description": "Invalid webhook token"},
            400: {"description": "Invalid webhook payload"},
            503: {"description": "Order store unavailable"},
        },
    )
    logger.info("✅ Router de webhooks configurado")

    app.include_router(
        sync_router,
        prefix="/api/v1/sync",
        tags=["Synchronization"],
        responses={
            502: {"description": "Partner API error"},
            503: {"description": "Order store unavailable"},
        },
    )
    logger.info("✅ Router de sincronización configurado")

    app.include_router(
        orders_router,
        prefix="/api/v1/orders",
        tags=["Orders"],
        responses={404: {"description": "Collection or order not found"}},
    )
    logger.info("✅ Router de pedidos configurado")


def configure_all_routers(app: FastAPI) -> None:
    """
    Configura todos los routers de la aplicación.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando todos los routers...")

    # Endpoints base
    create_root_endpoints(app)
    create_health_endpoints(app)
    create_info_endpoints(app)

    # Routers principales de API v1
    configure_api_v1_routers(app)

    logger.info("✅ Todos los routers configurados correctamente")
