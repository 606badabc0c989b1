"""
Configuración personalizada de OpenAPI/Swagger para la aplicación FastAPI.

Agrega tags, servidores y los esquemas de seguridad de los webhooks
(x-api-key o Bearer).
"""

import logging
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def get_custom_openapi_schema(app: FastAPI) -> Dict[str, Any]:
    """
    Genera esquema OpenAPI personalizado con información adicional.

    Args:
        app: Instancia de FastAPI

    Returns:
        Dict: Esquema OpenAPI personalizado
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema["servers"] = get_server_configuration()
    openapi_schema["tags"] = get_custom_tags()

    components = openapi_schema.setdefault("components", {})
    components["securitySchemes"] = get_security_schemes()

    openapi_schema["x-app-info"] = {
        "environment": settings.ENVIRONMENT,
        "version": settings.APP_VERSION,
        "features": {
            "status_push": settings.ENABLE_STATUS_PUSH,
            "clickpost_dev": settings.CLICKPOST_DEV_ENABLED,
        },
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


def get_server_configuration() -> List[Dict[str, str]]:
    servers = [{"url": f"http://localhost:{settings.PORT}", "description": "Local"}]
    for host in settings.allowed_hosts_list:
        servers.append({"url": f"https://{host}", "description": settings.ENVIRONMENT})
    return servers


def get_custom_tags() -> List[Dict[str, str]]:
    return [
        {"name": "Webhooks", "description": "Webhooks de EasyEcom y ClickPost y status updates"},
        {"name": "Synchronization", "description": "Pull de pedidos desde EasyEcom"},
        {"name": "Orders", "description": "Consulta de pedidos sincronizados por colección"},
        {"name": "Health", "description": "Health checks y probes"},
        {"name": "Root", "description": "Información básica de la API"},
        {"name": "Info", "description": "Versión y build"},
    ]


def get_security_schemes() -> Dict[str, Any]:
    return {
        "WebhookApiKey": {"type": "apiKey", "in": "header", "name": "x-api-key"},
        "WebhookBearer": {"type": "http", "scheme": "bearer"},
    }


def configure_openapi(app: FastAPI) -> None:
    """
    Instala el generador de esquema personalizado.

    Args:
        app: Instancia de FastAPI
    """
    app.openapi = lambda: get_custom_openapi_schema(app)
    logger.info("✅ OpenAPI configurado")
