"""
Manejadores de excepciones centralizados para la aplicación FastAPI.

Este módulo define los manejadores de excepciones personalizados y globales,
proporcionando respuestas consistentes y logging apropiado para cada tipo de error.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import get_settings
from app.core.logging_config import request_id_var
from app.utils.error_handler import (
    AppException,
    PartnerAPIException,
    StorageUnavailableException,
    ValidationException,
)

settings = get_settings()
logger = logging.getLogger(__name__)


def _request_id(request: Request) -> Optional[str]:
    return request_id_var.get() or request.headers.get("X-Request-ID")


def _error_body(request: Request, exc: AppException, error_type: str, **extra) -> Dict[str, Any]:
    return {
        "error": True,
        "error_type": error_type,
        "error_code": exc.error_code.value,
        "message": exc.message,
        "details": exc.details,
        **extra,
        "path": str(request.url.path),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": _request_id(request),
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Manejador para excepciones personalizadas de la aplicación.

    Args:
        request: Request de FastAPI
        exc: Excepción personalizada de la app

    Returns:
        JSONResponse: Respuesta JSON con error formateado
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"App Exception: {exc.message} - Code: {exc.error_code.value} - URL: {request.url} - Details: {exc.details}")

    return JSONResponse(status_code=exc.status_code, content=_error_body(request, exc, "application_error"))


async def storage_exception_handler(request: Request, exc: StorageUnavailableException) -> JSONResponse:
    """
    Manejador para almacenamiento no disponible.

    El emisor del webhook recibe 503 con Retry-After y puede reenviar el lote.
    """
    logger.critical(f"🔥 Storage unavailable: {exc.message} - URL: {request.url} - Details: {exc.details}")

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc, "storage_unavailable", retry_suggested=True),
        headers={"Retry-After": str(settings.RETRY_DELAY_SECONDS)},
    )


async def partner_api_exception_handler(request: Request, exc: PartnerAPIException) -> JSONResponse:
    """
    Manejador específico para errores de EasyEcom / ClickPost.
    """
    logger.error(
        f"Partner API Exception: {exc.message} - "
        f"Platform: {exc.platform} - "
        f"API Code: {exc.api_response_code} - "
        f"URL: {request.url}"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            request,
            exc,
            "partner_api_error",
            platform=exc.platform,
            partner_response_code=exc.api_response_code,
        ),
    )


async def validation_exception_handler(request: Request, exc: ValidationException) -> JSONResponse:
    """
    Manejador para errores de validación de datos.

    Args:
        request: Request de FastAPI
        exc: Excepción de validación

    Returns:
        JSONResponse: Respuesta JSON con detalles de validación
    """
    logger.warning(
        f"Validation Exception: {exc.message} - Field: {exc.field} - Value: {exc.invalid_value} - URL: {request.url}"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            request,
            exc,
            "validation_error",
            field=exc.field,
            expected_format=exc.expected_format,
        ),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Manejador para HTTPException de FastAPI / Starlette.
    """
    logger.warning(f"HTTP Exception: {exc.status_code} - {exc.detail} - URL: {request.url}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "error_type": "http_error",
            "status_code": exc.status_code,
            "message": exc.detail,
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": _request_id(request),
        },
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Manejador global para excepciones no capturadas.

    Args:
        request: Request de FastAPI
        exc: Excepción no manejada

    Returns:
        JSONResponse: Respuesta JSON de error interno
    """
    logger.error(
        f"Unhandled Exception: {str(exc)} - "
        f"Type: {type(exc).__name__} - "
        f"URL: {request.url} - "
        f"Traceback: {traceback.format_exc()}"
    )

    # Sin detalles internos fuera de debug
    error_message = "Internal server error occurred"
    if settings.DEBUG:
        error_message = f"{type(exc).__name__}: {str(exc)}"

    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_type": "internal_server_error",
            "message": error_message,
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": _request_id(request),
            "traceback": traceback.format_exc() if settings.DEBUG else None,
        },
    )


def configure_exception_handlers(app: FastAPI) -> None:
    """
    Configura todos los manejadores de excepciones de la aplicación.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando manejadores de excepciones...")

    # Manejadores específicos (orden de especificidad)
    app.add_exception_handler(ValidationException, validation_exception_handler)
    app.add_exception_handler(StorageUnavailableException, storage_exception_handler)
    app.add_exception_handler(PartnerAPIException, partner_api_exception_handler)
    app.add_exception_handler(AppException, app_exception_handler)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # Manejador global (debe ser el último)
    app.add_exception_handler(Exception, global_exception_handler)

    logger.info("✅ Manejadores de excepciones configurados correctamente")
