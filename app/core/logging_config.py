"""
Configuración del sistema de logging.

Este módulo configura:
- Handlers de consola y archivo con rotación
- Formateo con colores en terminal y JSON estructurado en producción
- Contexto de request (request_id) en cada registro
- Registros estructurados de sincronización de pedidos y webhooks
"""

import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import get_settings

settings = get_settings()

# Lo fija el middleware de requests
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "taskName",
    }
)


class ColoredFormatter(logging.Formatter):
    """
    Formatter que colorea el nivel de log en consola.
    """

    # Códigos de color ANSI
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Verde
        "WARNING": "\033[33m",  # Amarillo
        "ERROR": "\033[31m",  # Rojo
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",  # Reset
    }

    def format(self, record):
        formatted = super().format(record)

        # Solo en TTY
        if hasattr(sys.stderr, "isatty") and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
            formatted = formatted.replace(record.levelname, f"{color}{record.levelname}{self.COLORS['RESET']}", 1)

        return formatted


class StructuredFormatter(logging.Formatter):
    """
    Formatter para logging estructurado en JSON.
    """

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "app_name": settings.APP_NAME,
            "app_version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class RequestContextFilter(logging.Filter):
    """
    Agrega el request_id del request en curso a cada registro.
    """

    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


class SyncOperationFilter(logging.Filter):
    """
    Marca los registros de sincronización y webhooks.
    """

    SYNC_MODULES = ("sync", "orders", "webhook")

    def filter(self, record):
        if any(module in record.name.lower() for module in self.SYNC_MODULES):
            record.operation_type = "sync"
        return True


def setup_logging() -> None:
    """
    Configura el sistema de logging completo de la aplicación.
    """
    if settings.LOG_FILE_PATH:
        Path(settings.LOG_FILE_PATH).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(get_logging_configuration())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL))

    request_filter = RequestContextFilter()
    sync_filter = SyncOperationFilter()
    for handler in root_logger.handlers:
        handler.addFilter(request_filter)
        handler.addFilter(sync_filter)

    configure_specific_loggers()

    logger = logging.getLogger(__name__)
    logger.info(f"Sistema de logging configurado - Nivel: {settings.LOG_LEVEL}")
    if settings.LOG_FILE_PATH:
        logger.info(f"Logs guardándose en: {settings.LOG_FILE_PATH}")


def get_logging_configuration() -> Dict[str, Any]:
    """
    Genera configuración completa de logging.

    Returns:
        Dict: Configuración para logging.config.dictConfig
    """
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "colored": {
                "()": ColoredFormatter,
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {"()": StructuredFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.LOG_LEVEL,
                "formatter": "colored" if settings.DEBUG else "standard",
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {
            "uvicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.error": {"level": "INFO", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": settings.LOG_LEVEL, "handlers": ["console"]},
    }

    if settings.LOG_FILE_PATH:
        rotating = {
            "class": "logging.handlers.RotatingFileHandler",
            "maxBytes": settings.LOG_MAX_SIZE_MB * 1024 * 1024,
            "backupCount": settings.LOG_BACKUP_COUNT,
            "encoding": "utf-8",
        }
        base_path = settings.LOG_FILE_PATH.removesuffix(".log")

        config["handlers"]["file"] = {
            **rotating,
            "level": settings.LOG_LEVEL,
            "formatter": "detailed",
            "filename": settings.LOG_FILE_PATH,
        }
        config["handlers"]["error_file"] = {
            **rotating,
            "level": "ERROR",
            "formatter": "detailed",
            "filename": f"{base_path}_errors.log",
        }
        config["root"]["handlers"].extend(["file", "error_file"])

        if settings.is_production:
            config["handlers"]["json_file"] = {
                **rotating,
                "level": "INFO",
                "formatter": "json",
                "filename": f"{base_path}.json",
            }
            config["root"]["handlers"].append("json_file")

    return config


def configure_specific_loggers() -> None:
    """
    Ajusta niveles de loggers propios y de librerías externas.
    """
    logging.getLogger("app.sync").setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    logging.getLogger("app.webhooks").setLevel(logging.INFO)
    logging.getLogger("app.db").setLevel(logging.WARNING)

    for logger_name in ["httpx", "aiohttp.access", "aiosqlite"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.ORDERS_DB_ECHO else logging.WARNING
    )


def log_sync_operation(action: str, collection: str, order_id: int, source: str, **kwargs):
    """
    Registro estructurado de una sincronización de pedido.

    Args:
        action: inserted, updated o no_change
        collection: Colección del pedido
        order_id: Identificador del pedido
        source: Origen del cambio (easyecom-webhook, clickpost-webhook, ...)
        **kwargs: Datos adicionales (change_count, ignored_suborders, ...)
    """
    logger = logging.getLogger("app.sync.operation")

    extra_data = {
        "sync_action": action,
        "collection": collection,
        "order_id": order_id,
        "sync_source": source,
        **kwargs,
    }

    level = logging.DEBUG if action == "no_change" else logging.INFO
    logger.log(level, f"Order {order_id} {action} in {collection} (source: {source})", extra=extra_data)


def log_webhook_received(platform: str, topic: str, entries: int, **kwargs):
    """
    Registro estructurado de un webhook recibido.

    Args:
        platform: easyecom o clickpost
        topic: Tipo de webhook (orders, shipments, credit-notes, ...)
        entries: Número de entradas en el payload
    """
    logger = logging.getLogger("app.webhooks.received")

    extra_data = {"platform": platform, "topic": topic, "entries": entries, **kwargs}
    logger.info(f"📨 Webhook received: {platform}/{topic} ({entries} entries)", extra=extra_data)


def log_api_call(platform: str, method: str, url: str, status_code: int, duration: float):
    """
    Registro de una llamada HTTP a la API de un socio.

    Args:
        platform: easyecom o clickpost
        method: Método HTTP
        url: URL sin credenciales
        status_code: Código de respuesta
        duration: Duración en segundos
    """
    logger = logging.getLogger("app.api.call")

    if 200 <= status_code < 300:
        level = logging.INFO
    elif 400 <= status_code < 500:
        level = logging.WARNING
    else:
        level = logging.ERROR

    logger.log(
        level,
        f"API call: {platform} {method} {url} -> {status_code} ({duration * 1000:.1f}ms)",
        extra={"platform": platform, "status_code": status_code, "duration_ms": round(duration * 1000, 2)},
    )
