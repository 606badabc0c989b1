"""
Sistema de health checks para monitoreo de servicios.

Verifica la conectividad de los almacenes de pedidos (una entrada por
colección), Redis cuando está configurado, y los recursos del host.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Tuple

import psutil

from app.core.config import get_settings
from app.core.redis_client import is_redis_configured, test_redis_connection
from app.db.store_registry import OrderStoreRegistry, get_order_store_registry

settings = get_settings()
logger = logging.getLogger(__name__)

# Variable global para tracking de uptime
_app_start_time = datetime.now(timezone.utc)

# Cache global para health checks
_health_cache: Dict[str, Any] = {}
_cache_timestamp: Dict[str, datetime] = {}


async def get_health_status(registry: OrderStoreRegistry = None, use_cache: bool = True) -> Dict[str, Any]:
    """
    Obtiene el estado de salud de los servicios.

    Args:
        registry: Registro de almacenes (por defecto el global)
        use_cache: Reutilizar un resultado de menos de HEALTH_CHECK_CACHE_TTL segundos

    Returns:
        Dict: {overall, services, uptime, timestamp}
    """
    cache_key = "health_status"
    now = datetime.now(timezone.utc)

    if (
        use_cache
        and cache_key in _health_cache
        and (now - _cache_timestamp[cache_key]).total_seconds() < settings.HEALTH_CHECK_CACHE_TTL
    ):
        logger.debug("Returning cached health status")
        return _health_cache[cache_key]

    registry = registry or get_order_store_registry()
    checks: List[Tuple[str, Callable[[], Awaitable[bool]]]] = [
        (f"store:{name}", _store_check(registry, name)) for name in registry.collections()
    ]
    checks.append(("redis", check_redis_health))
    checks.append(("memory", check_memory_usage))
    checks.append(("disk_space", check_disk_space))

    results = await asyncio.gather(
        *(run_health_check_with_timeout(name, check, settings.HEALTH_CHECK_TIMEOUT) for name, check in checks)
    )
    services = {name: result for (name, _), result in zip(checks, results)}

    # Solo los almacenes y Redis determinan el estado global
    overall = all(
        result["status"] == "healthy"
        for name, result in services.items()
        if name.startswith("store:") or name == "redis"
    )

    health_response = {
        "overall": overall,
        "services": services,
        "uptime": get_uptime_info(),
        "timestamp": now.isoformat(),
    }

    _health_cache[cache_key] = health_response
    _cache_timestamp[cache_key] = now
    return health_response


def clear_health_cache():
    """Descarta el último resultado (tests)."""
    _health_cache.clear()
    _cache_timestamp.clear()


async def run_health_check_with_timeout(service_name: str, check_func, timeout: float) -> Dict[str, Any]:
    """
    Ejecuta una verificación de salud individual con timeout específico.

    Args:
        service_name: Nombre del servicio
        check_func: Función de verificación
        timeout: Timeout en segundos

    Returns:
        Dict: Resultado de la verificación
    """
    start_time = time.time()

    try:
        result = await asyncio.wait_for(check_func(), timeout=timeout)
        latency_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy" if result else "unhealthy",
            "latency_ms": round(latency_ms, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    except asyncio.TimeoutError:
        latency_ms = (time.time() - start_time) * 1000
        logger.warning(f"Health check timeout for {service_name} after {timeout}s")

        return {
            "status": "timeout",
            "error": f"Health check timeout after {timeout}s",
            "latency_ms": round(latency_ms, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    except Exception as e:
        latency_ms = (time.time() - start_time) * 1000
        logger.error(f"Health check failed for {service_name}: {e}")

        return {
            "status": "unhealthy",
            "error": str(e),
            "latency_ms": round(latency_ms, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def _store_check(registry: OrderStoreRegistry, collection: str) -> Callable[[], Awaitable[bool]]:
    async def check() -> bool:
        info = await registry.get(collection).health_check()
        return bool(info.get("test_passed"))

    return check


async def check_redis_health() -> bool:
    """
    Verifica la conectividad con Redis.

    Returns:
        bool: True si Redis está disponible o no se usa
    """
    if not is_redis_configured():
        return True  # Redis es opcional: locks locales

    return await test_redis_connection()


async def check_disk_space() -> bool:
    """
    Verifica el espacio en disco disponible.

    Returns:
        bool: True si hay suficiente espacio
    """
    disk_usage = psutil.disk_usage("/")
    free_percent = (disk_usage.free / disk_usage.total) * 100
    return free_percent > settings.DISK_SPACE_THRESHOLD


async def check_memory_usage() -> bool:
    """
    Verifica el uso de memoria del sistema.

    Returns:
        bool: True si el uso de memoria está dentro de límites
    """
    return psutil.virtual_memory().percent < settings.MEMORY_USAGE_THRESHOLD


def get_uptime_info() -> Dict[str, Any]:
    """
    Obtiene información de uptime de la aplicación.

    Returns:
        Dict: Información de uptime
    """
    current_time = datetime.now(timezone.utc)
    uptime_delta = current_time - _app_start_time

    return {
        "start_time": _app_start_time.isoformat(),
        "current_time": current_time.isoformat(),
        "uptime_seconds": int(uptime_delta.total_seconds()),
        "uptime_human": format_uptime(uptime_delta),
    }


def format_uptime(uptime_delta: timedelta) -> str:
    """
    Formatea el uptime en formato legible.

    Args:
        uptime_delta: Delta de tiempo de uptime

    Returns:
        str: Uptime formateado
    """
    days = uptime_delta.days
    hours, remainder = divmod(uptime_delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")

    return " ".join(parts)
