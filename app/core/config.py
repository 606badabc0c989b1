"""
Configuración centralizada de la aplicación.

Este módulo maneja todas las variables de entorno y configuraciones
de la aplicación usando Pydantic Settings para validación automática.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Configuración de la aplicación usando Pydantic Settings.

    Todas las configuraciones se cargan desde variables de entorno
    con valores por defecto apropiados para desarrollo.
    """

    # === CONFIGURACIÓN BÁSICA DE LA APP ===
    APP_NAME: str = "Order Sync Gateway"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # === CONFIGURACIÓN DEL SERVIDOR ===
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3007)
    WORKERS: int = Field(default=1)
    LOG_LEVEL: str = Field(default="INFO")

    # === CONFIGURACIÓN DE SEGURIDAD ===
    # Lista separada por comas
    ALLOWED_HOSTS: Optional[str] = Field(default=None)

    # === CONFIGURACIÓN DEL ALMACÉN DE PEDIDOS ===
    # "sqlalchemy" (persistente) o "memory" (pruebas / desarrollo local)
    ORDER_STORE_BACKEND: str = Field(default="sqlalchemy")
    ORDERS_DB_URL: str = Field(default="sqlite+aiosqlite:///./orders.db")
    # Base de datos de la instancia dev de ClickPost; usa ORDERS_DB_URL si no se define
    ORDERS_DEV_DB_URL: Optional[str] = Field(default=None)
    ORDERS_DB_POOL_SIZE: int = Field(default=10)
    ORDERS_DB_ECHO: bool = Field(default=False)

    # === CONFIGURACIÓN DE REDIS ===
    REDIS_URL: Optional[str] = Field(default=None)
    REDIS_SOCKET_TIMEOUT: int = Field(default=5)

    # === CONFIGURACIÓN DE SINCRONIZACIÓN ===
    ORDER_LOCK_TIMEOUT_SECONDS: int = Field(default=30)
    ORDER_LOCK_WAIT_SECONDS: float = Field(default=10.0)
    SYNC_MAX_CONFLICT_RETRIES: int = Field(default=5)

    # === CONFIGURACIÓN DE EASYECOM ===
    EASYECOM_API_URL: str = Field(default="https://api.easyecom.io")
    EASYECOM_API_KEY: Optional[str] = Field(default=None)
    EASYECOM_EMAIL: Optional[str] = Field(default=None)
    EASYECOM_PASSWORD: Optional[str] = Field(default=None)
    EASYECOM_LOCATION_KEY: Optional[str] = Field(default=None)
    EASYECOM_WEBHOOK_TOKEN: Optional[str] = Field(default=None)

    # === CONFIGURACIÓN DE CLICKPOST ===
    CLICKPOST_BASE_URL: str = Field(default="https://api.clickpost.in/api/v1")
    CLICKPOST_USERNAME: Optional[str] = Field(default=None)
    CLICKPOST_API_KEY: Optional[str] = Field(default=None)
    CLICKPOST_WEBHOOK_TOKEN: Optional[str] = Field(default=None)
    CLICKPOST_DEV_ENABLED: bool = Field(default=False)
    ENABLE_STATUS_PUSH: bool = Field(default=True)
    PARTNER_REQUEST_TIMEOUT: int = Field(default=10)

    # === CONFIGURACIÓN DE LOGGING ===
    LOG_FILE_PATH: Optional[str] = Field(default="logs/app.log")
    LOG_MAX_SIZE_MB: int = Field(default=10)
    LOG_BACKUP_COUNT: int = Field(default=5)

    # === CONFIGURACIÓN DE MONITOREO ===
    SLOW_REQUEST_THRESHOLD: float = Field(default=5.0)
    HEALTH_CHECK_TIMEOUT: float = Field(default=5.0)
    HEALTH_CHECK_CACHE_TTL: int = Field(default=30)
    MEMORY_USAGE_THRESHOLD: int = Field(default=90)
    DISK_SPACE_THRESHOLD: int = Field(default=10)

    # === CONFIGURACIÓN DE DOCUMENTACIÓN ===
    ENABLE_DOCS: bool = Field(default=True)

    # === CONFIGURACIÓN DE RETRIES ===
    MAX_RETRIES: int = Field(default=3)
    RETRY_DELAY_SECONDS: float = Field(default=1.0)
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "allow",  # Permitir valores extra para flexibilidad futura
    }

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Valida que el nivel de log sea válido."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL debe ser uno de: {valid_levels}")
        return v.upper()

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Valida que el entorno sea válido."""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT debe ser uno de: {valid_envs}")
        return v.lower()

    @field_validator("PORT")
    @classmethod
    def validate_port(cls, v):
        """Valida que el puerto esté en rango válido."""
        if not 1 <= v <= 65535:
            raise ValueError("PORT debe estar entre 1 y 65535")
        return v

    @field_validator("ORDER_STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, v):
        """Valida el backend del almacén de pedidos."""
        valid_backends = ["sqlalchemy", "memory"]
        if v.lower() not in valid_backends:
            raise ValueError(f"ORDER_STORE_BACKEND debe ser uno de: {valid_backends}")
        return v.lower()

    @field_validator("SYNC_MAX_CONFLICT_RETRIES")
    @classmethod
    def validate_conflict_retries(cls, v):
        """Al menos un intento de escritura."""
        if v < 1:
            raise ValueError("SYNC_MAX_CONFLICT_RETRIES debe ser >= 1")
        return v

    @property
    def is_production(self) -> bool:
        """Verifica si está en entorno de producción."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Verifica si está en entorno de desarrollo."""
        return self.ENVIRONMENT == "development"

    @property
    def allowed_hosts_list(self) -> List[str]:
        """Parsea ALLOWED_HOSTS como lista separada por comas."""
        if not self.ALLOWED_HOSTS:
            return []
        return [host.strip() for host in self.ALLOWED_HOSTS.split(",") if host.strip()]

    @property
    def orders_dev_db_url(self) -> str:
        """URL de la base de datos de la instancia dev (con fallback a producción)."""
        return self.ORDERS_DEV_DB_URL or self.ORDERS_DB_URL

    @property
    def easyecom_configured(self) -> bool:
        """Credenciales mínimas para pedir token a EasyEcom."""
        return bool(self.EASYECOM_API_KEY and self.EASYECOM_EMAIL and self.EASYECOM_PASSWORD)

    @property
    def clickpost_configured(self) -> bool:
        """Credenciales mínimas para empujar estados a ClickPost."""
        return bool(self.CLICKPOST_USERNAME and self.CLICKPOST_API_KEY)


@lru_cache()
def get_settings() -> Settings:
    """
    Obtiene instancia singleton de configuración.

    Usa LRU cache para evitar recrear la configuración
    múltiples veces durante la ejecución.

    Returns:
        Settings: Instancia de configuración
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Recarga la configuración (útil para testing).

    Returns:
        Settings: Nueva instancia de configuración
    """
    get_settings.cache_clear()
    return get_settings()
