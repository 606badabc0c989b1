"""
Sistema de manejo de errores personalizado.

Este módulo define todas las excepciones personalizadas de la aplicación
y proporciona utilidades para manejo consistente de errores.
"""

import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """
    Códigos de error estandardizados para la aplicación.
    """

    # Errores generales
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Errores de almacenamiento
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    WRITE_CONFLICT = "WRITE_CONFLICT"
    LOCK_NOT_ACQUIRED = "LOCK_NOT_ACQUIRED"
    REDIS_CONNECTION_FAILED = "REDIS_CONNECTION_FAILED"

    # Errores de sincronización
    MALFORMED_ORDER_STATE = "MALFORMED_ORDER_STATE"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_ALREADY_EXISTS = "ORDER_ALREADY_EXISTS"

    # Errores de API de socios (EasyEcom, ClickPost)
    PARTNER_API_ERROR = "PARTNER_API_ERROR"
    PARTNER_AUTH_FAILED = "PARTNER_AUTH_FAILED"
    INVALID_WEBHOOK_TOKEN = "INVALID_WEBHOOK_TOKEN"
    INVALID_WEBHOOK_PAYLOAD = "INVALID_WEBHOOK_PAYLOAD"


class ErrorSeverity(Enum):
    """
    Niveles de severidad para errores.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AppException(Exception):
    """
    Excepción base para todas las excepciones personalizadas de la aplicación.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        is_retryable: bool = False,
        is_critical: bool = False,
    ):
        """
        Inicializa la excepción.

        Args:
            message: Mensaje de error
            error_code: Código de error estandardizado
            details: Información adicional del error
            status_code: Código HTTP asociado
            severity: Severidad del error
            is_retryable: Si la operación puede reintentarse
            is_critical: Si requiere alerta inmediata
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.severity = severity
        self.is_retryable = is_retryable
        self.is_critical = is_critical
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convierte la excepción a diccionario.

        Returns:
            Dict: Representación de la excepción
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "details": self.details,
            "status_code": self.status_code,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "is_critical": self.is_critical,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        """String representation del error."""
        return f"{self.error_code.value}: {self.message}"


class ValidationException(AppException):
    """
    Excepción para errores de validación de datos de entrada.
    """

    def __init__(
        self,
        message: str,
        field: str,
        invalid_value: Any = None,
        expected_format: Optional[str] = None,
        **kwargs,
    ):
        """
        Inicializa la excepción de validación.

        Args:
            message: Mensaje de error
            field: Campo que falló la validación
            invalid_value: Valor que causó el error
            expected_format: Formato esperado
            **kwargs: Argumentos adicionales para AppException
        """
        kwargs.setdefault("error_code", ErrorCode.VALIDATION_ERROR)
        kwargs.setdefault("status_code", 422)
        super().__init__(
            message=message,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.field = field
        self.invalid_value = invalid_value
        self.expected_format = expected_format

        self.details.update(
            {
                "field": field,
                "invalid_value": str(invalid_value) if invalid_value is not None else None,
                "expected_format": expected_format,
            }
        )


class StorageUnavailableException(AppException):
    """
    El almacén de pedidos no responde.

    Se propaga hasta la capa HTTP (5xx) para que el emisor del webhook
    pueda reintentar la entrega completa.
    """

    def __init__(self, message: str, backend: Optional[str] = None, operation: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.STORAGE_UNAVAILABLE,
            status_code=503,
            severity=ErrorSeverity.HIGH,
            is_retryable=True,
            is_critical=True,
            **kwargs,
        )
        self.backend = backend
        self.operation = operation

        self.details.update({"backend": backend, "operation": operation})


class MalformedStateException(AppException):
    """
    Un pedido individual no pudo procesarse (identificador o forma inválida).

    En un lote se registra como fallo de esa entrada y el lote continúa.
    """

    def __init__(self, message: str, order_id: Any = None, field: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.MALFORMED_ORDER_STATE,
            status_code=422,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.order_id = order_id
        self.field = field

        self.details.update({"order_id": str(order_id) if order_id is not None else None, "field": field})


class OrderWriteConflictException(AppException):
    """
    La escritura condicionada por revisión perdió frente a otra escritura.
    """

    def __init__(self, message: str, order_id: Any = None, attempts: int = 0, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.WRITE_CONFLICT,
            status_code=409,
            severity=ErrorSeverity.MEDIUM,
            is_retryable=True,
            **kwargs,
        )
        self.order_id = order_id
        self.attempts = attempts

        self.details.update({"order_id": order_id, "attempts": attempts})


class LockAcquisitionError(AppException):
    """
    No se pudo adquirir el lock de un pedido dentro del tiempo de espera.
    """

    def __init__(self, message: str, lock_key: Optional[str] = None, waited_seconds: float = 0.0, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.LOCK_NOT_ACQUIRED,
            status_code=409,
            severity=ErrorSeverity.MEDIUM,
            is_retryable=True,
            **kwargs,
        )
        self.lock_key = lock_key
        self.waited_seconds = waited_seconds

        self.details.update({"lock_key": lock_key, "waited_seconds": round(waited_seconds, 3)})


class OrderNotFoundException(AppException):
    """
    El pedido no existe y la operación no puede crearlo.
    """

    def __init__(self, message: str, order_id: Any = None, collection: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.ORDER_NOT_FOUND,
            status_code=404,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.order_id = order_id
        self.collection = collection

        self.details.update({"order_id": order_id, "collection": collection})


class OrderAlreadyExistsException(AppException):
    """
    Alta de un pedido que ya está almacenado.
    """

    def __init__(self, message: str, order_id: Any = None, waybill: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.ORDER_ALREADY_EXISTS,
            status_code=409,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )
        self.order_id = order_id
        self.waybill = waybill

        self.details.update({"order_id": order_id, "existing_waybill": waybill})


class PartnerAPIException(AppException):
    """
    Excepción para errores de las APIs de EasyEcom o ClickPost.
    """

    def __init__(
        self,
        message: str,
        platform: str,
        api_response_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        auth_failed: bool = False,
        **kwargs,
    ):
        """
        Inicializa la excepción de API de socio.

        Args:
            message: Mensaje de error
            platform: Plataforma (easyecom, clickpost)
            api_response_code: Código HTTP devuelto por la plataforma
            endpoint: Endpoint que falló
            auth_failed: Si falló la autenticación
            **kwargs: Argumentos adicionales para AppException
        """
        error_code = ErrorCode.PARTNER_AUTH_FAILED if auth_failed else ErrorCode.PARTNER_API_ERROR
        severity = ErrorSeverity.MEDIUM
        # 4xx (salvo 429) no se arregla reintentando
        is_retryable = api_response_code is None or api_response_code >= 500 or api_response_code == 429

        if auth_failed:
            severity = ErrorSeverity.HIGH
            is_retryable = False
        elif api_response_code and api_response_code >= 500:
            severity = ErrorSeverity.HIGH

        super().__init__(
            message=message,
            error_code=error_code,
            status_code=502,
            severity=severity,
            is_retryable=is_retryable,
            **kwargs,
        )

        self.platform = platform
        self.api_response_code = api_response_code
        self.endpoint = endpoint

        self.details.update(
            {
                "platform": platform,
                "api_response_code": api_response_code,
                "endpoint": endpoint,
            }
        )


class WebhookAuthenticationException(AppException):
    """
    Token de webhook ausente o incorrecto.
    """

    def __init__(self, message: str, platform: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_WEBHOOK_TOKEN,
            status_code=401,
            severity=ErrorSeverity.MEDIUM,
            **kwargs,
        )
        self.platform = platform
        self.details.update({"platform": platform})


# === FUNCIONES DE UTILIDAD ===


def log_error(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Loggea un error de manera consistente.

    Args:
        exception: Excepción a loggear
        context: Contexto adicional
        level: Nivel de logging
    """
    context = context or {}

    log_data = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
        **context,
    }

    if isinstance(exception, AppException):
        message = f"{exception.error_code.value}: {exception.message}"
        log_data.update(
            {
                "error_code": exception.error_code.value,
                "severity": exception.severity.value,
                "is_retryable": exception.is_retryable,
                "is_critical": exception.is_critical,
            }
        )
    else:
        message = f"Unhandled exception: {type(exception).__name__}: {str(exception)}"

    logger.log(level, message, extra={"error_data": log_data})


class ErrorAggregator:
    """
    Agregador de errores para procesos batch.
    """

    def __init__(self):
        """Inicializa el agregador."""
        self.errors: List[AppException] = []
        self.warnings: List[AppException] = []
        self.total_processed = 0
        self.start_time = datetime.now(timezone.utc)

    def add_error(self, exception: Union[AppException, Exception], context: Optional[Dict] = None):
        """
        Agrega un error al agregador.

        Args:
            exception: Excepción a agregar
            context: Contexto adicional
        """
        if not isinstance(exception, AppException):
            exception = AppException(
                message=f"{type(exception).__name__}: {exception}",
                details={"original_exception": type(exception).__name__, **(context or {})},
            )

        if exception.severity in [ErrorSeverity.LOW, ErrorSeverity.MEDIUM]:
            self.warnings.append(exception)
        else:
            self.errors.append(exception)

        if exception.is_critical:
            log_error(exception, context, logging.CRITICAL)

    def increment_processed(self):
        """Incrementa contador de procesados."""
        self.total_processed += 1

    def get_summary(self) -> Dict[str, Any]:
        """
        Obtiene resumen de errores.

        Returns:
            Dict: Resumen de errores
        """
        end_time = datetime.now(timezone.utc)
        duration = (end_time - self.start_time).total_seconds()

        return {
            "total_processed": self.total_processed,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "duration_seconds": duration,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "errors": [error.to_dict() for error in self.errors],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
