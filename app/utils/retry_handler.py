"""
Reintentos con backoff exponencial y circuit breaker para APIs de socios.

Se usa alrededor de las llamadas HTTP a EasyEcom y ClickPost. La
sincronización de pedidos no se reintenta aquí: sus conflictos se
resuelven dentro del propio sincronizador.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from app.core.config import get_settings
from app.utils.error_handler import AppException, PartnerAPIException

settings = get_settings()
logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Estados del circuit breaker."""

    CLOSED = "closed"  # Funcionamiento normal
    OPEN = "open"  # Circuito abierto, fallar rápido
    HALF_OPEN = "half_open"  # Probando si se recuperó


class RetryPolicy:
    """
    Política de reintentos configurable.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retry_on: Optional[List[Type[Exception]]] = None,
    ):
        """
        Args:
            max_attempts: Número máximo de intentos
            base_delay: Delay base en segundos
            max_delay: Delay máximo en segundos
            exponential_base: Base para backoff exponencial
            jitter: Si agregar jitter aleatorio (±10%)
            retry_on: Excepciones no-AppException en las que reintentar
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on = retry_on or [asyncio.TimeoutError, ConnectionError]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """
        Determina si debe reintentar la operación.

        Las AppException deciden por sí mismas con ``is_retryable``.
        """
        if attempt >= self.max_attempts:
            return False

        if isinstance(exception, AppException):
            return exception.is_retryable

        return any(isinstance(exception, retry_exc) for retry_exc in self.retry_on)

    def calculate_delay(self, attempt: int) -> float:
        """
        Calcula el delay antes del siguiente intento.

        Args:
            attempt: Número de intento (1-based)

        Returns:
            float: Segundos a esperar
        """
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))

        if self.jitter:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return max(min(delay, self.max_delay), 0)


class CircuitBreaker:
    """
    Corta las llamadas a un socio tras fallas consecutivas.
    """

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None

    def can_execute(self) -> bool:
        if self.state != CircuitState.OPEN:
            return True

        now = datetime.now(timezone.utc)
        if self.last_failure_time and now - self.last_failure_time >= timedelta(seconds=self.reset_timeout):
            self.state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker moving to HALF_OPEN state")
            return True
        return False

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker CLOSED - service recovered")
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    def record_failure(self):
        self.last_failure_time = datetime.now(timezone.utc)
        self.failure_count += 1

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"⚠️ Circuit breaker OPEN - {self.failure_count} consecutive failures")
            self.state = CircuitState.OPEN

    def get_state_info(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "failure_threshold": self.failure_threshold,
        }


class RetryHandler:
    """
    Ejecuta corrutinas con reintentos y circuit breaker.
    """

    def __init__(
        self,
        name: str,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self.circuit_breaker = circuit_breaker
        self.metrics = {
            "total_attempts": 0,
            "total_successes": 0,
            "total_failures": 0,
            "total_retries": 0,
        }

    async def execute(
        self, func: Callable[..., Awaitable[Any]], *args, context: Optional[Dict[str, Any]] = None, **kwargs
    ) -> Any:
        """
        Ejecuta una corrutina con reintentos.

        Args:
            func: Función asíncrona a ejecutar
            *args: Argumentos posicionales
            context: Contexto adicional para logging
            **kwargs: Argumentos con nombre

        Returns:
            Any: Resultado de la función

        Raises:
            Exception: La última excepción si todos los reintentos fallan
        """
        context = context or {}
        start_time = time.time()

        if self.circuit_breaker and not self.circuit_breaker.can_execute():
            raise PartnerAPIException(
                message=f"Circuit breaker is OPEN for {self.name}",
                platform=self.name,
                details={"circuit_state": self.circuit_breaker.state.value, "context": context},
            )

        attempt = 0
        while True:
            attempt += 1
            self.metrics["total_attempts"] += 1

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                self.metrics["total_failures"] += 1
                if self.circuit_breaker:
                    self.circuit_breaker.record_failure()

                if not self.retry_policy.should_retry(e, attempt):
                    logger.warning(
                        f"Not retrying {self.name} after attempt {attempt} - {type(e).__name__}: {e}",
                        extra={"context": context},
                    )
                    raise

                delay = self.retry_policy.calculate_delay(attempt)
                self.metrics["total_retries"] += 1
                logger.info(
                    f"🔄 Retrying {self.name} in {delay:.2f}s - "
                    f"Attempt {attempt + 1}/{self.retry_policy.max_attempts}",
                    extra={"context": context},
                )
                await asyncio.sleep(delay)
                continue

            self.metrics["total_successes"] += 1
            if self.circuit_breaker:
                self.circuit_breaker.record_success()
            logger.debug(f"Executed {self.name} in {time.time() - start_time:.2f}s (attempt {attempt})")
            return result

    def get_metrics(self) -> Dict[str, Any]:
        total = self.metrics["total_attempts"]
        success_rate = (self.metrics["total_successes"] / total * 100) if total > 0 else 0

        metrics = {**self.metrics, "success_rate": round(success_rate, 2), "handler_name": self.name}
        if self.circuit_breaker:
            metrics["circuit_breaker"] = self.circuit_breaker.get_state_info()
        return metrics


# === FACTORY FUNCTIONS ===


def create_partner_retry_handler(platform: str) -> RetryHandler:
    """
    Crea un handler para la API de un socio con la configuración global.

    Args:
        platform: easyecom o clickpost

    Returns:
        RetryHandler: Handler configurado
    """
    retry_policy = RetryPolicy(
        max_attempts=settings.MAX_RETRIES,
        base_delay=settings.RETRY_DELAY_SECONDS,
        exponential_base=settings.RETRY_BACKOFF_FACTOR,
    )
    return RetryHandler(name=platform, retry_policy=retry_policy, circuit_breaker=CircuitBreaker())


_handlers: Dict[str, RetryHandler] = {}


def get_handler(platform: str) -> RetryHandler:
    """
    Obtiene (o crea) el handler compartido de un socio.
    """
    if platform not in _handlers:
        _handlers[platform] = create_partner_retry_handler(platform)
    return _handlers[platform]


def get_all_metrics() -> Dict[str, Any]:
    """Métricas de todos los handlers creados."""
    return {name: handler.get_metrics() for name, handler in _handlers.items()}
