"""
Fixtures compartidos.

Las variables de entorno se fijan antes de importar ``app``: la
configuración se cachea en el primer ``get_settings()``.
"""

import os
from datetime import UTC, datetime, timedelta

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ORDER_STORE_BACKEND", "memory")
os.environ.setdefault("CLICKPOST_DEV_ENABLED", "true")
os.environ.setdefault("ORDER_LOCK_WAIT_SECONDS", "2")
os.environ.setdefault("EASYECOM_WEBHOOK_TOKEN", "test-easyecom-token")
os.environ.setdefault("CLICKPOST_WEBHOOK_TOKEN", "test-clickpost-token")
os.environ.setdefault("ENABLE_STATUS_PUSH", "true")
os.environ["REDIS_URL"] = ""

import pytest  # noqa: E402

from app.db.order_store import InMemoryOrderStore  # noqa: E402
from app.services.orders.synchronizer import OrderSynchronizer  # noqa: E402
from app.services.webhook_handler import reset_webhook_metrics  # noqa: E402


class StepClock:
    """Reloj determinista: cada llamada avanza ``step``."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        self.step = step
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        moment = self.current
        self.current = self.current + self.step
        return moment


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store():
    return InMemoryOrderStore(name="test_orders")


@pytest.fixture
def synchronizer(store, clock):
    return OrderSynchronizer(store, clock=clock)


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_webhook_metrics()
    yield
    reset_webhook_metrics()
