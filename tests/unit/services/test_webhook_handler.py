"""Tests unitarios para el procesamiento de lotes de webhooks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.domain.models import SyncAction, SyncResult
from app.services.webhook_handler import (
    WebhookBatchProcessor,
    get_webhook_metrics,
    validate_webhook_token,
)
from app.services.webhooks.normalizers import (
    NormalizedEntry,
    normalize_clickpost_shipments,
    normalize_easyecom_orders,
)
from app.utils.error_handler import (
    LockAcquisitionError,
    MalformedStateException,
    StorageUnavailableException,
    WebhookAuthenticationException,
)


def _request(headers):
    request = MagicMock()
    request.headers = {key.lower(): value for key, value in headers.items()}
    return request


class TestWebhookBatchProcessor:
    """Tests para WebhookBatchProcessor."""

    @pytest.mark.asyncio
    async def test_processes_batch_against_real_synchronizer(self, synchronizer, store):
        """Debe insertar, actualizar y reportar no_change por entrada."""
        processor = WebhookBatchProcessor(synchronizer, "test_orders")
        await synchronizer.sync(2, {"order_status": "Created"}, "seed")
        await synchronizer.sync(3, {"order_status": "Created"}, "seed")

        entries = normalize_easyecom_orders(
            [
                {"order_id": 1, "order_status": "Created"},
                {"order_id": 2, "order_status": "Shipped"},
                {"order_id": 3, "order_status": "Created"},
            ]
        )
        result = await processor.process_batch(entries, "easyecom-webhook")

        assert result["success"] is True
        assert result["collection"] == "test_orders"
        assert result["summary"] == {"total_processed": 3, "inserted": 1, "updated": 1, "no_change": 1, "failed": 0}
        assert [detail["action"] for detail in result["details"]] == ["inserted", "updated", "no_change"]
        assert result["message"] == "Processed 3 entries, 0 failed"

    @pytest.mark.asyncio
    async def test_invalid_entries_do_not_stop_the_batch(self, synchronizer, store):
        """Debe reportar la entrada inválida y seguir con las demás."""
        processor = WebhookBatchProcessor(synchronizer, "test_orders")
        entries = normalize_easyecom_orders(
            [
                {"order_id": "not-a-number", "order_status": "Created"},
                {"order_id": 10, "order_status": "Created"},
                {"order_id": 11},
            ]
        )

        result = await processor.process_batch(entries, "easyecom-webhook")

        assert result["success"] is False
        assert result["summary"]["failed"] == 2
        assert result["summary"]["inserted"] == 1
        assert result["details"][0] == {
            "order_id": "not-a-number",
            "success": False,
            "error": entries[0].error,
        }
        # Creación sin estado: fallo de esa orden
        assert result["details"][2]["error_code"] == "MALFORMED_ORDER_STATE"
        assert await store.find_one(10) is not None

    @pytest.mark.asyncio
    async def test_duplicate_order_intake_is_per_entry(self, synchronizer, store):
        """Debe crear el alta nueva y reportar 409 por entrada para la repetida."""
        processor = WebhookBatchProcessor(synchronizer, "test_orders")
        intake = {
            "order_id": 9001,
            "pickup_info": {"name": "WH", "phone": "1", "address": "Plot 4"},
            "drop_info": {"name": "Asha", "phone": "2", "address": "MG Road"},
            "shipment_details": {"items": [{"sku": "SKU-1"}]},
        }

        result = await processor.process_batch(normalize_clickpost_shipments([intake, intake]), "clickpost-webhook")

        assert result["summary"]["inserted"] == 1
        assert result["summary"]["failed"] == 1
        assert result["details"][1]["error_code"] == "ORDER_ALREADY_EXISTS"
        assert (await store.find_one(9001)).document["order_status"] == "Pending"

    @pytest.mark.asyncio
    async def test_lock_failure_is_per_entry(self):
        """Debe tratar LockAcquisitionError como fallo de una sola orden."""
        synchronizer = MagicMock()
        synchronizer.sync = AsyncMock(
            side_effect=[
                LockAcquisitionError("busy", lock_key="order:test:1"),
                SyncResult(order_id=2, action=SyncAction.INSERTED),
            ]
        )
        processor = WebhookBatchProcessor(synchronizer, "test_orders")

        result = await processor.process_batch(
            [NormalizedEntry(raw_id=1, order_id=1), NormalizedEntry(raw_id=2, order_id=2)], "clickpost-webhook"
        )

        assert result["summary"]["failed"] == 1
        assert result["summary"]["inserted"] == 1
        assert result["details"][0]["error_code"] == "LOCK_NOT_ACQUIRED"

    @pytest.mark.asyncio
    async def test_storage_failure_aborts_the_batch(self):
        """Debe propagar StorageUnavailableException para que el emisor reintente."""
        synchronizer = MagicMock()
        synchronizer.sync = AsyncMock(side_effect=StorageUnavailableException("db down", backend="memory"))
        processor = WebhookBatchProcessor(synchronizer, "test_orders")

        with pytest.raises(StorageUnavailableException):
            await processor.process_batch([NormalizedEntry(raw_id=1, order_id=1)], "easyecom-webhook")

    @pytest.mark.asyncio
    async def test_entries_are_processed_in_order(self):
        """Debe llamar a sync una vez por entrada y en orden."""
        synchronizer = MagicMock()
        synchronizer.sync = AsyncMock(
            side_effect=lambda order_id, *args: SyncResult(order_id=order_id, action=SyncAction.NO_CHANGE)
        )
        processor = WebhookBatchProcessor(synchronizer, "test_orders")
        entries = [NormalizedEntry(raw_id=i, order_id=i, desired_state={"order_status": "A"}) for i in (3, 1, 2)]

        await processor.process_batch(entries, "easyecom-pull")

        assert [call.args[0] for call in synchronizer.sync.await_args_list] == [3, 1, 2]
        assert all(call.args[2] == "easyecom-pull" for call in synchronizer.sync.await_args_list)

    @pytest.mark.asyncio
    async def test_metrics_are_accumulated(self, synchronizer):
        """Debe acumular contadores por acción y por origen."""
        processor = WebhookBatchProcessor(synchronizer, "test_orders")

        await processor.process_batch(normalize_easyecom_orders([{"order_id": 1, "order_status": "A"}]), "src-a")
        await processor.process_batch(normalize_easyecom_orders([{"order_id": "bad"}]), "src-b")

        metrics = get_webhook_metrics()
        assert metrics["batches"] == 2
        assert metrics["entries"] == 2
        assert metrics["inserted"] == 1
        assert metrics["failed"] == 1
        assert metrics["by_source"] == {"src-a": 1, "src-b": 1}

    @pytest.mark.asyncio
    async def test_malformed_failure_detail(self):
        """Debe incluir mensaje y código del fallo en el detalle."""
        synchronizer = MagicMock()
        synchronizer.sync = AsyncMock(side_effect=MalformedStateException("bad items", order_id=5))
        processor = WebhookBatchProcessor(synchronizer, "test_orders")

        result = await processor.process_batch([NormalizedEntry(raw_id="5", order_id=5)], "easyecom-webhook")

        assert result["details"] == [
            {"order_id": 5, "success": False, "error": "bad items", "error_code": "MALFORMED_ORDER_STATE"}
        ]


class TestValidateWebhookToken:
    """Tests para la validación del token de webhooks."""

    def test_api_key_header(self):
        """Debe aceptar x-api-key correcto."""
        validate_webhook_token(_request({"x-api-key": "secret"}), "secret", "easyecom")

    def test_bearer_header(self):
        """Debe aceptar Authorization: Bearer."""
        validate_webhook_token(_request({"Authorization": "Bearer secret"}), "secret", "clickpost")

    def test_missing_token(self):
        """Debe rechazar requests sin token."""
        with pytest.raises(WebhookAuthenticationException) as exc_info:
            validate_webhook_token(_request({}), "secret", "easyecom")

        assert exc_info.value.status_code == 401

    def test_wrong_token(self):
        """Debe rechazar un token incorrecto."""
        with pytest.raises(WebhookAuthenticationException):
            validate_webhook_token(_request({"x-api-key": "guess"}), "secret", "easyecom")

    def test_basic_scheme_is_not_a_token(self):
        """Debe ignorar esquemas distintos de Bearer."""
        with pytest.raises(WebhookAuthenticationException):
            validate_webhook_token(_request({"Authorization": "Basic secret"}), "secret", "clickpost")

    def test_no_token_configured_skips_check(self):
        """Debe dejar pasar si la plataforma no tiene token configurado."""
        validate_webhook_token(_request({}), None, "easyecom")
