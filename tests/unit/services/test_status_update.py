"""Tests unitarios para StatusUpdateService (ClickPost)."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.domain.models import SyncAction
from app.services.status_update import StatusUpdateService
from app.utils.error_handler import ErrorCode, MalformedStateException, OrderNotFoundException, PartnerAPIException


def _client_factory(push_status):
    client = MagicMock()
    client.push_status = push_status
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=client), client


class TestStatusUpdateService:
    """Tests para la actualización de estado con envío a ClickPost."""

    @pytest.mark.asyncio
    async def test_updates_locally_and_pushes(self, synchronizer, store):
        """Debe sincronizar el pedido y empujar el estado."""
        await synchronizer.sync(800, {"order_status": "Created"}, "seed")
        factory, client = _client_factory(AsyncMock(return_value={"meta": {"status": 200}}))
        service = StatusUpdateService(synchronizer, client_factory=factory, push_enabled=True)

        result = await service.update_status(800, "W800", " del ", status_description="Delivered", location="Pune")

        assert result["success"] is True
        assert result["sync_result"]["action"] == "updated"
        assert result["database_updated"] is True
        assert result["upstream_push"] == {
            "attempted": True,
            "success": True,
            "error": None,
            "response": {"meta": {"status": 200}},
        }
        client.push_status.assert_awaited_once_with(
            "W800", "DEL", status_description="Delivered", location="Pune", remarks=None
        )

        doc = (await store.find_one(800)).document
        assert doc["order_status"] == "DEL"
        assert doc["status_history"][-1]["source"] == "clickpost-status-update"
        assert doc["waybill"] == "W800"
        assert doc["last_status_update"]["status_code"] == "DEL"
        assert doc["last_status_update"]["location"] == "Pune"

    @pytest.mark.asyncio
    async def test_push_failure_does_not_roll_back(self, synchronizer, store):
        """Debe conservar la actualización local aunque ClickPost falle."""
        await synchronizer.sync(801, {"order_status": "Created"}, "seed")
        failing_push = AsyncMock(side_effect=PartnerAPIException("clickpost HTTP 500: boom", platform="clickpost"))
        factory, _ = _client_factory(failing_push)
        service = StatusUpdateService(synchronizer, client_factory=factory, push_enabled=True)

        result = await service.update_status(801, "W801", "RTO")

        assert result["success"] is True
        assert result["upstream_push"]["attempted"] is True
        assert result["upstream_push"]["success"] is False
        assert "boom" in result["upstream_push"]["error"]
        assert (await store.find_one(801)).document["order_status"] == "RTO"

    @pytest.mark.asyncio
    async def test_push_disabled(self, synchronizer):
        """Debe no llamar a ClickPost si el envío está deshabilitado."""
        await synchronizer.sync(802, {"order_status": "Created"}, "seed")
        factory, client = _client_factory(AsyncMock())
        service = StatusUpdateService(synchronizer, client_factory=factory, push_enabled=False)

        result = await service.update_status(802, "W802", "OFD")

        assert result["upstream_push"] == {"attempted": False, "success": False, "error": None}
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_suborder_update(self, synchronizer, store):
        """Debe cambiar solo el subpedido indicado."""
        await synchronizer.sync(
            803,
            {"order_status": "Created", "order_items": [{"suborder_id": "A"}, {"suborder_id": "B"}]},
            "seed",
        )
        service = StatusUpdateService(synchronizer, push_enabled=False)

        result = await service.update_status(803, "W803", "DEL", suborder_id="B")

        doc = (await store.find_one(803)).document
        assert result["sync_result"]["action"] == SyncAction.UPDATED.value
        assert doc["order_status"] == "Created"
        assert [item["item_status"] for item in doc["order_items"]] == ["Created", "DEL"]

    @pytest.mark.asyncio
    async def test_unknown_order_is_not_found(self, synchronizer, store):
        """Debe responder pedido no encontrado sin escribir ni empujar a ClickPost."""
        factory, _ = _client_factory(AsyncMock())
        service = StatusUpdateService(synchronizer, client_factory=factory, push_enabled=True)

        with pytest.raises(OrderNotFoundException) as exc_info:
            await service.update_status("804", "W804", "PPD")

        assert exc_info.value.status_code == 404
        assert exc_info.value.error_code == ErrorCode.ORDER_NOT_FOUND
        assert await store.find_one(804) is None
        assert store.write_count == 0
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_order_id_skips_push(self, synchronizer):
        """Debe fallar antes de empujar si el pedido es inválido."""
        factory, _ = _client_factory(AsyncMock())
        service = StatusUpdateService(synchronizer, client_factory=factory, push_enabled=True)

        with pytest.raises(MalformedStateException):
            await service.update_status("ORD-X", "W805", "DEL")

        factory.assert_not_called()
