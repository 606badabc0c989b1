"""Tests unitarios para la normalización de payloads de webhooks."""

import pytest

from app.services.webhooks.normalizers import (
    CLICKPOST_SHIPMENT_KEYS,
    CREDIT_NOTE_KEYS,
    EASYECOM_ORDER_KEYS,
    build_order_intake,
    build_tracking_data,
    extract_entries,
    generate_waybill,
    is_order_intake,
    normalize_clickpost_order_intake,
    normalize_clickpost_shipment,
    normalize_clickpost_shipments,
    normalize_credit_note,
    normalize_credit_notes,
    normalize_easyecom_order,
    normalize_easyecom_orders,
    normalize_status_code,
    validate_order_intake,
)
from app.utils.error_handler import ErrorCode, ValidationException


class TestExtractEntries:
    """Tests para la extracción de entradas de payloads polimórficos."""

    def test_plain_array(self):
        """Debe aceptar un array de objetos."""
        assert extract_entries([{"order_id": 1}, {"order_id": 2}], EASYECOM_ORDER_KEYS) == [
            {"order_id": 1},
            {"order_id": 2},
        ]

    def test_wrapped_object(self):
        """Debe aceptar {"orders": [...]}."""
        assert extract_entries({"orders": [{"order_id": 1}]}, EASYECOM_ORDER_KEYS) == [{"order_id": 1}]

    def test_data_wrapper(self):
        """Debe aceptar {"data": {"orders": [...]}} y {"data": [...]}."""
        assert extract_entries({"data": {"orders": [{"order_id": 1}]}}, EASYECOM_ORDER_KEYS) == [{"order_id": 1}]
        assert extract_entries({"data": [{"order_id": 2}]}, EASYECOM_ORDER_KEYS) == [{"order_id": 2}]

    def test_nested_arrays_are_flattened(self):
        """Debe aplanar arrays anidados de notas de crédito."""
        payload = {"credit_notes": [[{"order_id": 1}], [{"order_id": 2}, [{"order_id": 3}]]]}

        entries = extract_entries(payload, CREDIT_NOTE_KEYS)

        assert [entry["order_id"] for entry in entries] == [1, 2, 3]

    def test_camel_case_credit_note_key(self):
        """Debe reconocer creditNotes."""
        assert extract_entries({"creditNotes": [{"order_id": 9}]}, CREDIT_NOTE_KEYS) == [{"order_id": 9}]

    def test_single_object(self):
        """Debe envolver un único pedido con order_id."""
        assert extract_entries({"order_id": 5, "order_status": "Created"}, EASYECOM_ORDER_KEYS) == [
            {"order_id": 5, "order_status": "Created"}
        ]

    def test_empty_array(self):
        """Debe aceptar un array vacío."""
        assert extract_entries([], CLICKPOST_SHIPMENT_KEYS) == []

    @pytest.mark.parametrize("payload", ["orders", 42, None, {"unexpected": []}, {"orders": "nope"}])
    def test_unrecognised_shapes_raise(self, payload):
        """Debe rechazar formas no reconocidas con 400."""
        with pytest.raises(ValidationException) as exc_info:
            extract_entries(payload, EASYECOM_ORDER_KEYS)

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == ErrorCode.INVALID_WEBHOOK_PAYLOAD

    def test_non_object_entries_raise(self):
        """Debe rechazar entradas que no son objetos."""
        with pytest.raises(ValidationException):
            extract_entries([{"order_id": 1}, "oops"], EASYECOM_ORDER_KEYS)


class TestEasyEcomNormalization:
    """Tests para pedidos EasyEcom."""

    def test_suborders_are_mapped(self):
        """Debe convertir suborders/suborder_num/order_status a la forma canónica."""
        raw = {
            "order_id": "555",
            "order_status": "Confirmed",
            "marketplace": "Flipkart",
            "suborders": [{"suborder_num": "555-1", "order_status": "Packed", "sku": "SKU-1"}],
        }

        entry = normalize_easyecom_order(raw)

        assert entry.order_id == 555
        assert entry.raw_id == "555"
        assert entry.error is None
        assert entry.desired_state["order_id"] == 555
        assert entry.desired_state["marketplace"] == "Flipkart"
        assert "suborders" not in entry.desired_state
        assert entry.desired_state["order_items"] == [
            {"suborder_num": "555-1", "suborder_id": "555-1", "item_status": "Packed", "sku": "SKU-1"}
        ]

    def test_raw_payload_is_not_mutated(self):
        """Debe trabajar sobre copias del payload."""
        raw = {"order_id": 1, "order_status": "A", "suborders": [{"suborder_num": 1, "order_status": "A"}]}

        normalize_easyecom_order(raw)

        assert raw["suborders"][0] == {"suborder_num": 1, "order_status": "A"}

    def test_camel_case_order_id(self):
        """Debe aceptar orderId."""
        assert normalize_easyecom_order({"orderId": 77, "order_status": "A"}).order_id == 77

    def test_invalid_order_id_marks_entry(self):
        """Debe marcar la entrada con error sin lanzar."""
        entry = normalize_easyecom_order({"order_id": "ABC-1", "order_status": "A"})

        assert entry.order_id is None
        assert entry.raw_id == "ABC-1"
        assert "ABC-1" in entry.error

    def test_batch(self):
        """Debe normalizar cada pedido del lote en orden."""
        entries = normalize_easyecom_orders({"orders": [{"order_id": 1}, {"order_id": "x"}, {"order_id": 3}]})

        assert [entry.order_id for entry in entries] == [1, None, 3]


class TestCreditNoteNormalization:
    """Tests para notas de crédito."""

    def test_credit_note_is_pushed_to_returns(self):
        """Debe agregar la nota completa a returns sin cambiar el estado."""
        raw = {"reference_order_id": "900", "credit_note_id": 12, "amount": 499.0}

        entry = normalize_credit_note(raw)

        assert entry.order_id == 900
        assert entry.desired_state == {}
        assert entry.options.extra_push == {"returns": raw}

    def test_credit_note_with_status(self):
        """Debe incluir order_status si la nota lo trae."""
        entry = normalize_credit_note({"order_id": 901, "order_status": "Returned"})

        assert entry.desired_state == {"order_status": "Returned"}

    def test_nested_credit_notes(self):
        """Debe aceptar el array anidado de notas."""
        entries = normalize_credit_notes([[{"order_id": 1}, {"order_id": 2}]])

        assert [entry.order_id for entry in entries] == [1, 2]


class TestClickPostNormalization:
    """Tests para eventos de tracking de ClickPost."""

    def test_status_code_normalization(self):
        """Debe pasar a mayúsculas y quitar espacios."""
        assert normalize_status_code(" ofd ") == "OFD"
        assert normalize_status_code("   ") is None
        assert normalize_status_code(None) is None
        assert normalize_status_code(5) == 5

    def test_tracking_data_drops_missing_fields(self):
        """Debe omitir campos ausentes del tracking."""
        tracking = build_tracking_data({"waybill": "W1", "remark": "left at door", "cp_name": "Delhivery"}, "DEL")

        assert tracking == {"waybill": "W1", "status_code": "DEL", "remarks": "left at door", "courier": "Delhivery"}

    def test_order_level_event(self):
        """Debe aplicar el estado al pedido y guardar tracking_data con extra_set."""
        entry = normalize_clickpost_shipment(
            {"reference_number": "1200", "waybill": "W1200", "clickpost_status_code": "ofd", "location": "Pune"}
        )

        assert entry.order_id == 1200
        assert entry.waybill == "W1200"
        assert entry.desired_state == {"order_status": "OFD"}
        assert entry.options.extra_set == {
            "tracking_data": {"waybill": "W1200", "status_code": "OFD", "location": "Pune"},
            "waybill": "W1200",
        }

    def test_suborder_level_event(self):
        """Debe aplicar estado y tracking al subpedido."""
        entry = normalize_clickpost_shipment(
            {"order_id": 1201, "suborder_id": "1201-2", "waybill": "W2", "status_code": "DEL"}
        )

        assert entry.desired_state == {
            "order_items": [
                {
                    "suborder_id": "1201-2",
                    "tracking_data": {"waybill": "W2", "status_code": "DEL"},
                    "item_status": "DEL",
                }
            ]
        }
        assert entry.options.extra_set == {"waybill": "W2"}

    def test_order_id_from_additional(self):
        """Debe buscar el pedido en additional si no viene arriba."""
        entry = normalize_clickpost_shipment({"waybill": "W3", "status": "INT", "additional": {"order_id": 1202}})

        assert entry.order_id == 1202

    def test_event_without_status_only_sets_tracking(self):
        """Debe guardar tracking aunque no haya código de estado."""
        entry = normalize_clickpost_shipment({"order_id": 1203, "remarks": "address issue"})

        assert entry.desired_state == {}
        assert entry.options.extra_set == {"tracking_data": {"remarks": "address issue"}}

    def test_missing_order_id(self):
        """Debe marcar la entrada como inválida."""
        entry = normalize_clickpost_shipment({"waybill": "W4", "status_code": "DEL"})

        assert entry.order_id is None
        assert entry.error is not None

    def test_shipments_wrapper(self):
        """Debe aceptar {"shipments": [...]}."""
        entries = normalize_clickpost_shipments({"shipments": [{"order_id": 1, "status_code": "DEL"}]})

        assert len(entries) == 1
        assert entries[0].desired_state == {"order_status": "DEL"}


def _intake_payload(**overrides):
    payload = {
        "order_id": 9001,
        "pickup_info": {"name": " Warehouse ", "phone": "9000000001", "address": "Plot 4, MIDC"},
        "drop_info": {"name": "Asha", "phone": "9000000002", "address": "12 MG Road", "city": "Pune"},
        "shipment_details": {"items": [{"sku": "SKU-1", "quantity": 1}]},
    }
    payload.update(overrides)
    return payload


class TestClickPostOrderIntake:
    """Tests para el alta de pedidos ClickPost."""

    def test_detection(self):
        """Debe distinguir un alta de un evento de tracking."""
        assert is_order_intake(_intake_payload())
        assert not is_order_intake({"order_id": 1, "status_code": "DEL"})
        assert not is_order_intake(_intake_payload(status_code="DEL"))

    def test_generated_waybill(self):
        """Debe generar guías CPAWB distintas en cada llamada."""
        first, second = generate_waybill(), generate_waybill()

        assert first.startswith("CPAWB")
        assert first[5:].isdigit()
        assert first != second

    def test_build_applies_defaults(self):
        """Debe crear el pedido en Pending con contactos limpios y valores por defecto."""
        entry = build_order_intake(_intake_payload(), webhook_metadata={"ip_address": "10.0.0.1"})

        assert entry.order_id == 9001
        assert entry.error is None
        assert entry.waybill.startswith("CPAWB")
        assert entry.desired_state["order_status"] == "Pending"
        assert entry.desired_state["waybill"] == entry.waybill
        assert entry.desired_state["source"] == "webhook"
        assert entry.desired_state["pickup_info"]["name"] == "Warehouse"
        assert entry.desired_state["pickup_info"]["pincode"] == ""
        assert entry.desired_state["drop_info"]["city"] == "Pune"
        assert entry.desired_state["shipment_details"] == {
            "items": [{"sku": "SKU-1", "quantity": 1}],
            "weight": 0,
            "order_type": "standard",
            "cod_amount": 0,
            "declared_value": 0,
        }
        assert entry.options.create_only is True
        assert entry.options.extra_set == {"webhook_metadata": {"ip_address": "10.0.0.1"}}

    def test_payload_waybill_is_kept(self):
        """Debe respetar la guía que trae el payload."""
        entry = build_order_intake(_intake_payload(waybill=" AWB-77 "))

        assert entry.waybill == "AWB-77"

    @pytest.mark.parametrize(
        "payload,missing",
        [
            ({"pickup_info": {}}, ["order_id", "drop_info", "shipment_details"]),
            (_intake_payload(drop_info={"name": "Asha", "phone": " "}), ["drop_info.phone", "drop_info.address"]),
            (_intake_payload(shipment_details={"weight": 2}), ["shipment_details.items"]),
        ],
    )
    def test_missing_fields(self, payload, missing):
        """Debe responder 400 listando los campos que faltan."""
        with pytest.raises(ValidationException) as exc_info:
            validate_order_intake(payload)

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == ErrorCode.INVALID_WEBHOOK_PAYLOAD
        assert exc_info.value.details["missing_fields"] == missing

    def test_invalid_intake_in_batch_marks_entry(self):
        """Debe marcar como inválida un alta incompleta dentro de un lote."""
        entry = normalize_clickpost_order_intake(_intake_payload(drop_info={}))

        assert entry.order_id is None
        assert "drop_info.name" in entry.error

    def test_shipments_batch_routes_intake(self):
        """Debe derivar las altas de /clickpost/shipments y mantener los eventos."""
        entries = normalize_clickpost_shipments([_intake_payload(), {"order_id": 9002, "status_code": "DEL"}])

        assert entries[0].desired_state["order_status"] == "Pending"
        assert entries[0].options.create_only is True
        assert entries[1].desired_state == {"order_status": "DEL"}
        assert entries[1].options.create_only is False
