"""
Normalización de payloads de webhooks.

Cada plataforma entrega formas distintas (array, objeto envolvente,
arrays anidados, un único objeto). Aquí se reducen todas a una lista de
NormalizedEntry con la forma canónica que consume OrderSynchronizer:

    desired_state = {"order_status": ..., "order_items": [{"suborder_id": ..., "item_status": ...}], ...}

Un payload con forma no reconocida se rechaza entero (ValidationException,
400). Una entrada con identificador no resoluble se marca con ``error`` y
no llega al sincronizador.
"""

import copy
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.domain.models import SyncOptions
from app.domain.models.order_document import ITEM_STATUS, ORDER_ID, ORDER_STATUS, SUB_ITEMS, SUBORDER_ID, TRACKING_DATA
from app.utils.error_handler import ErrorCode, ValidationException
from app.utils.id_utils import try_parse_order_id

logger = logging.getLogger(__name__)

# === SOURCE TAGS ===
SOURCE_EASYECOM_WEBHOOK = "easyecom-webhook"
SOURCE_EASYECOM_PULL = "easyecom-pull"
SOURCE_EASYECOM_CREDIT_NOTE = "easyecom-credit-note"
SOURCE_CLICKPOST_WEBHOOK = "clickpost-webhook"
SOURCE_CLICKPOST_STATUS_UPDATE = "clickpost-status-update"
SOURCE_CLICKPOST_ORDER_INTAKE = "clickpost-order-intake"

EASYECOM_ORDER_KEYS = ("orders",)
CREDIT_NOTE_KEYS = ("credit_notes", "creditNotes")
CLICKPOST_SHIPMENT_KEYS = ("shipments", "orders")


@dataclass
class NormalizedEntry:
    """
    Una entrada de lote lista para sincronizar.

    Attributes:
        raw_id: Identificador tal como llegó
        order_id: Identificador resuelto (None si no se pudo)
        desired_state: Pedido parcial canónico
        options: extra_set / extra_push
        error: Motivo por el que la entrada no se sincroniza
        waybill: Guía asociada (ClickPost)
    """

    raw_id: Any
    order_id: Optional[int]
    desired_state: Dict[str, Any] = field(default_factory=dict)
    options: SyncOptions = field(default_factory=SyncOptions)
    error: Optional[str] = None
    waybill: Optional[str] = None

    @classmethod
    def invalid(cls, raw_id: Any, reason: str) -> "NormalizedEntry":
        return cls(raw_id=raw_id, order_id=None, error=reason)


def _payload_error(message: str, payload: Any) -> ValidationException:
    return ValidationException(
        message=message,
        field="body",
        invalid_value=type(payload).__name__,
        expected_format="array of objects or an object wrapping one",
        error_code=ErrorCode.INVALID_WEBHOOK_PAYLOAD,
        status_code=400,
    )


def _flatten(items: Iterable[Any]) -> List[Any]:
    flat: List[Any] = []
    for item in items:
        if isinstance(item, list):
            flat.extend(_flatten(item))
        else:
            flat.append(item)
    return flat


def extract_entries(payload: Any, wrapper_keys: Tuple[str, ...]) -> List[Dict[str, Any]]:
    """
    Extrae la lista de objetos de un payload polimórfico.

    Acepta:
        - un array (se aplanan arrays anidados)
        - {"<key>": [...]} para cualquier key de ``wrapper_keys``
        - {"data": {"<key>": [...]}} o {"data": [...]}
        - un único objeto con order_id

    Raises:
        ValidationException: Forma no reconocida o entradas que no son objetos
    """
    entries: Any = None

    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict):
        containers = [payload]
        if isinstance(payload.get("data"), dict):
            containers.append(payload["data"])
        elif isinstance(payload.get("data"), list):
            entries = payload["data"]

        for container in containers:
            if entries is not None:
                break
            for key in wrapper_keys:
                if key in container:
                    entries = container[key]
                    break

        if entries is None and ORDER_ID in payload:
            entries = [payload]

    if not isinstance(entries, list):
        raise _payload_error(f"Unrecognised payload shape; expected a list or one of {list(wrapper_keys)}", payload)

    entries = _flatten(entries)
    if not all(isinstance(entry, dict) for entry in entries):
        raise _payload_error("Every payload entry must be an object", payload)

    return entries


def _resolve(raw: Dict[str, Any], *id_fields: str) -> Tuple[Any, Optional[int]]:
    raw_id = next((raw[name] for name in id_fields if raw.get(name) not in (None, "")), None)
    return raw_id, try_parse_order_id(raw_id)


# === EASYECOM ===


def _easyecom_suborder(raw: Dict[str, Any]) -> Dict[str, Any]:
    """suborder_num / order_status (EasyEcom) -> suborder_id / item_status."""
    suborder = copy.deepcopy(raw)
    if suborder.get(SUBORDER_ID) is None and suborder.get("suborder_num") is not None:
        suborder[SUBORDER_ID] = suborder["suborder_num"]
    if ITEM_STATUS not in suborder and ORDER_STATUS in suborder:
        suborder[ITEM_STATUS] = suborder.pop(ORDER_STATUS)
    return suborder


def normalize_easyecom_order(raw: Dict[str, Any]) -> NormalizedEntry:
    """
    Normaliza un pedido EasyEcom (webhook o pull).

    Todos los campos de nivel superior se conservan; ``suborders`` pasa a
    ``order_items`` con identificador y estado canónicos.
    """
    raw_id, order_id = _resolve(raw, ORDER_ID, "orderId")
    if order_id is None:
        return NormalizedEntry.invalid(raw_id, f"Invalid or missing order_id: {raw_id!r}")

    desired = {key: copy.deepcopy(value) for key, value in raw.items() if key not in ("suborders", SUB_ITEMS)}
    desired[ORDER_ID] = order_id

    items = raw.get("suborders", raw.get(SUB_ITEMS))
    if isinstance(items, list):
        desired[SUB_ITEMS] = [_easyecom_suborder(item) if isinstance(item, dict) else item for item in items]
    elif items is not None:
        desired[SUB_ITEMS] = items

    return NormalizedEntry(raw_id=raw_id, order_id=order_id, desired_state=desired)


def normalize_easyecom_orders(payload: Any) -> List[NormalizedEntry]:
    return [normalize_easyecom_order(raw) for raw in extract_entries(payload, EASYECOM_ORDER_KEYS)]


def normalize_credit_note(raw: Dict[str, Any]) -> NormalizedEntry:
    """
    Una nota de crédito se agrega a ``returns`` del pedido; solo cambia el
    estado si la nota trae uno.
    """
    raw_id, order_id = _resolve(raw, ORDER_ID, "reference_order_id", "orderId")
    if order_id is None:
        return NormalizedEntry.invalid(raw_id, f"Invalid or missing order_id: {raw_id!r}")

    desired: Dict[str, Any] = {}
    if raw.get(ORDER_STATUS) is not None:
        desired[ORDER_STATUS] = raw[ORDER_STATUS]

    return NormalizedEntry(
        raw_id=raw_id,
        order_id=order_id,
        desired_state=desired,
        options=SyncOptions(extra_push={"returns": copy.deepcopy(raw)}),
    )


def normalize_credit_notes(payload: Any) -> List[NormalizedEntry]:
    return [normalize_credit_note(raw) for raw in extract_entries(payload, CREDIT_NOTE_KEYS)]


# === CLICKPOST ===


def normalize_status_code(value: Any) -> Any:
    """Códigos ClickPost en mayúsculas; otros tipos se dejan como llegan."""
    if isinstance(value, str):
        return value.strip().upper() or None
    return value


def build_tracking_data(raw: Dict[str, Any], status_code: Any) -> Dict[str, Any]:
    tracking = {
        "waybill": raw.get("waybill"),
        "status_code": status_code,
        "status_description": raw.get("clickpost_status_description") or raw.get("status_description"),
        "location": raw.get("location"),
        "remarks": raw.get("remarks", raw.get("remark")),
        "timestamp": raw.get("timestamp"),
        "courier": raw.get("cp_name") or raw.get("courier_partner"),
    }
    return {key: value for key, value in tracking.items() if value is not None}


# === CLICKPOST ORDER INTAKE ===

INTAKE_STATUS = "Pending"
INTAKE_BLOCKS = ("pickup_info", "drop_info", "shipment_details")
CONTACT_FIELDS = ("name", "phone", "address")
CONTACT_DEFAULTS = {"pincode": "", "city": "", "state": ""}
SHIPMENT_DEFAULTS = {"weight": 0, "order_type": "standard", "cod_amount": 0, "declared_value": 0}
STATUS_FIELDS = ("status_code", "clickpost_status_code", "status", ORDER_STATUS)

_waybill_sequence = itertools.count(1)


def generate_waybill() -> str:
    """Guía local ``CPAWB<epoch ms><secuencia>`` para altas que no traen una."""
    return f"CPAWB{int(time.time() * 1000)}{next(_waybill_sequence)}"


def is_order_intake(raw: Dict[str, Any]) -> bool:
    """Un alta trae bloques de recogida/entrega/envío y ningún código de estado."""
    has_blocks = any(name in raw for name in INTAKE_BLOCKS)
    has_status = any(raw.get(name) is not None for name in STATUS_FIELDS)
    return has_blocks and not has_status


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _intake_error(message: str, missing: List[str]) -> ValidationException:
    return ValidationException(
        message=message,
        field=missing[0] if missing else "body",
        expected_format="order_id, pickup_info, drop_info, shipment_details.items",
        error_code=ErrorCode.INVALID_WEBHOOK_PAYLOAD,
        status_code=400,
        details={"missing_fields": missing},
    )


def validate_order_intake(raw: Any) -> None:
    """
    Valida un alta de pedido ClickPost.

    Raises:
        ValidationException: (400) con ``missing_fields`` listando lo que falta
    """
    if not isinstance(raw, dict):
        raise _intake_error("Order payload must be an object", ["body"])

    missing = [name for name in (ORDER_ID,) + INTAKE_BLOCKS if _blank(raw.get(name))]
    if missing:
        raise _intake_error(f"Missing required fields: {', '.join(missing)}", missing)

    if try_parse_order_id(raw[ORDER_ID]) is None:
        raise _intake_error(f"Invalid order_id: {raw[ORDER_ID]!r}", [ORDER_ID])

    for block in ("pickup_info", "drop_info"):
        contact = raw[block]
        if not isinstance(contact, dict):
            raise _intake_error(f"{block} must be an object", [block])
        missing = [f"{block}.{name}" for name in CONTACT_FIELDS if _blank(contact.get(name))]
        if missing:
            raise _intake_error(f"Missing required fields: {', '.join(missing)}", missing)

    details = raw["shipment_details"]
    if not isinstance(details, dict) or not isinstance(details.get("items"), list):
        raise _intake_error("shipment_details.items must be an array", ["shipment_details.items"])


def _clean_contact(contact: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {**CONTACT_DEFAULTS, **copy.deepcopy(contact)}
    for name in CONTACT_FIELDS:
        cleaned[name] = str(cleaned[name]).strip()
    return cleaned


def build_order_intake(raw: Dict[str, Any], webhook_metadata: Optional[Dict[str, Any]] = None) -> NormalizedEntry:
    """
    Construye la entrada de alta a partir de un payload ya validado.

    El pedido nace en ``Pending`` con la guía del payload o una generada,
    y solo se inserta si no existe (``create_only``).
    """
    order_id = try_parse_order_id(raw[ORDER_ID])
    waybill = str(raw["waybill"]).strip() if not _blank(raw.get("waybill")) else generate_waybill()

    desired = {key: copy.deepcopy(value) for key, value in raw.items() if key not in STATUS_FIELDS}
    desired.update(
        {
            ORDER_ID: order_id,
            ORDER_STATUS: INTAKE_STATUS,
            "waybill": waybill,
            "pickup_info": _clean_contact(raw["pickup_info"]),
            "drop_info": _clean_contact(raw["drop_info"]),
            "shipment_details": {**SHIPMENT_DEFAULTS, **copy.deepcopy(raw["shipment_details"])},
            "source": "webhook",
        }
    )

    extra_set: Dict[str, Any] = {}
    if webhook_metadata:
        extra_set["webhook_metadata"] = dict(webhook_metadata)

    return NormalizedEntry(
        raw_id=raw[ORDER_ID],
        order_id=order_id,
        desired_state=desired,
        options=SyncOptions(extra_set=extra_set, create_only=True),
        waybill=waybill,
    )


def normalize_clickpost_order_intake(raw: Dict[str, Any]) -> NormalizedEntry:
    try:
        validate_order_intake(raw)
    except ValidationException as exc:
        return NormalizedEntry.invalid(raw.get(ORDER_ID), exc.message)
    return build_order_intake(raw)


def normalize_clickpost_shipment(raw: Dict[str, Any]) -> NormalizedEntry:
    """
    Normaliza un evento de tracking de ClickPost.

    Sin ``suborder_id`` el estado aplica al pedido y el tracking va a
    ``tracking_data`` del pedido; con ``suborder_id`` ambos van al subpedido.
    Un alta de pedido (bloques pickup_info / drop_info / shipment_details
    sin estado) se deriva a ``normalize_clickpost_order_intake``.
    """
    if is_order_intake(raw):
        return normalize_clickpost_order_intake(raw)

    raw_id, order_id = _resolve(raw, ORDER_ID, "reference_number")
    if order_id is None and isinstance(raw.get("additional"), dict):
        raw_id, order_id = _resolve(raw["additional"], ORDER_ID, "reference_number")
    if order_id is None:
        return NormalizedEntry.invalid(raw_id, f"Invalid or missing order_id: {raw_id!r}")

    status_code = normalize_status_code(
        next(
            (raw[name] for name in ("status_code", "clickpost_status_code", "status") if raw.get(name) is not None),
            None,
        )
    )
    tracking = build_tracking_data(raw, status_code)
    waybill = raw.get("waybill")

    desired: Dict[str, Any] = {}
    extra_set: Dict[str, Any] = {}

    if raw.get(SUBORDER_ID) is not None:
        suborder: Dict[str, Any] = {SUBORDER_ID: raw[SUBORDER_ID], TRACKING_DATA: tracking}
        if status_code is not None:
            suborder[ITEM_STATUS] = status_code
        desired[SUB_ITEMS] = [suborder]
    else:
        if status_code is not None:
            desired[ORDER_STATUS] = status_code
        extra_set[TRACKING_DATA] = tracking

    if waybill:
        extra_set["waybill"] = waybill

    return NormalizedEntry(
        raw_id=raw_id,
        order_id=order_id,
        desired_state=desired,
        options=SyncOptions(extra_set=extra_set),
        waybill=waybill,
    )


def normalize_clickpost_shipments(payload: Any) -> List[NormalizedEntry]:
    return [normalize_clickpost_shipment(raw) for raw in extract_entries(payload, CLICKPOST_SHIPMENT_KEYS)]
