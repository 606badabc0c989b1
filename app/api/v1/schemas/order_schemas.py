"""
Modelos Pydantic para los endpoints de pedidos y status updates.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class ClickPostStatusUpdate(BaseModel):
    """Cuerpo de POST /webhooks/clickpost/status/update."""

    order_id: Union[int, str] = Field(..., description="Identificador del pedido")
    waybill: str = Field(..., min_length=1, description="Número de guía")
    status_code: str = Field(..., min_length=1, description="Código ClickPost (OFD, DEL, RTO...)")
    status_description: Optional[str] = Field(None, description="Descripción legible del estado")
    location: Optional[str] = Field(None, description="Ubicación del evento")
    remarks: Optional[str] = Field(None, description="Observaciones")
    suborder_id: Optional[Union[int, str]] = Field(None, description="Subpedido al que aplica")

    @field_validator("waybill", "status_code")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("status_code")
    @classmethod
    def upper_status(cls, value: str) -> str:
        return value.upper()


class UpstreamPushResult(BaseModel):
    """Resultado del envío del estado a ClickPost."""

    attempted: bool
    success: bool
    error: Optional[str] = None
    response: Optional[Dict[str, Any]] = None


class StatusUpdateResponse(BaseModel):
    """Respuesta del status update."""

    success: bool
    database_updated: bool
    sync_result: Dict[str, Any]
    upstream_push: UpstreamPushResult


class OrderIntakeData(BaseModel):
    """Pedido creado por un alta ClickPost."""

    order_id: int
    waybill: str
    status: str


class OrderIntakeResponse(BaseModel):
    """Respuesta de POST /webhooks/clickpost/orders."""

    success: bool
    message: str
    collection: str
    data: OrderIntakeData


class BatchSummary(BaseModel):
    """Contadores de un lote de webhooks."""

    total_processed: int = 0
    inserted: int = 0
    updated: int = 0
    no_change: int = 0
    failed: int = 0


class BatchResponse(BaseModel):
    """Respuesta de un lote de webhooks o de un pull."""

    success: bool
    message: str
    collection: str
    summary: BatchSummary
    details: List[Dict[str, Any]] = Field(default_factory=list)


class Pagination(BaseModel):
    """Metadatos de paginación."""

    current_page: int
    total_pages: int
    total_orders: int
    orders_per_page: int


class OrderListResponse(BaseModel):
    """Página de pedidos de una colección."""

    success: bool = True
    collection: str
    orders: List[Dict[str, Any]]
    pagination: Pagination


class OrderStatsResponse(BaseModel):
    """Totales por estado de una colección."""

    success: bool = True
    collection: str
    total_orders: int
    today_orders: int
    status_breakdown: Dict[str, int]
    generated_at: str


class DateRange(BaseModel):
    """Límites aplicados a created_at (ISO 8601)."""

    start_date: str
    end_date: str


class OrderDateRangeResponse(BaseModel):
    """Pedidos creados dentro de un rango de fechas."""

    success: bool = True
    collection: str
    orders: List[Dict[str, Any]]
    count: int
    date_range: DateRange
