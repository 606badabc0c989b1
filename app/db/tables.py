"""
Esquema SQL del almacén de documentos de pedidos.

Cada fila guarda un documento JSON completo por (colección, order_id).
``revision`` se incrementa en cada reemplazo y condiciona las escrituras
concurrentes; ``order_status`` y ``waybill`` se desnormalizan para filtros,
búsquedas y estadísticas. ``created_at`` toma el del documento cuando lo trae.
"""

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, MetaData, String, Table, UniqueConstraint

metadata = MetaData()

order_documents = Table(
    "order_documents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("collection", String(64), nullable=False),
    Column("order_id", BigInteger, nullable=False),
    Column("order_status", String(128), nullable=True),
    Column("waybill", String(128), nullable=True),
    Column("document", JSON, nullable=False),
    Column("revision", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("collection", "order_id", name="uq_order_documents_collection_order"),
    Index("ix_order_documents_collection_status", "collection", "order_status"),
    Index("ix_order_documents_collection_waybill", "collection", "waybill"),
    Index("ix_order_documents_collection_created", "collection", "created_at"),
)
