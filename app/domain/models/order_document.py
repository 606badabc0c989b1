"""
Order document domain model.

Orders are persisted as free-form documents: the gateway only owns a
handful of fields (status, histories, sub-order identity, timestamps) and
preserves everything else the partners send verbatim. The types in this
module describe the owned part and the outcome of a synchronization.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# Owned field names
ORDER_ID = "order_id"
ORDER_STATUS = "order_status"
STATUS_HISTORY = "status_history"
SUB_ITEMS = "order_items"
SUBORDER_ID = "suborder_id"
ITEM_STATUS = "item_status"
TRACKING_DATA = "tracking_data"
CREATED_AT = "created_at"
LAST_UPDATED = "last_updated"

CREATED_BY_PREFIX = "created-by-"

# Fields the synchronizer computes itself; never taken from a payload
MANAGED_FIELDS = frozenset({STATUS_HISTORY, CREATED_AT, LAST_UPDATED})


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


def format_timestamp(moment: datetime) -> str:
    """Serialize a timestamp the way it is stored inside order documents."""
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp; None when absent or unreadable."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class StatusChange:
    """
    One entry of an append-only status history.

    ``old_status`` is None only for the entry that seeds a newly created
    order or sub-order.
    """

    old_status: Any
    new_status: Any
    timestamp: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "old_status": self.old_status,
            "new_status": self.new_status,
            "timestamp": self.timestamp,
            "source": self.source,
        }


class SyncAction(str, Enum):
    """What a synchronization did to the stored order."""

    INSERTED = "inserted"
    UPDATED = "updated"
    NO_CHANGE = "no_change"


class ChangeType(str, Enum):
    """Kinds of transitions reported in a SyncResult."""

    ORDER_STATUS = "order_status"
    SUBORDER_STATUS = "suborder_status"
    SUBORDER_FIELDS = "suborder_fields"
    EXTRA_SET = "extra_set"
    EXTRA_PUSH = "extra_push"


@dataclass(frozen=True)
class OrderChange:
    """A single transition applied by an update."""

    type: ChangeType
    field: str | None = None
    old_value: Any = None
    new_value: Any = None
    suborder_id: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.suborder_id is not None:
            data["suborder_id"] = self.suborder_id
        if self.field is not None:
            data["field"] = self.field
        if self.type in (ChangeType.ORDER_STATUS, ChangeType.SUBORDER_STATUS):
            data["old_status"] = self.old_value
            data["new_status"] = self.new_value
        elif self.type == ChangeType.SUBORDER_FIELDS:
            data["fields"] = self.new_value
        return data


@dataclass
class SyncOptions:
    """
    Side-channel mutations applied alongside the status diff.

    Attributes:
        extra_set: field path -> value, assigned without history
        extra_push: field path -> value, appended onto a list field
        create_only: fail with OrderAlreadyExistsException if the order is stored
        must_exist: fail with OrderNotFoundException instead of creating the order
    """

    extra_set: dict[str, Any] = field(default_factory=dict)
    extra_push: dict[str, Any] = field(default_factory=dict)
    create_only: bool = False
    must_exist: bool = False


@dataclass
class SyncResult:
    """
    Outcome of one synchronization call.

    Attributes:
        order_id: Integer order key
        action: inserted, updated or no_change
        changes: Transitions applied (updates only)
        ignored_suborders: Incoming sub-order ids with no stored match
        storage_id: Store identity of the written document, if any
    """

    order_id: int
    action: SyncAction
    changes: list[OrderChange] = field(default_factory=list)
    ignored_suborders: list[Any] = field(default_factory=list)
    storage_id: Any = None

    @property
    def changed(self) -> bool:
        return self.action != SyncAction.NO_CHANGE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "order_id": self.order_id,
            "action": self.action.value,
        }
        if self.action == SyncAction.UPDATED:
            data["changes"] = [change.to_dict() for change in self.changes]
        if self.ignored_suborders:
            data["ignored_suborders"] = list(self.ignored_suborders)
        return data


@dataclass
class StoredOrder:
    """A document as read from the store, with its storage identity."""

    storage_id: Any
    revision: int
    document: dict[str, Any]


@dataclass(frozen=True)
class ReplaceResult:
    """Result of a conditional replace."""

    matched: bool
    revision: int | None = None
