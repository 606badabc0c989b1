"""
OrderSynchronizer - reconciles partial orders against stored documents.

Every inbound integration (EasyEcom order webhooks and pulls, ClickPost
tracking webhooks and status updates, credit notes) funnels into
``OrderSynchronizer.sync``. Handlers differ only in how they normalise
their payload and in the ``source`` tag they pass.

For one call the flow is:
1. Resolve the integer order id
2. Take the per-order lock
3. Fresh read of the stored document
4. Absent: build and insert a new order with seeded histories
5. Present: diff status, sub-orders and side-channel fields on a copy
6. Replace the whole document once, conditioned on the revision read

A lost conditional replace re-runs steps 3-6.
"""

import copy
import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

from app.core.config import get_settings
from app.core.logging_config import log_sync_operation
from app.domain.models import ChangeType, OrderChange, StatusChange, SyncAction, SyncOptions, SyncResult
from app.domain.models.order_document import (
    CREATED_AT,
    CREATED_BY_PREFIX,
    ITEM_STATUS,
    LAST_UPDATED,
    MANAGED_FIELDS,
    ORDER_ID,
    ORDER_STATUS,
    STATUS_HISTORY,
    SUB_ITEMS,
    SUBORDER_ID,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from app.services.orders.interfaces import IOrderLockFactory, IOrderStore
from app.utils.error_handler import (
    MalformedStateException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
    OrderWriteConflictException,
)
from app.utils.id_utils import same_identifier, try_parse_order_id
from app.utils.order_lock import OrderLock

settings = get_settings()
logger = logging.getLogger(__name__)

_MISSING = object()

# Top-level fields extra_set / extra_push may not touch: they carry history
PROTECTED_FIELDS = frozenset({ORDER_ID, ORDER_STATUS, STATUS_HISTORY, SUB_ITEMS, CREATED_AT, LAST_UPDATED})


class OrderSynchronizer:
    """
    Synchronizes desired order state into one order collection.

    The store and the lock factory are injected; nothing is cached between
    calls.
    """

    def __init__(
        self,
        store: IOrderStore,
        lock_factory: IOrderLockFactory | None = None,
        max_conflict_retries: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            store: Order document store for one collection
            lock_factory: Per-order lock; defaults to OrderLock namespaced by the store
            max_conflict_retries: Attempts before giving up on write conflicts
            clock: Source of "now" (injectable for tests)
        """
        self.store = store
        self.lock_factory = lock_factory or partial(OrderLock, namespace=store.name)
        self.max_conflict_retries = max_conflict_retries or settings.SYNC_MAX_CONFLICT_RETRIES
        self.clock = clock

    async def sync(
        self,
        order_id: Any,
        desired_state: dict[str, Any],
        source: str,
        options: SyncOptions | None = None,
    ) -> SyncResult:
        """
        Reconcile ``desired_state`` against the stored order.

        Args:
            order_id: Order identifier (int or numeric string)
            desired_state: Partial order: order_status, order_items and, on
                creation only, any other top-level fields
            source: Tag recorded in every history entry this call appends
            options: extra_set / extra_push side-channel mutations

        Returns:
            SyncResult: inserted, updated (with changes) or no_change

        Raises:
            MalformedStateException: The id or the payload shape is unusable
            OrderNotFoundException: ``options.must_exist`` and the order is not stored
            OrderAlreadyExistsException: ``options.create_only`` and the order is stored
            OrderWriteConflictException: Conflicts persisted across all retries
            LockAcquisitionError: The per-order lock was not acquired in time
            StorageUnavailableException: The store is unreachable
        """
        key = try_parse_order_id(order_id)
        if key is None:
            raise MalformedStateException(
                message=f"Cannot resolve order id {order_id!r}",
                order_id=order_id,
                field=ORDER_ID,
            )

        options = options or SyncOptions()
        self._validate_desired_state(key, desired_state, options)

        async with self.lock_factory(key):
            attempt = 0
            while True:
                attempt += 1
                try:
                    result = await self._sync_once(key, desired_state, source, options)
                    break
                except OrderWriteConflictException as e:
                    if attempt >= self.max_conflict_retries:
                        logger.error(f"❌ Order {key}: write conflict persisted after {attempt} attempts")
                        raise OrderWriteConflictException(
                            message=f"Order {key} kept changing concurrently",
                            order_id=key,
                            attempts=attempt,
                        ) from e
                    logger.warning(f"⚠️ Order {key}: concurrent write detected, retrying ({attempt})")

        log_sync_operation(
            result.action.value,
            self.store.name,
            key,
            source,
            change_count=len(result.changes),
            ignored_suborders=result.ignored_suborders,
        )
        return result

    # === VALIDACIÓN ===

    def _validate_desired_state(self, order_id: int, desired_state: Any, options: SyncOptions):
        if not isinstance(desired_state, dict):
            raise MalformedStateException(
                message=f"Desired state for order {order_id} must be an object",
                order_id=order_id,
            )

        items = desired_state.get(SUB_ITEMS)
        if items is not None:
            if not isinstance(items, list):
                raise MalformedStateException(
                    message=f"{SUB_ITEMS} for order {order_id} must be a list",
                    order_id=order_id,
                    field=SUB_ITEMS,
                )
            for item in items:
                if not isinstance(item, dict) or item.get(SUBORDER_ID) is None:
                    raise MalformedStateException(
                        message=f"Every sub-order of order {order_id} needs a {SUBORDER_ID}",
                        order_id=order_id,
                        field=SUBORDER_ID,
                    )

        for path in list(options.extra_set) + list(options.extra_push):
            segments = path.split(".") if isinstance(path, str) else []
            if not segments or not all(segments):
                raise MalformedStateException(
                    message=f"Invalid field path {path!r} for order {order_id}",
                    order_id=order_id,
                    field=str(path),
                )
            if segments[0] in PROTECTED_FIELDS:
                raise MalformedStateException(
                    message=f"Field {path!r} is managed by the synchronizer",
                    order_id=order_id,
                    field=path,
                )

    # === LECTURA / ESCRITURA ===

    def _next_timestamp(self, previous: Any = None) -> str:
        """Now, nudged past ``previous`` so last_updated never goes backwards."""
        now = self.clock()
        previous_moment = parse_timestamp(previous)
        if previous_moment is not None and now <= previous_moment:
            now = previous_moment + timedelta(microseconds=1)
        return format_timestamp(now)

    async def _sync_once(
        self, order_id: int, desired_state: dict[str, Any], source: str, options: SyncOptions
    ) -> SyncResult:
        stored = await self.store.find_one(order_id)

        if stored is None and options.must_exist:
            raise OrderNotFoundException(
                message=f"Order {order_id} not found in {self.store.name}",
                order_id=order_id,
                collection=self.store.name,
            )
        if stored is not None and options.create_only:
            raise OrderAlreadyExistsException(
                message=f"Order {order_id} already exists in {self.store.name}",
                order_id=order_id,
                waybill=stored.document.get("waybill"),
            )

        if stored is None:
            document = self._build_new_order(order_id, desired_state, source, options)
            storage_id = await self.store.insert_one(document)
            logger.info(f"➕ Order {order_id} created in {self.store.name} (source: {source})")
            return SyncResult(order_id=order_id, action=SyncAction.INSERTED, storage_id=storage_id)

        document = copy.deepcopy(stored.document)
        timestamp = self._next_timestamp(document.get(LAST_UPDATED))
        changes, ignored = self._apply_update(order_id, document, desired_state, source, options, timestamp)

        if not changes:
            logger.debug(f"Order {order_id}: no changes detected")
            return SyncResult(
                order_id=order_id,
                action=SyncAction.NO_CHANGE,
                ignored_suborders=ignored,
                storage_id=stored.storage_id,
            )

        document[LAST_UPDATED] = timestamp
        replaced = await self.store.replace_one(stored.storage_id, document, expected_revision=stored.revision)
        if not replaced.matched:
            raise OrderWriteConflictException(
                message=f"Order {order_id} changed since it was read",
                order_id=order_id,
            )

        logger.info(f"🔄 Order {order_id} updated in {self.store.name}: {len(changes)} change(s) (source: {source})")
        return SyncResult(
            order_id=order_id,
            action=SyncAction.UPDATED,
            changes=changes,
            ignored_suborders=ignored,
            storage_id=stored.storage_id,
        )

    # === CREACIÓN ===

    def _build_new_order(
        self, order_id: int, desired_state: dict[str, Any], source: str, options: SyncOptions
    ) -> dict[str, Any]:
        status = desired_state.get(ORDER_STATUS)
        if status is None:
            raise MalformedStateException(
                message=f"Order {order_id} does not exist and the payload has no {ORDER_STATUS}",
                order_id=order_id,
                field=ORDER_STATUS,
            )

        timestamp = self._next_timestamp()
        created_by = CREATED_BY_PREFIX + source

        document = {
            field_name: copy.deepcopy(value)
            for field_name, value in desired_state.items()
            if field_name not in MANAGED_FIELDS and field_name != SUB_ITEMS
        }
        document[ORDER_ID] = order_id
        document[ORDER_STATUS] = status
        document[STATUS_HISTORY] = [StatusChange(None, status, timestamp, created_by).to_dict()]

        if SUB_ITEMS in desired_state:
            document[SUB_ITEMS] = self._build_new_suborders(
                order_id, desired_state[SUB_ITEMS] or [], status, timestamp, created_by
            )

        document[CREATED_AT] = timestamp
        document[LAST_UPDATED] = timestamp

        self._apply_extra_set(order_id, document, options.extra_set)
        self._apply_extra_push(order_id, document, options.extra_push)
        return document

    def _build_new_suborders(
        self, order_id: int, items: list[dict[str, Any]], parent_status: Any, timestamp: str, created_by: str
    ) -> list[dict[str, Any]]:
        suborders: list[dict[str, Any]] = []
        for item in items:
            if any(same_identifier(existing[SUBORDER_ID], item[SUBORDER_ID]) for existing in suborders):
                raise MalformedStateException(
                    message=f"Duplicate {SUBORDER_ID} {item[SUBORDER_ID]!r} in order {order_id}",
                    order_id=order_id,
                    field=SUBORDER_ID,
                )

            suborder = {k: copy.deepcopy(v) for k, v in item.items() if k != STATUS_HISTORY}
            item_status = suborder.get(ITEM_STATUS)
            if item_status is None:
                item_status = parent_status
                suborder[ITEM_STATUS] = parent_status
            suborder[STATUS_HISTORY] = [StatusChange(None, item_status, timestamp, created_by).to_dict()]
            suborders.append(suborder)
        return suborders

    # === ACTUALIZACIÓN ===

    def _apply_update(
        self,
        order_id: int,
        document: dict[str, Any],
        desired_state: dict[str, Any],
        source: str,
        options: SyncOptions,
        timestamp: str,
    ) -> tuple[list[OrderChange], list[Any]]:
        changes: list[OrderChange] = []

        status = desired_state.get(ORDER_STATUS)
        if status is not None and status != document.get(ORDER_STATUS):
            old_status = document.get(ORDER_STATUS)
            self._history(order_id, document).append(StatusChange(old_status, status, timestamp, source).to_dict())
            document[ORDER_STATUS] = status
            changes.append(
                OrderChange(ChangeType.ORDER_STATUS, field=ORDER_STATUS, old_value=old_status, new_value=status)
            )

        suborder_changes, ignored = self._apply_suborders(
            order_id, document, desired_state.get(SUB_ITEMS) or [], source, timestamp
        )
        changes.extend(suborder_changes)
        changes.extend(self._apply_extra_set(order_id, document, options.extra_set))
        changes.extend(self._apply_extra_push(order_id, document, options.extra_push))
        return changes, ignored

    def _apply_suborders(
        self, order_id: int, document: dict[str, Any], partials: list[dict[str, Any]], source: str, timestamp: str
    ) -> tuple[list[OrderChange], list[Any]]:
        changes: list[OrderChange] = []
        ignored: list[Any] = []
        if not partials:
            return changes, ignored

        stored_items = document.get(SUB_ITEMS)
        if stored_items is None:
            stored_items = []
        elif not isinstance(stored_items, list):
            raise MalformedStateException(
                message=f"Stored {SUB_ITEMS} of order {order_id} is not a list",
                order_id=order_id,
                field=SUB_ITEMS,
            )

        for partial_item in partials:
            suborder_id = partial_item[SUBORDER_ID]
            target = next(
                (
                    item
                    for item in stored_items
                    if isinstance(item, dict) and same_identifier(item.get(SUBORDER_ID), suborder_id)
                ),
                None,
            )

            # Sub-orders are only created with their order
            if target is None:
                logger.warning(f"⚠️ Order {order_id}: sub-order {suborder_id!r} not stored, ignoring update")
                ignored.append(suborder_id)
                continue

            new_status = partial_item.get(ITEM_STATUS)
            if new_status is not None and new_status != target.get(ITEM_STATUS):
                old_status = target.get(ITEM_STATUS)
                entry = StatusChange(old_status, new_status, timestamp, source)
                self._history(order_id, target).append(entry.to_dict())
                target[ITEM_STATUS] = new_status
                changes.append(
                    OrderChange(
                        ChangeType.SUBORDER_STATUS,
                        field=ITEM_STATUS,
                        old_value=old_status,
                        new_value=new_status,
                        suborder_id=target[SUBORDER_ID],
                    )
                )

            merged = []
            for field_name, value in partial_item.items():
                if field_name in (SUBORDER_ID, ITEM_STATUS, STATUS_HISTORY):
                    continue
                if target.get(field_name, _MISSING) != value:
                    target[field_name] = copy.deepcopy(value)
                    merged.append(field_name)
            if merged:
                changes.append(
                    OrderChange(ChangeType.SUBORDER_FIELDS, new_value=merged, suborder_id=target[SUBORDER_ID])
                )

        return changes, ignored

    def _history(self, order_id: int, container: dict[str, Any]) -> list[dict[str, Any]]:
        history = container.get(STATUS_HISTORY)
        if history is None:
            history = []
            container[STATUS_HISTORY] = history
        elif not isinstance(history, list):
            raise MalformedStateException(
                message=f"Stored {STATUS_HISTORY} of order {order_id} is not a list",
                order_id=order_id,
                field=STATUS_HISTORY,
            )
        return history

    # === CAMPOS LATERALES ===

    def _parent_of(self, order_id: int, document: dict[str, Any], path: str) -> tuple[dict[str, Any], str]:
        """Walk a dotted path, creating intermediate maps, and return (parent, leaf)."""
        segments = path.split(".")
        node = document
        for segment in segments[:-1]:
            child = node.get(segment)
            if child is None:
                child = {}
                node[segment] = child
            elif not isinstance(child, dict):
                raise MalformedStateException(
                    message=f"Cannot address {path!r} in order {order_id}: {segment!r} is not an object",
                    order_id=order_id,
                    field=path,
                )
            node = child
        return node, segments[-1]

    def _apply_extra_set(
        self, order_id: int, document: dict[str, Any], extra_set: dict[str, Any]
    ) -> list[OrderChange]:
        changes = []
        for path, value in extra_set.items():
            parent, leaf = self._parent_of(order_id, document, path)
            if parent.get(leaf, _MISSING) != value:
                parent[leaf] = copy.deepcopy(value)
                changes.append(OrderChange(ChangeType.EXTRA_SET, field=path))
        return changes

    def _apply_extra_push(
        self, order_id: int, document: dict[str, Any], extra_push: dict[str, Any]
    ) -> list[OrderChange]:
        changes = []
        for path, value in extra_push.items():
            parent, leaf = self._parent_of(order_id, document, path)
            sequence = parent.get(leaf)
            if sequence is None:
                sequence = []
                parent[leaf] = sequence
            elif not isinstance(sequence, list):
                raise MalformedStateException(
                    message=f"Cannot append to {path!r} in order {order_id}: it is not a list",
                    order_id=order_id,
                    field=path,
                )
            sequence.append(copy.deepcopy(value))
            changes.append(OrderChange(ChangeType.EXTRA_PUSH, field=path))
        return changes
