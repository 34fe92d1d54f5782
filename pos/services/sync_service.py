"""
Dual-store synchronization.

The remote store is the system of record; the local store keeps the shop
selling while the remote cannot be reached. Writes that could not reach the
remote are journaled in the local sync queue (target=remote) and replayed
oldest first once a connectivity probe succeeds. Writes that landed on the
remote are journaled with target=local and applied to the local cache by
the probe thread.

Only the probe thread consumes the queue, always holding the ModeGate
exclusively, so no request ever sees a half-applied transition.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Any, Iterable, Optional, Tuple

from sqlalchemy import DateTime, Numeric, func

from pos.models import (
    Category, Product, InventoryItem, RecipeLine,
    SyncQueueEntry, SyncOperation, SyncStatus, SyncTarget,
)
from pos.exceptions import PosError, NotFoundError, StoreUnavailableError, SyncReplayFailure
from pos.services.inventory_service import (
    adjust_stock, apply_field_values, delete_inventory_item, restock_inventory_item,
)
from pos.services.recipe_service import set_ingredients_for
from pos.services.catalog_service import update_product, delete_product
from pos.services.order_service import insert_order_rows
from pos.blueprints.metrics import pos_sync_replays_total, pos_sync_online, pos_sync_pending

logger = logging.getLogger(__name__)

ONLINE = 'online'
OFFLINE = 'offline'

# Tables the local cache refresh overwrites from the remote snapshot
REFRESHED_TABLES = ('categories', 'products', 'inventory', 'product_ingredients')

JournalEntry = Tuple[str, SyncOperation, Dict[str, Any]]


class ConnectivityState:
    """Which store is active. Only the sync service changes it."""

    def __init__(self, online: bool = True):
        self._lock = threading.Lock()
        self._mode = ONLINE if online else OFFLINE
        self._changed_at = datetime.now()

    @property
    def mode(self) -> str:
        with self._lock:
            return self._mode

    @property
    def changed_at(self) -> datetime:
        with self._lock:
            return self._changed_at

    def is_online(self) -> bool:
        return self.mode == ONLINE

    def set_mode(self, mode: str) -> bool:
        """Returns True when the mode actually changed."""
        if mode not in (ONLINE, OFFLINE):
            raise ValueError(f"Unknown connectivity mode: {mode}")
        with self._lock:
            if self._mode == mode:
                return False
            self._mode = mode
            self._changed_at = datetime.now()
            return True


class ModeGate:
    """
    Shared/exclusive gate around the active mode.

    Requests hold it shared for their whole operation; transitions, drains
    and refreshes hold it exclusively. A waiting exclusive holder blocks new
    shared holders so transitions are not starved. Not reentrant.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def shared(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def enqueue_entries(session, entries: Iterable[JournalEntry], target: SyncTarget) -> int:
    """Add journal entries to the sync queue in the caller's local transaction."""
    count = 0
    for table_name, operation, payload in entries:
        session.add(SyncQueueEntry(
            table_name=table_name,
            operation=operation,
            target=target,
            payload=payload,
            status=SyncStatus.PENDING,
        ))
        count += 1
    session.flush()
    return count


# ---------------------------------------------------------------------------
# Replay handlers: (table, operation) -> fn(session, payload)
# ---------------------------------------------------------------------------

REPLAY_HANDLERS: Dict[Tuple[str, SyncOperation], Callable] = {}


def replay_handler(table_name: str, operation: SyncOperation):
    def decorator(fn):
        REPLAY_HANDLERS[(table_name, operation)] = fn
        return fn
    return decorator


def _row_from_payload(model, payload: Dict[str, Any]):
    """Build a model instance from a JSON payload, restoring column types."""
    values = {}
    for column in model.__table__.columns:
        if column.key not in payload:
            continue
        value = payload[column.key]
        if value is not None:
            if isinstance(column.type, Numeric):
                value = Decimal(str(value))
            elif isinstance(column.type, DateTime) and isinstance(value, str):
                value = datetime.fromisoformat(value)
        values[column.key] = value
    return model(**values)


def _copy_row(model, row):
    return model(**{column.key: getattr(row, column.key) for column in model.__table__.columns})


def _insert_if_missing(session, model, payload):
    if session.get(model, payload['id']) is not None:
        return False
    session.add(_row_from_payload(model, payload))
    session.flush()
    return True


@replay_handler('orders', SyncOperation.INSERT)
def _replay_order_insert(session, payload):
    insert_order_rows(session, payload)


@replay_handler('inventory', SyncOperation.INSERT)
def _replay_inventory_insert(session, payload):
    _insert_if_missing(session, InventoryItem, payload)


@replay_handler('inventory', SyncOperation.UPDATE)
def _replay_inventory_update(session, payload):
    item_id = payload['id']
    restock = payload.get('restock')
    if restock:
        restock_inventory_item(
            session, item_id,
            restock['number_of_containers'], restock['container_quantity'], restock['quantity_per_unit'],
        )
    elif payload.get('delta') is not None:
        adjust_stock(session, item_id, payload['delta'])
    if payload.get('fields'):
        apply_field_values(session, item_id, payload['fields'])


@replay_handler('inventory', SyncOperation.DELETE)
def _replay_inventory_delete(session, payload):
    try:
        delete_inventory_item(session, payload['id'])
    except NotFoundError:
        logger.info(f"[SYNC] Inventory item {payload['id']} already gone")


@replay_handler('product_ingredients', SyncOperation.UPDATE)
def _replay_recipe_update(session, payload):
    set_ingredients_for(session, payload['product_id'], payload['lines'])


@replay_handler('products', SyncOperation.INSERT)
def _replay_product_insert(session, payload):
    _insert_if_missing(session, Product, payload)


@replay_handler('products', SyncOperation.UPDATE)
def _replay_product_update(session, payload):
    update_product(session, payload['id'], payload['fields'])


@replay_handler('products', SyncOperation.DELETE)
def _replay_product_delete(session, payload):
    try:
        delete_product(session, payload['id'])
    except NotFoundError:
        logger.info(f"[SYNC] Product {payload['id']} already gone")


@replay_handler('categories', SyncOperation.INSERT)
def _replay_category_insert(session, payload):
    _insert_if_missing(session, Category, payload)


def apply_entry(session, entry: SyncQueueEntry) -> None:
    """Apply one queued write to the store behind `session`."""
    handler = REPLAY_HANDLERS.get((entry.table_name, entry.operation))
    if handler is None:
        raise SyncReplayFailure(entry.id, f"no handler for {entry.operation.value} {entry.table_name}")
    try:
        handler(session, entry.payload or {})
    except (KeyError, TypeError, ValueError) as e:
        raise SyncReplayFailure(entry.id, f"malformed payload: {e!r}") from e


class SyncService:
    """Connectivity probe, mode transitions and sync queue replay."""

    def __init__(self, remote_store, local_store, state: Optional[ConnectivityState] = None,
                 gate: Optional[ModeGate] = None, probe: Optional[Callable[[], Any]] = None,
                 probe_interval: float = 10, probe_timeout: float = 3, cache=None):
        self.remote = remote_store
        self.local = local_store
        self.state = state or ConnectivityState()
        self.gate = gate or ModeGate()
        self._probe_fn = probe or remote_store.ping
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout
        self.cache = cache

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_tick_at: Optional[datetime] = None
        self.last_refresh_at: Optional[datetime] = None
        pos_sync_online.set(1 if self.state.is_online() else 0)

    # -- probe ------------------------------------------------------------

    def probe(self) -> bool:
        """
        Check the remote on a daemon thread, waiting at most probe_timeout.

        A probe that hangs counts as a failure; its thread is abandoned and
        the next tick probes again.
        """
        outcome = {}

        def target():
            try:
                self._probe_fn()
                outcome['ok'] = True
            except Exception as e:  # any probe failure means unreachable
                outcome['error'] = e

        thread = threading.Thread(target=target, name='pos-sync-probe', daemon=True)
        thread.start()
        thread.join(self.probe_timeout)

        if thread.is_alive():
            logger.warning(f"[SYNC] Probe timed out after {self.probe_timeout}s")
            return False
        if 'error' in outcome:
            logger.info(f"[SYNC] Probe failed: {outcome['error']}")
            return False
        return outcome.get('ok', False)

    # -- transitions ------------------------------------------------------

    def _set_mode(self, mode: str) -> None:
        if self.state.set_mode(mode):
            pos_sync_online.set(1 if mode == ONLINE else 0)
            logger.warning(f"[SYNC] Connectivity changed: now {mode.upper()}")
            self._invalidate_views()

    def _invalidate_views(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_views()

    def tick(self) -> str:
        """
        One probe cycle. Returns the mode after the cycle.

        ONLINE + probe failure: apply local-bound mirrors, then go OFFLINE.
        OFFLINE + probe success: drain remote-bound entries, refresh the
        local cache, then go ONLINE.
        ONLINE + probe success: retry remote-bound entries left by
        per-request fallbacks and apply local-bound mirrors.
        OFFLINE + probe failure: apply any local-bound mirrors still pending.
        """
        reachable = self.probe()
        self.last_tick_at = datetime.now()

        if self.state.is_online():
            with self.gate.exclusive():
                if not reachable:
                    self._drain(SyncTarget.LOCAL)
                    self._set_mode(OFFLINE)
                else:
                    remote_result = self._drain(SyncTarget.REMOTE)
                    self._drain(SyncTarget.LOCAL)
                    if remote_result['interrupted']:
                        self._set_mode(OFFLINE)
        elif reachable:
            self._go_online()
        else:
            with self.gate.exclusive():
                self._drain(SyncTarget.LOCAL)

        self._update_pending_gauge()
        return self.state.mode

    def _go_online(self) -> bool:
        with self.gate.exclusive():
            result = self._drain(SyncTarget.REMOTE)
            if result['interrupted']:
                logger.warning("[SYNC] Remote dropped during drain; staying OFFLINE")
                return False
            try:
                self._refresh_local_cache()
            except StoreUnavailableError:
                logger.warning("[SYNC] Remote dropped during cache refresh; staying OFFLINE")
                return False
            except PosError as e:
                logger.error(f"[SYNC] Local cache refresh failed, continuing with a stale cache: {e.message}")
            self._set_mode(ONLINE)
            return True

    # -- queue replay -----------------------------------------------------

    def drain_pending(self, target: SyncTarget = SyncTarget.REMOTE) -> Dict[str, Any]:
        """Replay pending entries for `target`, oldest first."""
        with self.gate.exclusive():
            result = self._drain(target)
        self._update_pending_gauge()
        return result

    def _pending_entries(self, target: SyncTarget):
        with self.local.session_scope() as session:
            return (
                session.query(SyncQueueEntry)
                .filter(SyncQueueEntry.status == SyncStatus.PENDING)
                .filter(SyncQueueEntry.target == target)
                .order_by(SyncQueueEntry.id)
                .all()
            )

    def _drain(self, target: SyncTarget) -> Dict[str, Any]:
        result = {'target': target.value, 'synced': 0, 'failed': 0, 'interrupted': False}
        try:
            entries = self._pending_entries(target)
        except StoreUnavailableError:
            logger.error("[SYNC] Local store unavailable, cannot read the sync queue")
            result['interrupted'] = True
            return result

        if entries:
            logger.info(f"[SYNC] Replaying {len(entries)} pending {target.value} entries")

        for entry in entries:
            try:
                if target is SyncTarget.REMOTE:
                    self._replay_to_remote(entry)
                else:
                    self._replay_to_local(entry)
            except StoreUnavailableError as e:
                self._record_failure(entry, e.message)
                pos_sync_replays_total.labels(target=target.value, outcome='interrupted').inc()
                result['interrupted'] = True
                break
            except PosError as e:
                failure = SyncReplayFailure(entry.id, e.message)
                logger.error(f"[SYNC] {failure.message}")
                self._record_failure(entry, e.message)
                pos_sync_replays_total.labels(target=target.value, outcome='failed').inc()
                result['failed'] += 1
                continue
            pos_sync_replays_total.labels(target=target.value, outcome='synced').inc()
            result['synced'] += 1

        if result['synced'] or result['failed']:
            logger.info(
                f"[SYNC] {target.value}: {result['synced']} synced, {result['failed']} failed"
                f"{' (interrupted)' if result['interrupted'] else ''}"
            )
        if result['synced']:
            self._invalidate_views()
        return result

    def _replay_to_remote(self, entry: SyncQueueEntry) -> None:
        with self.remote.session_scope() as session:
            apply_entry(session, entry)
        with self.local.session_scope() as session:
            _mark_synced(session, entry.id)

    def _replay_to_local(self, entry: SyncQueueEntry) -> None:
        # Same store: the write and its synced marker commit together.
        with self.local.session_scope() as session:
            apply_entry(session, entry)
            _mark_synced(session, entry.id)

    def _record_failure(self, entry: SyncQueueEntry, reason: str) -> None:
        try:
            with self.local.session_scope() as session:
                session.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry.id).update(
                    {
                        SyncQueueEntry.attempts: SyncQueueEntry.attempts + 1,
                        SyncQueueEntry.last_error: reason[:1000],
                    },
                    synchronize_session=False,
                )
        except PosError as e:
            logger.error(f"[SYNC] Could not record failure of entry #{entry.id}: {e.message}")

    # -- cache refresh ----------------------------------------------------

    def refresh_local_cache(self) -> Dict[str, int]:
        with self.gate.exclusive():
            return self._refresh_local_cache()

    def _refresh_local_cache(self) -> Dict[str, int]:
        """
        Overwrite local catalog, inventory and recipes with the remote snapshot.

        Rows are upserted by id (nothing is deleted except recipe lines,
        which are replaced wholesale). Pending local-bound entries for these
        tables are superseded by the snapshot and marked synced.
        """
        models = (Category, Product, InventoryItem, RecipeLine)
        with self.remote.session_scope() as session:
            snapshot = {model: [_copy_row(model, row) for row in session.query(model).all()] for model in models}

        with self.local.session_scope() as session:
            for model in (Category, Product, InventoryItem):
                for row in snapshot[model]:
                    session.merge(row)
            session.query(RecipeLine).delete(synchronize_session=False)
            session.add_all(snapshot[RecipeLine])
            superseded = (
                session.query(SyncQueueEntry)
                .filter(SyncQueueEntry.target == SyncTarget.LOCAL)
                .filter(SyncQueueEntry.status == SyncStatus.PENDING)
                .filter(SyncQueueEntry.table_name.in_(REFRESHED_TABLES))
                .update(
                    {SyncQueueEntry.status: SyncStatus.SYNCED, SyncQueueEntry.synced_at: datetime.now()},
                    synchronize_session=False,
                )
            )

        self.last_refresh_at = datetime.now()
        self._invalidate_views()
        counts = {model.__tablename__: len(rows) for model, rows in snapshot.items()}
        counts['superseded'] = superseded
        logger.info(f"[SYNC] Local cache refreshed: {counts}")
        return counts

    # -- background loop --------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='pos-sync', daemon=True)
        self._thread.start()
        logger.info(f"[SYNC] Probe loop started (every {self.probe_interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("[SYNC] Probe loop stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("[SYNC] Probe cycle failed")
            self._stop_event.wait(self.probe_interval)

    # -- reporting --------------------------------------------------------

    def pending_counts(self) -> Dict[str, int]:
        counts = {target.value: 0 for target in SyncTarget}
        with self.local.session_scope() as session:
            rows = (
                session.query(SyncQueueEntry.target, func.count(SyncQueueEntry.id))
                .filter(SyncQueueEntry.status == SyncStatus.PENDING)
                .group_by(SyncQueueEntry.target)
                .all()
            )
        for target, count in rows:
            counts[target.value] = count
        return counts

    def failing_entries(self, limit: int = 20):
        """Pending entries that have failed at least once."""
        with self.local.session_scope() as session:
            return (
                session.query(SyncQueueEntry)
                .filter(SyncQueueEntry.status == SyncStatus.PENDING)
                .filter(SyncQueueEntry.attempts > 0)
                .order_by(SyncQueueEntry.id)
                .limit(limit)
                .all()
            )

    def _update_pending_gauge(self) -> None:
        try:
            counts = self.pending_counts()
        except PosError as e:
            logger.warning(f"[SYNC] Could not count pending entries: {e.message}")
            return
        for target, count in counts.items():
            pos_sync_pending.labels(target=target).set(count)

    def status(self) -> Dict[str, Any]:
        return {
            'mode': self.state.mode,
            'online': self.state.is_online(),
            'changed_at': self.state.changed_at.isoformat(),
            'pending': self.pending_counts(),
            'last_tick_at': self.last_tick_at.isoformat() if self.last_tick_at else None,
            'last_refresh_at': self.last_refresh_at.isoformat() if self.last_refresh_at else None,
            'running': self.running,
        }


def _mark_synced(session, entry_id: int) -> None:
    session.query(SyncQueueEntry).filter(SyncQueueEntry.id == entry_id).update(
        {SyncQueueEntry.status: SyncStatus.SYNCED, SyncQueueEntry.synced_at: datetime.now()},
        synchronize_session=False,
    )
