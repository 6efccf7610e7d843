"""Reconciliation engine keeping the local store consistent with the backend.

This module provides:
- ReconciliationEngine: Full sync, table-scoped sync, bootstrap rule and the
  observer that routes local mutations through the DeletionGuard

Architecture:
    ChangeFeed ─event─► on_change_event ─► sync_table(table)
    PollingScheduler ─tick─► full_sync()
    LocalStateStore ─mutation─► _on_local_change ─► DeletionGuard ─► RemoteGateway

Concurrency:
    All work runs on one asyncio event loop. ``SyncState.syncing`` is the
    only mutex: it is checked and set before the first await and cleared in
    a finally block. Requests arriving while it is held are dropped, not
    queued; the next change event or polling tick catches up.

Pull-replace:
    A full sync installs every fetched collection wholesale in a single
    ``store.replace()`` call. The only exception is the bootstrap rule: when
    the remote primary collection is empty and the local one is not, local
    records are pushed up and kept.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

from storesync.client.api import APIError
from storesync.client.sync.adapters import item_ids, items_to_rows, rows_to_items
from storesync.client.sync.guard import DeletionGuard
from storesync.client.sync.snapshot import SnapshotTracker
from storesync.client.sync.types import (
    ChangeEvent,
    SyncError,
    SyncKind,
    SyncResult,
    SyncState,
    SyncStats,
)
from storesync.core.tables import ALL_TABLES, RecordShape, TableSpec, get_table

if TYPE_CHECKING:
    from storesync.client.api import RemoteGateway, Row
    from storesync.client.store import LocalStateStore

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Orchestrates synchronization for one tenant session.

    Usage:
        engine = ReconciliationEngine(gateway, store, tenant_id="biz-1")
        engine.attach()               # observe local mutations
        await engine.full_sync()      # initial pull (or bootstrap)

        engine.on_change_event(ChangeEvent(table="orders"))
        ...
        engine.close()
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        store: LocalStateStore,
        tenant_id: str,
        primary_table: str = "products",
        clock: Callable[[], float] = time.monotonic,
        tables: tuple[TableSpec, ...] = ALL_TABLES,
    ) -> None:
        """Initialize the engine.

        Args:
            gateway: Backend facade.
            store: Local state store (sync target).
            tenant_id: Tenant every call is scoped to.
            primary_table: Table checked by the bootstrap rule.
            clock: Monotonic clock used for ``last_realtime_at``.
            tables: Tables covered by a full sync.

        Raises:
            SyncError: If primary_table is not a synchronized table.
        """
        self._gateway = gateway
        self._store = store
        self._tenant_id = tenant_id
        try:
            self._primary = get_table(primary_table)
        except KeyError as e:
            raise SyncError(f"Unknown primary table: {primary_table}") from e
        self._clock = clock
        self._tables = tables

        self._state = SyncState()
        self._stats = SyncStats()
        self._snapshots = SnapshotTracker()
        self._guard = DeletionGuard(gateway, self._snapshots, self._stats)

        self._applying_remote = False
        self._closed = False
        self._unsubscribe: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def state(self) -> SyncState:
        """Get the sync flags."""
        return self._state

    @property
    def stats(self) -> SyncStats:
        """Get engine statistics."""
        return self._stats

    @property
    def snapshots(self) -> SnapshotTracker:
        return self._snapshots

    @property
    def closed(self) -> bool:
        return self._closed

    # === Lifecycle ===

    def attach(self) -> None:
        """Start observing local mutations of the store."""
        self._remember_loop()
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_local_change)

    def detach(self) -> None:
        """Stop observing local mutations."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def close(self) -> None:
        """Tear down the engine.

        In-flight network calls are not cancelled; results that land after
        this point are discarded.
        """
        self._closed = True
        self.detach()
        self._snapshots.clear()
        logger.info("Reconciliation engine closed for tenant %s", self._tenant_id)

    async def wait_idle(self) -> None:
        """Wait for background tasks (change-triggered syncs, pushes) to settle."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # === Full sync ===

    async def full_sync(self) -> SyncResult | None:
        """Fetch every table and install the result locally.

        Returns:
            SyncResult, or None if the request was dropped, failed, or the
            engine was closed while it ran.
        """
        self._remember_loop()
        if not self._acquire("full sync"):
            return None
        try:
            return await self._run_full_sync()
        except APIError as e:
            self._stats.failures += 1
            logger.warning("Full sync failed, local state unchanged: %s", e)
            return None
        except Exception:
            self._stats.failures += 1
            logger.exception("Unexpected error during full sync")
            return None
        finally:
            self._state.syncing = False

    async def _run_full_sync(self) -> SyncResult | None:
        fetched = await asyncio.gather(
            *(self._gateway.fetch(spec.table, self._tenant_id) for spec in self._tables)
        )
        rows_by_table: dict[str, list[Row]] = {
            spec.table: rows for spec, rows in zip(self._tables, fetched, strict=True)
        }
        next_state = {
            spec.collection: rows_to_items(spec, rows_by_table[spec.table])
            for spec in self._tables
        }

        bootstrapped = False
        primary = self._primary
        local_primary = self._store.get(primary.collection) or []
        if not next_state.get(primary.collection) and local_primary:
            logger.info(
                "Remote %s is empty, seeding it with %d local records",
                primary.table,
                len(local_primary),
            )
            await self._gateway.upsert(
                primary.table, self._tenant_id, items_to_rows(primary, local_primary)
            )
            next_state[primary.collection] = list(local_primary)
            bootstrapped = True
            self._stats.bootstraps += 1

        if self._closed:
            logger.debug("Discarding full sync result, engine closed")
            return None

        self._apply(next_state)
        self._state.initialized = True
        self._stats.full_syncs += 1
        logger.info("Full sync completed for tenant %s", self._tenant_id)
        return SyncResult(
            kind=SyncKind.FULL,
            tables=[spec.table for spec in self._tables],
            counts=_counts(next_state),
            bootstrapped=bootstrapped,
        )

    # === Table-scoped sync ===

    async def sync_table(self, table: str) -> SyncResult | None:
        """Refresh exactly one table.

        Args:
            table: Backend table name or local collection name.

        Returns:
            SyncResult, or None if dropped, unknown, failed or closed.
        """
        try:
            spec = get_table(table)
        except KeyError:
            logger.warning("Ignoring sync request for unknown table %s", table)
            return None

        if not self._acquire(f"sync of {spec.table}"):
            return None
        try:
            rows = await self._gateway.fetch(spec.table, self._tenant_id)
            if self._closed:
                logger.debug("Discarding %s refresh, engine closed", spec.table)
                return None
            items = rows_to_items(spec, rows)
            self._apply({spec.collection: items})
            self._stats.table_syncs += 1
            logger.debug("Refreshed %s", spec.table)
            return SyncResult(
                kind=SyncKind.TABLE,
                tables=[spec.table],
                counts=_counts({spec.collection: items}),
            )
        except APIError as e:
            self._stats.failures += 1
            logger.warning("Refresh of %s failed, local state unchanged: %s", spec.table, e)
            return None
        except Exception:
            self._stats.failures += 1
            logger.exception("Unexpected error refreshing %s", spec.table)
            return None
        finally:
            self._state.syncing = False

    # === Change events ===

    def on_change_event(self, event: ChangeEvent) -> None:
        """Handle a change notification from the ChangeFeed.

        Records the realtime timestamp and schedules one table-scoped sync.
        """
        if self._closed:
            return
        self._state.last_realtime_at = self._clock()
        logger.debug("Change event %s on %s", event.kind.value, event.table)
        self._spawn(self.sync_table(event.table))

    # === Local mutations ===

    def _on_local_change(self, collection: str, value: Any) -> None:
        """Store listener: diff a locally mutated collection and propagate."""
        if self._applying_remote or self._closed or not self._state.initialized:
            return
        try:
            spec = get_table(collection)
        except KeyError:
            return
        if spec not in self._tables:
            return

        # Without a loop to run the remote calls the snapshot must not move,
        # so the change is picked up by the next observation instead
        loop = self._event_loop()
        if loop is None:
            logger.warning("No running event loop, %s change deferred", spec.table)
            return

        plan = self._guard.plan(spec, value)
        if plan.has_deletions or plan.added:
            self._spawn(self._guard.execute(self._tenant_id, spec, plan, value), loop)

    # === Internals ===

    def _acquire(self, what: str) -> bool:
        if self._closed:
            logger.debug("Dropping %s, engine closed", what)
            return False
        if self._state.syncing:
            self._stats.dropped_requests += 1
            logger.debug("Dropping %s, another sync is in flight", what)
            return False
        self._state.syncing = True
        return True

    def _apply(self, next_state: dict[str, Any]) -> None:
        """Install collections in one store update and refresh snapshots."""
        self._applying_remote = True
        try:
            self._store.replace(next_state)
        finally:
            self._applying_remote = False

        for collection, items in next_state.items():
            spec = get_table(collection)
            if spec.shape is not RecordShape.SINGLETON:
                self._snapshots.update(spec.table, item_ids(spec, items))

    def _remember_loop(self) -> None:
        loop = _running_loop()
        if loop is not None:
            self._loop = loop

    def _event_loop(self) -> asyncio.AbstractEventLoop | None:
        """Get a loop able to run background work, if any.

        Prefers the loop running in this thread, then the loop the engine
        ran on when it is still running in another thread.
        """
        loop = _running_loop()
        if loop is not None:
            return loop
        if self._loop is not None and self._loop.is_running():
            return self._loop
        return None

    def _spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if loop is None:
            loop = asyncio.get_running_loop()
        if loop is _running_loop():
            self._track(loop.create_task(coro))
        else:
            loop.call_soon_threadsafe(lambda: self._track(loop.create_task(coro)))

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _counts(state: dict[str, Any]) -> dict[str, int]:
    counts = {}
    for collection, items in state.items():
        if isinstance(items, list):
            counts[collection] = len(items)
        else:
            counts[collection] = 0 if items is None else 1
    return counts
