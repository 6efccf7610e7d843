"""Tenant session owning the sync machinery.

This module provides:
- SessionContext: Tenant/auth/offline inputs supplied by the host app
- SyncSession: Builds, runs and tears down the engine, change subscriptions,
  polling timer and lifecycle controller for one tenant session

Control flow:
    start(context)
      ├─ no tenant / not authenticated / offline → do nothing
      ├─ engine.attach()        observe local mutations
      ├─ engine.full_sync()     initial pull (or bootstrap)
      ├─ feed.subscribe(...)    data group + settings group
      └─ lifecycle.start()      polling fallback, deferred while backgrounded

    stop()
      unsubscribe both groups, stop the timer, detach the observer and
      discard snapshots. In-flight calls are not cancelled; the engine
      discards their results.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from storesync.client.sync.engine import ReconciliationEngine
from storesync.client.sync.lifecycle import LifecycleController
from storesync.client.sync.scheduler import PollingScheduler
from storesync.core.config import SyncSettings
from storesync.core.tables import TableGroup, tables_in_group
from storesync.core.types import AppState, SyncStatus

if TYPE_CHECKING:
    from storesync.client.api import RemoteGateway
    from storesync.client.store import LocalStateStore
    from storesync.client.sync.change_feed import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Inputs from authentication and tenant resolution.

    Attributes:
        tenant_id: Tenant identifier, None when not resolved.
        authenticated: Whether a user is signed in.
        offline_mode: Host app declared offline operation.
    """

    tenant_id: str | None
    authenticated: bool = True
    offline_mode: bool = False

    @property
    def can_sync(self) -> bool:
        return bool(self.tenant_id) and self.authenticated and not self.offline_mode


class SyncSession:
    """One tenant session of synchronization.

    Usage:
        session = SyncSession(gateway, store, feed=WebSocketChangeFeed(config))
        await session.start(SessionContext(tenant_id="biz-1"))
        ...
        session.handle_app_state(AppState.BACKGROUND)
        ...
        await session.stop()
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        store: LocalStateStore,
        feed: ChangeFeed | None = None,
        settings: SyncSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._feed = feed
        self._settings = settings or SyncSettings()
        self._clock = clock

        self._context: SessionContext | None = None
        self._engine: ReconciliationEngine | None = None
        self._scheduler: PollingScheduler | None = None
        self._lifecycle: LifecycleController | None = None
        self._subscriptions: list[Subscription] = []
        self._app_state = AppState.ACTIVE

    @property
    def active(self) -> bool:
        return self._engine is not None

    @property
    def context(self) -> SessionContext | None:
        return self._context

    @property
    def engine(self) -> ReconciliationEngine | None:
        return self._engine

    @property
    def scheduler(self) -> PollingScheduler | None:
        return self._scheduler

    @property
    def lifecycle(self) -> LifecycleController | None:
        return self._lifecycle

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    @property
    def status(self) -> SyncStatus:
        """Get the current session status."""
        engine = self._engine
        if engine is None:
            return SyncStatus.OFFLINE
        if engine.state.syncing:
            return SyncStatus.SYNCING
        if not engine.state.initialized and engine.stats.failures:
            return SyncStatus.ERROR
        return SyncStatus.IDLE

    async def start(self, context: SessionContext) -> bool:
        """Start synchronization for a tenant.

        Returns:
            False if the context does not allow syncing.
        """
        if self.active:
            logger.warning("Sync session already running")
            return True

        self._context = context
        if not context.can_sync:
            logger.info("Sync not started (tenant, auth or offline mode)")
            return False

        tenant_id = str(context.tenant_id)
        logger.info("Starting sync session for tenant %s", tenant_id)

        engine = ReconciliationEngine(
            self._gateway,
            self._store,
            tenant_id,
            primary_table=self._settings.primary_table,
            clock=self._clock,
        )
        self._engine = engine
        self._scheduler = PollingScheduler(
            engine,
            interval=self._settings.poll_interval,
            quiet_period=self._settings.realtime_quiet_period,
            clock=self._clock,
        )
        self._lifecycle = LifecycleController(
            self._scheduler,
            resume_on_active=self._settings.resume_polling_on_active,
            state=self._app_state,
        )

        engine.attach()
        await engine.full_sync()
        if self._engine is not engine:
            # Stopped while the initial sync was in flight
            return False

        if not await self._subscribe(tenant_id, engine):
            return False

        self._lifecycle.start()
        return True

    async def _subscribe(self, tenant_id: str, engine: ReconciliationEngine) -> bool:
        """Open the data and settings channels.

        Returns:
            False if the session was stopped while subscribing.
        """
        if self._feed is None:
            logger.info("No change feed configured, relying on polling")
            return True
        for group in (TableGroup.DATA, TableGroup.SETTINGS):
            tables = [spec.table for spec in tables_in_group(group)]
            try:
                subscription = await self._feed.subscribe(
                    tenant_id, group, tables, engine.on_change_event
                )
            except Exception as e:
                logger.warning("Could not subscribe to %s changes: %s", group.value, e)
                continue
            if self._engine is not engine:
                # Stopped while subscribing
                await _close_quietly(subscription)
                return False
            self._subscriptions.append(subscription)
        return True

    async def stop(self) -> None:
        """Tear down the session."""
        engine, self._engine = self._engine, None
        if engine is None:
            return

        scheduler, self._scheduler = self._scheduler, None
        subscriptions, self._subscriptions = self._subscriptions, []
        self._lifecycle = None

        if scheduler is not None:
            scheduler.stop()
        engine.close()
        for subscription in subscriptions:
            await _close_quietly(subscription)
        logger.info("Sync session stopped for tenant %s", engine.tenant_id)

    async def update_context(self, context: SessionContext) -> bool:
        """Apply a new tenant/auth/offline context, restarting if it changed.

        Returns:
            Whether the session is running afterwards.
        """
        if context == self._context and self.active:
            return True
        await self.stop()
        return await self.start(context)

    def handle_app_state(self, state: AppState) -> None:
        """Forward an application state transition to the lifecycle controller.

        The last state is kept to seed the controller of the next session.
        """
        self._app_state = state
        if self._lifecycle is not None:
            self._lifecycle.handle_app_state(state)


async def _close_quietly(subscription: Subscription) -> None:
    try:
        await subscription.close()
    except Exception as e:
        logger.warning("Error closing change subscription: %s", e)
