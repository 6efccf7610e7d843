"""Synchronization engine.

Architecture:
    ChangeFeed ──┐
                 ├─► ReconciliationEngine ─► LocalStateStore
    PollingScheduler ┘        │
                              └─ DeletionGuard ─► RemoteGateway

Components:
- **ReconciliationEngine**: Full sync, table-scoped sync, bootstrap rule
- **SnapshotTracker**: Last reconciled id set per collection
- **DeletionGuard**: Diff-based delete propagation with bulk-wipe protection
- **ChangeFeed**: Realtime change notifications (WebSocketChangeFeed)
- **PollingScheduler**: Full sync fallback when realtime is quiet
- **LifecycleController**: Pauses polling when the app is backgrounded
"""

from storesync.client.sync.change_feed import (
    ChangeFeed,
    ChannelSubscription,
    Subscription,
    WebSocketChangeFeed,
)
from storesync.client.sync.engine import ReconciliationEngine
from storesync.client.sync.guard import DeletionGuard
from storesync.client.sync.lifecycle import LifecycleController
from storesync.client.sync.scheduler import PollingScheduler
from storesync.client.sync.snapshot import SnapshotTracker
from storesync.client.sync.types import (
    ChangeEvent,
    ChangeHandler,
    ChangeKind,
    DeletionPlan,
    SyncError,
    SyncKind,
    SyncResult,
    SyncState,
    SyncStats,
)

__all__ = [
    # Types
    "ChangeEvent",
    "ChangeHandler",
    "ChangeKind",
    "DeletionPlan",
    "SyncError",
    "SyncKind",
    "SyncResult",
    "SyncState",
    "SyncStats",
    # Components
    "ChangeFeed",
    "ChannelSubscription",
    "DeletionGuard",
    "LifecycleController",
    "PollingScheduler",
    "ReconciliationEngine",
    "SnapshotTracker",
    "Subscription",
    "WebSocketChangeFeed",
]
