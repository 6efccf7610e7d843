"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError: Base exception for engine failures
- SyncState: Process-wide sync flags (initialized, syncing, last realtime event)
- SyncStats: Engine counters
- SyncResult: Result of a full or table-scoped sync
- ChangeKind, ChangeEvent: Change notification types
- DeletionPlan: Outcome of diffing a collection against its snapshot
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class SyncError(Exception):
    """Base exception for sync errors."""


@dataclass
class SyncState:
    """Process-wide sync flags for one tenant session.

    Attributes:
        initialized: First full sync completed.
        syncing: A reconciliation is in flight (single mutex).
        last_realtime_at: Clock value of the most recent change event.
    """

    initialized: bool = False
    syncing: bool = False
    last_realtime_at: float | None = None


@dataclass
class SyncStats:
    """Statistics for the reconciliation engine."""

    full_syncs: int = 0
    table_syncs: int = 0
    dropped_requests: int = 0
    failures: int = 0
    bootstraps: int = 0
    deletions_propagated: int = 0
    deletions_suppressed: int = 0
    records_pushed: int = 0


class SyncKind(str, Enum):
    """Scope of a sync run."""

    FULL = "full"
    TABLE = "table"


@dataclass
class SyncResult:
    """Result of a completed sync.

    Attributes:
        kind: Full or table-scoped.
        tables: Backend tables that were fetched and applied.
        counts: Number of local items per collection after the sync.
        bootstrapped: The primary collection was seeded from local state.
    """

    kind: SyncKind
    tables: list[str]
    counts: dict[str, int] = field(default_factory=dict)
    bootstrapped: bool = False


class ChangeKind(str, Enum):
    """Kind of row change reported by the backend."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """Notification that a table changed on the backend."""

    table: str
    kind: ChangeKind = ChangeKind.UPDATE
    tenant_id: str | None = None


@dataclass
class DeletionPlan:
    """Diff of a collection against its previous snapshot.

    Attributes:
        table: Backend table name.
        removed: Ids present in the snapshot but no longer local.
        added: Ids present locally but not in the snapshot.
        suppressed: Removal was classified as a local store reset.
    """

    table: str
    removed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    suppressed: bool = False

    @property
    def has_deletions(self) -> bool:
        """Whether remote deletions must be issued."""
        return bool(self.removed) and not self.suppressed


# Type alias for change event handlers
ChangeHandler = Callable[[ChangeEvent], None]
