"""Outbound propagation of local deletions and creations.

This module provides:
- DeletionGuard: Diffs a collection against its snapshot and issues remote
  deletes (and pushes for push-on-create collections)

Bulk-wipe protection:
    A collection whose identifier set drops from non-empty to empty in one
    observation is treated as a local store reset (logout, crash recovery,
    accidental clear), never as the user deleting everything. No remote
    delete is issued; the snapshot is still updated so the reset does not
    trigger again. Partial removals are propagated as-is.

    | previous | current | remote action                          |
    |----------|---------|----------------------------------------|
    | {a,b,c}  | {a,c}   | delete_by_ids([b])                     |
    | {a,b,c}  | {}      | none (warning logged)                  |
    | {}       | {}      | none                                   |
    | {a}      | {a,d}   | upsert d if the table pushes on create |
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from storesync.client.api import APIError
from storesync.client.sync.adapters import item_id, item_ids, items_to_rows
from storesync.client.sync.types import DeletionPlan, SyncStats

if TYPE_CHECKING:
    from storesync.client.api import RemoteGateway
    from storesync.client.sync.snapshot import SnapshotTracker
    from storesync.core.tables import TableSpec

logger = logging.getLogger(__name__)


class DeletionGuard:
    """Safety wrapper around remote deletion propagation.

    Usage:
        guard = DeletionGuard(gateway, snapshots)
        plan = guard.plan(spec, items)          # synchronous, updates snapshot
        await guard.execute(tenant_id, spec, plan, items)
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        snapshots: SnapshotTracker,
        stats: SyncStats | None = None,
    ) -> None:
        self._gateway = gateway
        self._snapshots = snapshots
        self._stats = stats or SyncStats()

    @property
    def stats(self) -> SyncStats:
        return self._stats

    def plan(self, spec: TableSpec, items: Any) -> DeletionPlan:
        """Diff a collection against its snapshot and record the new snapshot.

        Args:
            spec: Table being observed.
            items: Current local items of the collection.

        Returns:
            The deletion plan. ``suppressed`` is set for a bulk wipe.
        """
        if not spec.diffable:
            return DeletionPlan(table=spec.table)

        current = item_ids(spec, items)
        removed, added = self._snapshots.diff(spec.table, current)
        self._snapshots.update(spec.table, current)

        plan = DeletionPlan(
            table=spec.table,
            removed=sorted(removed),
            added=sorted(added) if spec.push_on_create else [],
        )
        if not current and removed:
            plan.suppressed = True
            self._stats.deletions_suppressed += len(removed)
            logger.warning(
                "Refusing to delete all %d %s rows remotely: local collection "
                "went from non-empty to empty (suspected store reset)",
                len(removed),
                spec.table,
            )
        return plan

    async def execute(
        self,
        tenant_id: str,
        spec: TableSpec,
        plan: DeletionPlan,
        items: Any,
    ) -> None:
        """Issue the remote calls of a plan.

        Failures are logged; the snapshot is not rolled back.
        """
        if plan.has_deletions:
            try:
                await self._gateway.delete_by_ids(spec.table, tenant_id, plan.removed)
                self._stats.deletions_propagated += len(plan.removed)
                logger.info("Deleted %d %s rows remotely", len(plan.removed), spec.table)
            except APIError as e:
                logger.warning("Failed to delete %s rows %s: %s", spec.table, plan.removed, e)
            except Exception:
                logger.exception("Unexpected error deleting %s rows", spec.table)

        if plan.added:
            added = set(plan.added)
            new_items = [item for item in items or [] if item_id(spec, item) in added]
            rows = items_to_rows(spec, new_items)
            try:
                await self._gateway.upsert(spec.table, tenant_id, rows)
                self._stats.records_pushed += len(rows)
                logger.info("Pushed %d new %s rows", len(rows), spec.table)
            except APIError as e:
                logger.warning("Failed to push new %s rows: %s", spec.table, e)
            except Exception:
                logger.exception("Unexpected error pushing %s rows", spec.table)

    async def observe(self, tenant_id: str, spec: TableSpec, items: Any) -> DeletionPlan:
        """Plan and execute in one step."""
        plan = self.plan(spec, items)
        await self.execute(tenant_id, spec, plan, items)
        return plan
