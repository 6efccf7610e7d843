"""Domain mutators: the write path used by the host application.

Writes land in the local store first. Saves are then upserted remotely;
removals are local only and reach the backend through the DeletionGuard,
which sees them when it diffs the collection. Tables that push on create
leave the upsert of new records to the guard as well.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from storesync.client.api import APIError
from storesync.client.sync.adapters import item_id, items_to_rows
from storesync.core.tables import RecordShape, get_table

if TYPE_CHECKING:
    from storesync.client.api import RemoteGateway
    from storesync.client.store import LocalStateStore
    from storesync.core.tables import TableSpec

logger = logging.getLogger(__name__)


class RecordMutator:
    """Insert/update/remove records of synchronized collections."""

    def __init__(
        self,
        store: LocalStateStore,
        gateway: RemoteGateway,
        tenant_id: str,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._tenant_id = tenant_id

    async def save(self, collection: str, record: Mapping[str, Any]) -> bool:
        """Insert or replace a record by id, locally then remotely.

        Records of push-on-create tables are only upserted here when they
        already existed; creations are pushed by the DeletionGuard.

        Returns:
            False if the remote upsert failed (the local write is kept).
        """
        spec = _envelope_table(collection)
        record = dict(record)
        record_id = str(record["id"])

        items = list(self._store.get(spec.collection) or [])
        for index, existing in enumerate(items):
            if item_id(spec, existing) == record_id:
                items[index] = record
                is_new = False
                break
        else:
            items.append(record)
            is_new = True
        self._store.set(spec.collection, items)

        # New records of push-on-create tables are pushed by the guard
        if spec.push_on_create and is_new:
            return True
        return await self._upsert(spec, [record])

    def remove(self, collection: str, record_id: str) -> bool:
        """Remove a record locally.

        Returns:
            False if no record with that id exists.
        """
        spec = _envelope_table(collection)
        items = list(self._store.get(spec.collection) or [])
        remaining = [item for item in items if item_id(spec, item) != str(record_id)]
        if len(remaining) == len(items):
            return False
        self._store.set(spec.collection, remaining)
        return True

    async def add_category(self, name: str) -> bool:
        """Add a product category name."""
        spec = get_table("categories")
        name = name.strip()
        names = list(self._store.get(spec.collection) or [])
        if not item_id(spec, name) or name in names:
            return False
        self._store.set(spec.collection, [*names, name])
        return await self._upsert(spec, [name])

    def remove_category(self, name: str) -> bool:
        """Remove a product category name locally."""
        spec = get_table("categories")
        names = list(self._store.get(spec.collection) or [])
        if name not in names:
            return False
        self._store.set(spec.collection, [n for n in names if n != name])
        return True

    async def save_business_settings(self, values: Mapping[str, Any]) -> bool:
        """Merge values into the business settings singleton and upsert it."""
        spec = get_table("business_settings")
        settings = {**(self._store.get(spec.collection) or {}), **values}
        self._store.set(spec.collection, settings)
        return await self._upsert(spec, settings)

    async def _upsert(self, spec: TableSpec, items: Any) -> bool:
        rows = items_to_rows(spec, items)
        try:
            await self._gateway.upsert(spec.table, self._tenant_id, rows)
        except APIError as e:
            logger.warning("Failed to save %s remotely: %s", spec.table, e)
            return False
        return True


def _envelope_table(collection: str) -> TableSpec:
    spec = get_table(collection)
    if spec.shape is not RecordShape.ENVELOPE:
        raise ValueError(f"{collection} does not hold identified records")
    return spec
