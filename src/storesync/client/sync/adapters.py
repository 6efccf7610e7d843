"""Row/item adapters between backend rows and local collections.

Data tables and most settings tables use an ``{id, data}`` envelope: the
local item is ``data``. Category names are plain strings locally; their
identifier is the slug of the name. The business settings singleton is a
single dict stored under a constant id.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from storesync.client.api import Row
from storesync.core.tables import BUSINESS_SETTINGS_ID, RecordShape, TableSpec, slugify

logger = logging.getLogger(__name__)


def rows_to_items(spec: TableSpec, rows: Iterable[Row]) -> Any:
    """Convert fetched rows into the local representation of a collection.

    Returns:
        A list of items, or for the singleton a dict (None when absent).
    """
    if spec.shape is RecordShape.SINGLETON:
        return _singleton_from_rows(rows)
    if spec.shape is RecordShape.NAME:
        return _names_from_rows(spec, rows)

    items = []
    for row in rows:
        data = row.get("data")
        if not isinstance(data, dict):
            logger.warning("Skipping %s row %s without data", spec.table, row.get("id"))
            continue
        item = dict(data)
        item.setdefault("id", row.get("id"))
        items.append(item)
    return items


def items_to_rows(spec: TableSpec, items: Any) -> list[Row]:
    """Convert local items into rows for an upsert."""
    if spec.shape is RecordShape.SINGLETON:
        if not items:
            return []
        return [{"id": BUSINESS_SETTINGS_ID, "data": dict(items)}]

    if spec.shape is RecordShape.NAME:
        rows: dict[str, Row] = {}
        for name in items or []:
            slug = slugify(name)
            if not slug:
                logger.warning("Skipping category %r without a usable slug", name)
                continue
            rows[slug] = {"id": slug, "name": name}
        return list(rows.values())

    return [{"id": str(item["id"]), "data": item} for item in items or []]


def item_id(spec: TableSpec, item: Any) -> str:
    """Get the diffing identifier of one local item."""
    if spec.shape is RecordShape.NAME:
        return slugify(item)
    return str(item["id"])


def item_ids(spec: TableSpec, items: Any) -> set[str]:
    """Get the identifier set of a collection.

    The singleton is exempt from diffing and always yields an empty set.
    """
    if not spec.diffable or not items:
        return set()
    ids = {item_id(spec, item) for item in items}
    ids.discard("")
    return ids


def _singleton_from_rows(rows: Iterable[Row]) -> dict[str, Any] | None:
    rows = list(rows)
    for row in rows:
        if row.get("id") == BUSINESS_SETTINGS_ID:
            data = row.get("data")
            return dict(data) if isinstance(data, dict) else None
    if rows:
        logger.warning("No business settings row with id %r", BUSINESS_SETTINGS_ID)
    return None


def _names_from_rows(spec: TableSpec, rows: Iterable[Row]) -> list[str]:
    names: list[str] = []
    for row in rows:
        name = row.get("name")
        data = row.get("data")
        if name is None and isinstance(data, dict):
            name = data.get("name")
        elif name is None and isinstance(data, str):
            name = data
        if not name:
            logger.warning("Skipping %s row %s without name", spec.table, row.get("id"))
            continue
        names.append(name)
    return names
