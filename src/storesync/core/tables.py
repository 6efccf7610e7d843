"""Closed registry of synchronized tables.

Every table the client synchronizes is declared here. The set is fixed:
change subscriptions, full syncs and lookups all enumerate these tuples,
never a dynamic list.

Two groups exist:
- data: transactional records wrapped in an ``{id, data}`` envelope
- settings: configuration collections, including name-bearing category rows
  and the business settings singleton
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class TableGroup(str, Enum):
    """Logical subscription group of a table."""

    DATA = "data"
    SETTINGS = "settings"


class RecordShape(Enum):
    """How rows of a table map to local items."""

    ENVELOPE = "envelope"  # {id, data} row, local item is data
    NAME = "name"  # name-bearing row, local item is the plain name string
    SINGLETON = "singleton"  # one row keyed by a constant id, local item is a dict


BUSINESS_SETTINGS_ID = "business"


@dataclass(frozen=True)
class TableSpec:
    """Static description of one synchronized table.

    Attributes:
        collection: Key of the slice in the local store.
        table: Backend table name.
        group: Subscription group.
        shape: Row shape.
        push_on_create: Upsert newly added local items as soon as they appear.
    """

    collection: str
    table: str
    group: TableGroup
    shape: RecordShape = RecordShape.ENVELOPE
    push_on_create: bool = False

    @property
    def diffable(self) -> bool:
        """Whether removals from this collection are propagated by diff."""
        return self.shape is not RecordShape.SINGLETON


DATA_TABLES: tuple[TableSpec, ...] = (
    TableSpec("products", "products", TableGroup.DATA),
    TableSpec("orders", "orders", TableGroup.DATA),
    TableSpec("customers", "customers", TableGroup.DATA),
    TableSpec("restock_logs", "restock_logs", TableGroup.DATA, push_on_create=True),
    TableSpec("procurements", "procurements", TableGroup.DATA),
    TableSpec("expenses", "expenses", TableGroup.DATA),
    TableSpec("audit_logs", "audit_logs", TableGroup.DATA, push_on_create=True),
)

SETTINGS_TABLES: tuple[TableSpec, ...] = (
    TableSpec("order_statuses", "order_statuses", TableGroup.SETTINGS),
    TableSpec("sale_sources", "sale_sources", TableGroup.SETTINGS),
    TableSpec("custom_services", "custom_services", TableGroup.SETTINGS),
    TableSpec("payment_methods", "payment_methods", TableGroup.SETTINGS),
    TableSpec("logistics_carriers", "logistics_carriers", TableGroup.SETTINGS),
    TableSpec(
        "categories", "product_categories", TableGroup.SETTINGS, shape=RecordShape.NAME
    ),
    TableSpec("expense_categories", "expense_categories", TableGroup.SETTINGS),
    TableSpec(
        "business_settings",
        "business_settings",
        TableGroup.SETTINGS,
        shape=RecordShape.SINGLETON,
    ),
)

ALL_TABLES: tuple[TableSpec, ...] = DATA_TABLES + SETTINGS_TABLES

_BY_TABLE = {spec.table: spec for spec in ALL_TABLES}
_BY_COLLECTION = {spec.collection: spec for spec in ALL_TABLES}

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def get_table(name: str) -> TableSpec:
    """Look up a table by backend table name or local collection name.

    Raises:
        KeyError: If the name is not part of the registry.
    """
    spec = _BY_TABLE.get(name) or _BY_COLLECTION.get(name)
    if spec is None:
        raise KeyError(f"Unknown table: {name}")
    return spec


def tables_in_group(group: TableGroup) -> tuple[TableSpec, ...]:
    """Get the tables belonging to a subscription group."""
    return DATA_TABLES if group is TableGroup.DATA else SETTINGS_TABLES


def slugify(name: str) -> str:
    """Derive the identifier of a name-bearing settings row.

    "New Arrivals" -> "new-arrivals". Returns an empty string when the name
    has no alphanumeric characters.
    """
    return _SLUG_SEPARATORS.sub("-", name.strip().lower()).strip("-")
