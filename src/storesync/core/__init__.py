"""Core module - Shared configuration, enums and the table registry."""

from storesync.core.config import BackendConfig, SyncSettings
from storesync.core.tables import (
    ALL_TABLES,
    BUSINESS_SETTINGS_ID,
    DATA_TABLES,
    SETTINGS_TABLES,
    RecordShape,
    TableGroup,
    TableSpec,
    get_table,
    slugify,
    tables_in_group,
)
from storesync.core.types import AppState, SyncStatus

__all__ = [
    # Config
    "BackendConfig",
    "SyncSettings",
    # Tables
    "ALL_TABLES",
    "BUSINESS_SETTINGS_ID",
    "DATA_TABLES",
    "SETTINGS_TABLES",
    "RecordShape",
    "TableGroup",
    "TableSpec",
    "get_table",
    "slugify",
    "tables_in_group",
    # Types
    "AppState",
    "SyncStatus",
]
