"""Shared types for storesync.

This module defines enums used by the session, the lifecycle controller
and the CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Sync status of a session.

    Reported by SyncSession and displayed by the CLI.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class AppState(str, Enum):
    """Foreground/background state of the host application."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"
