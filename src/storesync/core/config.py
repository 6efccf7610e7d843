"""Shared configuration classes for storesync.

This module defines configuration classes used by the gateway, the change
feed and the sync session.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class BackendConfig:
    """Configuration for connecting to the relational backend.

    Used by both the HTTP gateway (HTTPGateway) and the WebSocket change
    feed (WebSocketChangeFeed) to ensure consistent connection settings.

    Attributes:
        server_url: Base URL of the backend (e.g., "https://db.example.com").
        token: API token sent with every request.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def rest_url(self) -> str:
        """Get the base URL of the table REST API."""
        return f"{self.server_url}/rest/v1"

    @property
    def ws_url(self) -> str:
        """Get WebSocket URL for change notifications.

        Returns:
            WebSocket URL with token in path.
        """
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return f"{url}/ws/changes/{self.token}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS.

        Returns:
            True if backend uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncSettings:
    """Timing and policy settings for a sync session.

    Attributes:
        poll_interval: Seconds between polling ticks.
        realtime_quiet_period: A tick only runs a full sync when no change
            event arrived for longer than this many seconds.
        primary_table: Backend table checked by the bootstrap rule.
        resume_polling_on_active: Restart the polling timer when the app
            returns to the foreground.
    """

    poll_interval: float = 300.0
    realtime_quiet_period: float = 600.0
    primary_table: str = "products"
    resume_polling_on_active: bool = False

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.realtime_quiet_period < 0:
            raise ValueError("realtime_quiet_period must not be negative")
