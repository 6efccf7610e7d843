"""Change feed for real-time table notifications.

This module provides:
- ChangeFeed / Subscription: Protocols the session depends on
- WebSocketChangeFeed: Opens one channel per table group over WebSockets
- ChannelSubscription: One live channel with automatic reconnection

Architecture:
    Backend ─push─► ChannelSubscription ─ChangeEvent─► handler
                          │                         (ReconciliationEngine.on_change_event)
                   (reconnect loop)

Wire protocol (JSON text frames):
    client → server: {"type": "subscribe", "tenant_id": "...", "group": "data",
                      "tables": ["products", ...]}
    server → client: {"type": "change", "table": "orders",
                      "event": "INSERT|UPDATE|DELETE", "tenant_id": "..."}

Events are delivered at least once, best effort. Changes missed while
disconnected are healed by the polling fallback.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

import websockets
from websockets.exceptions import WebSocketException

from storesync.client.sync.types import ChangeEvent, ChangeHandler, ChangeKind
from storesync.core.tables import TableGroup

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from storesync.core.config import BackendConfig

logger = logging.getLogger(__name__)


class Subscription(Protocol):
    """Handle to a live change subscription."""

    async def close(self) -> None:
        """Stop receiving events."""
        ...


class ChangeFeed(Protocol):
    """Source of backend change notifications, filtered by tenant."""

    async def subscribe(
        self,
        tenant_id: str,
        group: TableGroup,
        tables: Sequence[str],
        handler: ChangeHandler,
    ) -> Subscription:
        """Subscribe to changes of the given tables."""
        ...


class ChannelSubscription:
    """WebSocket channel delivering change events for one table group.

    Usage:
        subscription = ChannelSubscription(config, "biz-1", TableGroup.DATA,
                                           ["products", "orders"], handler)
        subscription.start()
        ...
        await subscription.close()
    """

    def __init__(
        self,
        config: BackendConfig,
        tenant_id: str,
        group: TableGroup,
        tables: Sequence[str],
        handler: ChangeHandler,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the channel.

        Args:
            config: Backend configuration with URL and token.
            tenant_id: Tenant the channel is filtered on.
            group: Table group carried by this channel.
            tables: Tables to receive changes for.
            handler: Called with each ChangeEvent.
            reconnect_delay: Delay between reconnection attempts.
        """
        self._config = config
        self._tenant_id = tenant_id
        self._group = group
        self._tables = frozenset(tables)
        self._handler = handler
        self._reconnect_delay = reconnect_delay

        # Connection state
        self._ws: ClientConnection | None = None
        self._connected = False
        self._should_run = False

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()  # For interruptible sleep

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._connected

    @property
    def group(self) -> TableGroup:
        return self._group

    @property
    def tables(self) -> frozenset[str]:
        return self._tables

    @property
    def ws_url(self) -> str:
        """Get the WebSocket URL."""
        return self._config.ws_url

    def start(self) -> None:
        """Start the connection loop on the running event loop."""
        if self._task and not self._task.done():
            logger.warning("%s channel already running", self._group.value)
            return

        self._should_run = True
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._connection_loop(), name=f"ChangeFeed-{self._group.value}"
        )
        logger.info("Change feed %s channel started", self._group.value)

    async def close(self) -> None:
        """Stop the channel and close the connection."""
        self._should_run = False
        self._stop_event.set()

        await self._close_connection()

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        logger.info("Change feed %s channel stopped", self._group.value)

    async def _connection_loop(self) -> None:
        """Main connection loop with automatic reconnection."""
        was_connected = False

        while self._should_run:
            try:
                await self._connect()

                if self._connected:
                    if was_connected:
                        logger.info("Change feed %s reconnected", self._group.value)
                    was_connected = True
                    await self._listen_for_messages()

            except WebSocketException as e:
                if was_connected:
                    logger.warning("Change feed %s disconnected: %s", self._group.value, e)
                logger.debug("WebSocket error: %s", e)
            except (ConnectionRefusedError, OSError) as e:
                if was_connected:
                    logger.warning("Change feed %s connection lost", self._group.value)
                logger.debug("Connection error: %s", e)
            except Exception as e:
                logger.warning("Change feed %s error: %s", self._group.value, e)
                logger.debug("Full traceback:", exc_info=True)

            if not self._should_run:
                break

            self._connected = False

            logger.info(
                "Change feed %s reconnecting in %.0fs...",
                self._group.value,
                self._reconnect_delay,
            )
            # Interruptible sleep - wakes on close()
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._reconnect_delay,
                )
                break
            except TimeoutError:
                pass

    async def _connect(self) -> None:
        """Establish the WebSocket connection and send the subscription."""
        ssl_context: ssl.SSLContext | None = None
        if self.ws_url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            self.ws_url,
            ssl=ssl_context,
            open_timeout=10,
            close_timeout=5,
        )
        await self._ws.send(json.dumps(self.subscribe_message()))
        self._connected = True
        logger.info("Change feed %s connected", self._group.value)

    def subscribe_message(self) -> dict[str, object]:
        """Build the subscription frame sent after connecting."""
        return {
            "type": "subscribe",
            "tenant_id": self._tenant_id,
            "group": self._group.value,
            "tables": sorted(self._tables),
        }

    async def _listen_for_messages(self) -> None:
        """Listen for incoming messages from the backend."""
        while self._should_run and self._ws:
            try:
                message = await asyncio.wait_for(
                    self._ws.recv(),
                    timeout=30.0,  # Check should_run periodically
                )
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                await self._handle_message(message)

            except TimeoutError:
                continue
            except websockets.ConnectionClosed:
                logger.info("Change feed %s closed by server", self._group.value)
                break

    async def _handle_message(self, message: str) -> None:
        """Handle an incoming message.

        Only ``change`` messages for this tenant and a subscribed table are
        turned into events; everything else is ignored.

        Args:
            message: Raw message string.
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid message received: %s", message[:100])
            return

        if not isinstance(data, dict) or data.get("type") != "change":
            return

        table = data.get("table")
        action = data.get("event")
        if not table or not action:
            logger.warning("Invalid change message: %s", data)
            return

        tenant_id = data.get("tenant_id")
        if tenant_id is not None and tenant_id != self._tenant_id:
            logger.debug("Ignoring change for other tenant %s", tenant_id)
            return
        if table not in self._tables:
            logger.debug("Ignoring change on unsubscribed table %s", table)
            return

        try:
            kind = ChangeKind(str(action).upper())
        except ValueError:
            logger.warning("Unknown change event: %s", action)
            return

        self._emit(ChangeEvent(table=table, kind=kind, tenant_id=tenant_id))

    def _emit(self, event: ChangeEvent) -> None:
        try:
            self._handler(event)
        except Exception:
            logger.exception("Change handler failed for %s", event.table)

    async def _close_connection(self) -> None:
        """Close the WebSocket connection."""
        if self._ws:
            with contextlib.suppress(WebSocketException, OSError):
                await self._ws.close()
            self._ws = None
        self._connected = False


class WebSocketChangeFeed:
    """ChangeFeed implementation opening one WebSocket channel per group."""

    def __init__(self, config: BackendConfig, reconnect_delay: float = 5.0) -> None:
        self._config = config
        self._reconnect_delay = reconnect_delay

    async def subscribe(
        self,
        tenant_id: str,
        group: TableGroup,
        tables: Sequence[str],
        handler: ChangeHandler,
    ) -> ChannelSubscription:
        subscription = ChannelSubscription(
            self._config,
            tenant_id,
            group,
            tables,
            handler,
            reconnect_delay=self._reconnect_delay,
        )
        subscription.start()
        return subscription
