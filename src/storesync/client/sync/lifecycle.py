"""Foreground/background handling for the polling timer.

On INACTIVE or BACKGROUND the polling timer is paused. Realtime
subscriptions are left alone: whether the transport keeps them alive while
backgrounded is platform-dependent, and the channel reconnects on its own.

On ACTIVE nothing is restarted unless ``resume_on_active`` is set. Without
it the timer only comes back when the owning session restarts (tenant or
auth change), which leaves a resumed app relying on realtime events alone.

A session started while the app is not active does not start the timer
until the app first becomes active.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from storesync.core.types import AppState

if TYPE_CHECKING:
    from storesync.client.sync.scheduler import PollingScheduler

logger = logging.getLogger(__name__)


class LifecycleController:
    """Maps application state transitions onto the polling timer."""

    def __init__(
        self,
        scheduler: PollingScheduler,
        resume_on_active: bool = False,
        state: AppState = AppState.ACTIVE,
    ) -> None:
        """Initialize the controller.

        Args:
            scheduler: Polling timer to pause and resume.
            resume_on_active: Restart the timer when the app returns to the
                foreground.
            state: Current application state of the host.
        """
        self._scheduler = scheduler
        self._resume_on_active = resume_on_active
        self._state = state
        self._start_pending = False

    @property
    def state(self) -> AppState:
        return self._state

    def start(self) -> None:
        """Start the timer now, or on the first ACTIVE state if backgrounded."""
        if self._state == AppState.ACTIVE:
            self.resume()
        else:
            self._start_pending = True
            logger.info("App is %s, polling deferred", self._state.value)

    def handle_app_state(self, state: AppState) -> None:
        """React to an application state transition."""
        previous, self._state = self._state, state
        if state == previous:
            return

        logger.debug("App state %s -> %s", previous.value, state.value)
        if state in (AppState.INACTIVE, AppState.BACKGROUND):
            self.pause()
        elif state == AppState.ACTIVE and (self._resume_on_active or self._start_pending):
            self.resume()

    def pause(self) -> None:
        """Cancel the polling timer."""
        if self._scheduler.running:
            self._scheduler.stop()
            logger.info("Polling paused")

    def resume(self) -> None:
        """Restart the polling timer."""
        self._start_pending = False
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Polling resumed")
