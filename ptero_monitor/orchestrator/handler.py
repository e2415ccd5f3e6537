"""
Event Stream Handler

Reacts to status events from a server's websocket while an update cycle
is waiting. Handlers never touch the orchestrator's state; they only
resolve the cycle's completion signal, close the session, or spawn the
post-update sequence.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine

from ..common.exceptions import EventStreamError
from .contracts import (
    EVENT_AUTH_SUCCESS,
    EVENT_DAEMON_ERROR,
    EVENT_ERROR,
    EVENT_JWT_ERROR,
    EVENT_STATUS,
    EVENT_TOKEN_EXPIRED,
    EVENT_TOKEN_EXPIRING,
    STATUS_STARTING,
    EventStreamSession,
    RemoteControl,
    StatusEvent,
    auth_message,
)
from .cycle import UpdateCycle

ERROR_EVENTS = {EVENT_ERROR, EVENT_JWT_ERROR, EVENT_DAEMON_ERROR}


class StatusEventHandler:
    """
    State machine for inbound websocket events of one cycle.

    Args:
        cycle: The live update cycle
        session: The cycle's event stream session
        control: Used to fetch a fresh websocket token
        start_post_update: Builds the post-update coroutine for the cycle
        logger: Target-bound logger
    """

    def __init__(
        self,
        cycle: UpdateCycle,
        session: EventStreamSession,
        control: RemoteControl,
        start_post_update: Callable[[], Coroutine[Any, Any, None]],
        logger: logging.LoggerAdapter,
    ):
        self.cycle = cycle
        self.session = session
        self.control = control
        self.start_post_update = start_post_update
        self.logger = logger

        self._reauth_task: asyncio.Task | None = None

    async def authenticate(self) -> None:
        """Send the auth frame with the session's current token"""
        if self.session.is_closed or not self.session.token:
            self.logger.warning("Cannot send websocket auth: session closed or token missing")
            return

        try:
            await self.session.send(auth_message(self.session.token))
        except EventStreamError as e:
            self.logger.warning(f"Cannot send websocket auth: {e}")
            return
        self.logger.debug("Sent websocket authentication message")

    async def pump(self) -> None:
        """Consume the session's events until it is closed"""
        async for event in self.session.events():
            await self._await_reauth()
            try:
                await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Error handling websocket event '{event.name}': {e}", exc_info=True)

    async def handle(self, event: StatusEvent) -> None:
        name = event.name.lower()

        if name == EVENT_AUTH_SUCCESS:
            self.logger.info("Websocket authentication successful")

        elif name == EVENT_STATUS:
            self._on_status(event.first_arg or "unknown")

        elif name == EVENT_TOKEN_EXPIRING:
            self.logger.warning("Websocket token expiring. Requesting new token.")
            self._start_reauth()

        elif name == EVENT_TOKEN_EXPIRED:
            self.logger.error("Websocket token expired. Closing connection.")
            self.cycle.fail()
            await self.session.close()

        elif name in ERROR_EVENTS:
            self.logger.error(f"Received error via websocket: {', '.join(event.args)}")

        else:
            self.logger.debug(f"Ignoring websocket event '{name}'")

    def _on_status(self, status: str) -> None:
        self.logger.info(f"Server status update: {status}")

        if status != STATUS_STARTING:
            return
        if self.cycle.completion.done():
            self.logger.debug("Cycle already resolved, ignoring 'starting'")
            return
        if self.cycle.post_update_started:
            self.logger.debug("Post-update sequence already running, ignoring 'starting'")
            return

        self.logger.warning(
            "Server is 'starting'. Initiating post-update sequence (kill -> reinstall -> start)."
        )
        self.cycle.post_update_task = asyncio.create_task(
            self.start_post_update(),
            name=f"post-update:{self.cycle.latest_build_id}",
        )

    def _start_reauth(self) -> None:
        # A newer expiry warning supersedes any refresh still in flight
        if self._reauth_task is not None and not self._reauth_task.done():
            self._reauth_task.cancel()
        self._reauth_task = asyncio.create_task(self._refresh_token())

    async def _refresh_token(self) -> None:
        try:
            info = await self.control.event_stream_info()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Error requesting new websocket token: {e}")
            info = None

        if info is None or not info.token:
            self.logger.error("Failed to get new websocket token after expiry warning")
            self.cycle.fail()
            await self.session.close()
            return

        self.session.token = info.token
        await self.authenticate()

    async def _await_reauth(self) -> None:
        """Hold back further events until a pending re-auth has finished"""
        task = self._reauth_task
        if task is None or task.done():
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        except Exception as e:
            self.logger.error(f"Websocket re-authentication failed: {e}")

    async def cancel_pending(self) -> None:
        """Cancel an in-flight re-auth task"""
        task = self._reauth_task
        self._reauth_task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug(f"Re-auth task ended with error: {task.exception()}")
