"""
Update Orchestrator

Per-server supervisory loop:
1. Poll the manifest and the server's running build
2. On mismatch, fetch the watchdog token and send the update command
3. Open the panel websocket and wait for the server to report "starting"
4. Run the post-update sequence (kill -> reinstall -> start -> notify)
5. Give up after 15 minutes without a result

Only one update cycle exists per server at a time; every exit path from
a cycle releases its websocket and returns the orchestrator to Idle.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

from ..common.config import TargetConfig, UpdateTimings, validate_target
from ..common.logging_setup import get_target_logger
from .contracts import (
    NotificationSink,
    RemoteControl,
    SessionFactory,
    VersionSource,
    WebSocketInfo,
)
from .cycle import (
    CycleOutcome,
    Idle,
    OrchestratorState,
    Running,
    UpdateCycle,
)
from .handler import StatusEventHandler
from .post_update import PostUpdateSequence


class UpdateOrchestrator:
    """
    Keeps one server on the latest published build.

    Usage:
        orchestrator = UpdateOrchestrator(target, versions, control, notifier, factory)
        task = asyncio.create_task(orchestrator.run())
        ...
        await orchestrator.stop()
    """

    def __init__(
        self,
        target: TargetConfig,
        versions: VersionSource,
        control: RemoteControl,
        notifier: NotificationSink,
        session_factory: SessionFactory,
        timings: UpdateTimings | None = None,
    ):
        self.target = target
        self.versions = versions
        self.control = control
        self.notifier = notifier
        self.session_factory = session_factory
        self.timings = timings or UpdateTimings()

        self.logger = get_target_logger(target.name, target.log_color)

        self._state: OrchestratorState = Idle()
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._checking = False

        # Observability
        self._last_check_at: datetime | None = None
        self._last_outcome: CycleOutcome | None = None
        self._latest_build_id: str | None = None
        self._running_build_id: str | None = None

        self.logger.info(f"Initializing orchestrator for server: {target.name}")

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_update_in_progress(self) -> bool:
        return isinstance(self._state, Running)

    @property
    def current_cycle(self) -> UpdateCycle | None:
        if isinstance(self._state, Running):
            return self._state.cycle
        return None

    @property
    def last_outcome(self) -> CycleOutcome | None:
        return self._last_outcome

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Poll until cancelled or stopped.

        Returns immediately when the target configuration is incomplete.
        Cancellation propagates as asyncio.CancelledError after cleanup.
        """
        self._task = asyncio.current_task()
        self.logger.info(f"Starting orchestrator for server: {self.target.name}")

        errors = validate_target(self.target)
        if errors:
            for error in errors:
                self.logger.error(f"Configuration error: {error}")
            self.logger.critical("Configuration is invalid. Orchestrator cannot start.")
            return

        try:
            await self._poll_loop()
        except asyncio.CancelledError:
            self.logger.warning("Orchestrator cancellation requested")
            raise
        finally:
            await self._abandon_cycle()
            self.logger.info(f"Stopping orchestrator for server: {self.target.name}")

    async def stop(self) -> None:
        """
        Stop polling and release any open websocket.

        Safe to call repeatedly and after run() has returned.
        """
        if self._stopped:
            return
        self._stopped = True

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            done, _ = await asyncio.wait({task}, timeout=self.timings.stop_grace_s)
            if not done:
                self.logger.warning("Orchestrator did not stop within grace period")

        await self._abandon_cycle()

    async def _poll_loop(self) -> None:
        while not self._stopped:
            if self.is_update_in_progress:
                self.logger.debug("Update process is ongoing. Waiting...")
                await asyncio.sleep(self.timings.busy_backoff_s)
                continue

            self.logger.info("Checking for updates...")

            try:
                await self.check_for_updates()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(
                    f"An unexpected error occurred during the update check cycle: {e}",
                    exc_info=True,
                )

            interval = self.target.check_interval_seconds
            self.logger.info(f"Next check in {interval}s")
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Update cycle driver
    # ------------------------------------------------------------------

    async def check_for_updates(self) -> CycleOutcome | None:
        """
        Compare builds and run an update cycle on mismatch.

        Returns:
            The cycle outcome, or None when no cycle was started
        """
        if self.is_update_in_progress or self._checking:
            self.logger.debug("Update check or update already in progress, skipping check")
            return None

        self._checking = True
        try:
            return await self._check_versions()
        finally:
            self._checking = False

    async def _check_versions(self) -> CycleOutcome | None:
        self._last_check_at = datetime.now(timezone.utc)

        latest = await self.versions.latest_build_id()
        if not latest:
            self.logger.warning("Could not determine the latest build from the manifest. Skipping check.")
            return None
        self._latest_build_id = latest
        self.logger.info(f"Latest manifest build ID: {latest}")

        running = await self.versions.running_build_id()
        if not running:
            self.logger.warning("Could not retrieve current server build version. Skipping check.")
            return None
        self._running_build_id = running
        self.logger.info(f"Current server build ID: {running}")

        if running.casefold() == latest.casefold():
            self.logger.info("Server is up-to-date")
            return None

        self.logger.warning(
            f"Server build ({running}) is outdated. Latest is {latest}. Starting update process."
        )

        cycle = UpdateCycle(latest_build_id=latest, running_build_id=running)
        self._state = Running(cycle)
        return await self._run_cycle(cycle)

    async def _run_cycle(self, cycle: UpdateCycle) -> CycleOutcome:
        outcome = CycleOutcome.FAILED
        handler: StatusEventHandler | None = None
        pump_task: asyncio.Task | None = None

        try:
            token = await self.control.issue_credential()
            if not token:
                self.logger.error("Failed to obtain watchdog token. Aborting update.")
                cycle.fail()
                return outcome
            cycle.credential = token
            self.logger.info("Obtained watchdog token")

            if not await self.control.issue_begin_update(token):
                self.logger.error("Failed to send update command to server. Aborting update.")
                cycle.fail()
                return outcome
            self.logger.info("Update command sent. Waiting for server restart via websocket.")

            info = await self.control.event_stream_info()
            if info is None:
                self.logger.error("Failed to obtain websocket info. Aborting update.")
                cycle.fail()
                return outcome

            handler, pump_task = await self._open_event_stream(cycle, info)
            if pump_task is None:
                return outcome

            result = await cycle.completion.wait(self.timings.cycle_timeout_s)
            if result is None:
                cycle.fail()
                outcome = CycleOutcome.TIMED_OUT
                self.logger.error(
                    f"Update process timed out after {self.timings.cycle_timeout_s:g}s"
                )
            elif not result:
                self.logger.error("Update process did not complete successfully via websocket")
            else:
                outcome = CycleOutcome.SUCCESS
                self.logger.info("Update process completed successfully via websocket")

            return outcome

        except asyncio.CancelledError:
            cycle.fail()
            outcome = CycleOutcome.CANCELLED
            raise
        except Exception as e:
            self.logger.error(f"Error during update process execution: {e}", exc_info=True)
            cycle.fail()
            return outcome
        finally:
            await self._dispose_cycle(cycle, handler, pump_task)
            self._last_outcome = outcome
            self.logger.info("Update process finished")

    async def _open_event_stream(
        self,
        cycle: UpdateCycle,
        info: WebSocketInfo,
    ) -> tuple[StatusEventHandler | None, asyncio.Task | None]:
        """Connect, authenticate and start pumping events"""
        session = self.session_factory(info)
        cycle.session = session

        handler = StatusEventHandler(
            cycle=cycle,
            session=session,
            control=self.control,
            start_post_update=lambda: self._post_update(cycle),
            logger=self.logger,
        )
        session.on_reconnect = handler.authenticate

        self.logger.info("Connecting to panel websocket")
        if not await session.connect():
            self.logger.error("Failed to start websocket connection")
            cycle.fail()
            return handler, None

        self.logger.info("Websocket connected. Sending authentication.")
        await handler.authenticate()

        pump_task = asyncio.create_task(handler.pump(), name=f"events:{self.target.name}")
        pump_task.add_done_callback(lambda task: self._on_pump_done(cycle, task))
        return handler, pump_task

    def _on_pump_done(self, cycle: UpdateCycle, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        self.logger.error(f"Websocket event pump failed: {task.exception()}")
        cycle.fail()

    async def _post_update(self, cycle: UpdateCycle) -> None:
        sequence = PostUpdateSequence(
            cycle=cycle,
            control=self.control,
            notifier=self.notifier,
            message=self.target.render_update_message(),
            timings=self.timings,
            logger=self.logger,
        )
        await sequence.run()

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def _dispose_cycle(
        self,
        cycle: UpdateCycle,
        handler: StatusEventHandler | None,
        pump_task: asyncio.Task | None,
    ) -> None:
        """Release everything the cycle owns and return to Idle"""
        try:
            if handler is not None:
                await handler.cancel_pending()
            await self._cancel_task(cycle.post_update_task)
            await self._cancel_task(pump_task)
            if cycle.session is not None:
                self.logger.info("Closing websocket connection")
                await cycle.session.close()
        finally:
            cycle.session = None
            if isinstance(self._state, Running) and self._state.cycle is cycle:
                self._state = Idle()

    async def _cancel_task(self, task: asyncio.Task | None) -> None:
        """Cancel a cycle task and wait for it to finish"""
        if task is None:
            return
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug(f"Task {task.get_name()} ended with error: {task.exception()}")

    async def _abandon_cycle(self) -> None:
        """Close the live cycle's session without waiting for it to resolve"""
        cycle = self.current_cycle
        if cycle is None:
            return
        cycle.fail()
        if cycle.session is not None:
            await cycle.session.close()

    def get_status(self) -> dict[str, Any]:
        """Snapshot for the status endpoint"""
        cycle = self.current_cycle
        return {
            "name": self.target.name,
            "state": "updating" if cycle is not None else "idle",
            "stopped": self._stopped,
            "last_check_at": self._last_check_at.isoformat() if self._last_check_at else None,
            "last_outcome": self._last_outcome.value if self._last_outcome else None,
            "latest_build_id": self._latest_build_id,
            "running_build_id": self._running_build_id,
            "cycle_started_at": cycle.started_at.isoformat() if cycle else None,
        }
