"""
Post-Update Sequence

Runs once the server reports "starting" after the update command:
kill -> reinstall -> start -> notify, with settle delays in between.
"""

import asyncio
import logging

from ..common.config import UpdateTimings
from .contracts import NotificationSink, RemoteControl
from .cycle import UpdateCycle


class PostUpdateSequence:
    """
    Kill, reinstall and restart a server whose build was just updated.

    A failed kill or reinstall skips the remaining remote steps but the
    notification is still sent. The cycle resolves True only when every
    step up to and including "start" was attempted.
    """

    def __init__(
        self,
        cycle: UpdateCycle,
        control: RemoteControl,
        notifier: NotificationSink,
        message: str,
        timings: UpdateTimings,
        logger: logging.LoggerAdapter,
    ):
        self.cycle = cycle
        self.control = control
        self.notifier = notifier
        self.message = message
        self.timings = timings
        self.logger = logger

    async def run(self) -> None:
        success = False
        try:
            self.logger.info("Starting post-update sequence...")

            reached_start = await self._run_remote_steps()
            await self._notify()

            success = reached_start
            if success:
                self.logger.info("Post-update sequence completed")
            else:
                self.logger.warning("Post-update sequence finished early")

        except asyncio.CancelledError:
            self.logger.warning("Post-update sequence cancelled")
            raise
        except Exception as e:
            self.logger.error(f"Error during post-update sequence: {e}", exc_info=True)
        finally:
            if self.cycle.session is not None:
                await self.cycle.session.close()
            self.cycle.completion.try_set(success)

    async def _run_remote_steps(self) -> bool:
        """Returns True once the start signal has been attempted"""
        await asyncio.sleep(self.timings.kill_delay_s)

        self.logger.info("Sending KILL signal...")
        if not await self.control.issue_lifecycle_signal("kill"):
            self.logger.error("Failed to send KILL signal. Aborting sequence.")
            return False

        await asyncio.sleep(self.timings.reinstall_delay_s)

        self.logger.info("Sending REINSTALL command...")
        if not await self.control.issue_reinstall():
            self.logger.error("Failed to send REINSTALL command. Aborting sequence.")
            return False

        self.logger.info(
            f"Waiting for reinstall to complete ({self.timings.start_delay_s:g} seconds)..."
        )
        await asyncio.sleep(self.timings.start_delay_s)

        self.logger.info("Sending START signal...")
        if await self.control.issue_lifecycle_signal("start"):
            self.logger.info("Server start command sent")
        else:
            self.logger.error("Failed to send START signal")

        return True

    async def _notify(self) -> None:
        try:
            await self.notifier.notify(self.message)
        except Exception as e:
            self.logger.error(f"Notification failed: {e}")
