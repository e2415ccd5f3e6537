"""
Update Monitor Supervisor

Host process for all monitored servers:
- Builds one orchestrator per configured server
- Runs each orchestrator as an independent task
- Serves /health and /status on a local port
- Stops every orchestrator on SIGINT/SIGTERM
"""

import asyncio
import signal
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from .common.config import AppSettings, TargetConfig, UpdateTimings
from .common.logging_setup import get_service_logger
from .orchestrator import UpdateOrchestrator
from .orchestrator.contracts import WebSocketInfo
from .services import (
    DiscordNotifier,
    PanelEventStream,
    PanelRemoteControl,
    PterodactylClient,
    Ss14Client,
    Ss14VersionSource,
)

logger = get_service_logger("supervisor")


def build_orchestrator(target: TargetConfig, timings: UpdateTimings) -> UpdateOrchestrator:
    """Wire the HTTP and websocket clients for one server"""
    ss14 = Ss14Client(target)
    panel = PterodactylClient(target)

    def session_factory(info: WebSocketInfo) -> PanelEventStream:
        return PanelEventStream(
            info,
            origin=panel.origin,
            target_name=target.name,
            log_color=target.log_color,
            reconnect_timeout=timings.ws_reconnect_timeout_s,
            error_reconnect_timeout=timings.ws_error_reconnect_s,
        )

    return UpdateOrchestrator(
        target=target,
        versions=Ss14VersionSource(ss14),
        control=PanelRemoteControl(ss14, panel),
        notifier=DiscordNotifier(target.discord_webhook_url, target.name, target.log_color),
        session_factory=session_factory,
        timings=timings,
    )


class Supervisor:
    """
    Runs one UpdateOrchestrator per server.

    Orchestrators share nothing; a failing or misconfigured server never
    affects the others. The supervisor exits when asked to shut down or
    when no orchestrator is left running.
    """

    def __init__(
        self,
        settings: AppSettings,
        orchestrators: list[UpdateOrchestrator] | None = None,
    ):
        self.settings = settings
        self._orchestrators = orchestrators if orchestrators is not None else [
            build_orchestrator(target, settings.timings) for target in settings.servers
        ]
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._stopped = False
        self._shutdown_event = asyncio.Event()
        self._start_time = datetime.now(timezone.utc)

        self._status_runner: web.AppRunner | None = None

    @property
    def orchestrators(self) -> list[UpdateOrchestrator]:
        return list(self._orchestrators)

    async def start(self) -> None:
        """Start every orchestrator and wait for shutdown"""
        logger.info(f"Starting update monitor for {len(self._orchestrators)} server(s)")
        self._running = True

        self._setup_signal_handlers()
        await self._start_status_server()

        for orchestrator in self._orchestrators:
            task = asyncio.create_task(
                orchestrator.run(),
                name=f"orchestrator:{orchestrator.target.name}",
            )
            task.add_done_callback(self._on_orchestrator_done)
            self._tasks.append(task)

        if not self._tasks:
            logger.critical("No servers to monitor")
            self._shutdown_event.set()

        await self._shutdown_event.wait()
        await self.stop()

    async def stop(self) -> None:
        """Stop all orchestrators and the status server"""
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        self._shutdown_event.set()

        logger.info("Stopping update monitor")

        await asyncio.gather(
            *(orchestrator.stop() for orchestrator in self._orchestrators),
            return_exceptions=True,
        )

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

        await self._stop_status_server()
        logger.info("Update monitor stopped")

    def request_shutdown(self) -> None:
        """Ask start() to return; safe to call from a signal handler"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _on_orchestrator_done(self, task: asyncio.Task) -> None:
        name = task.get_name()

        if task.cancelled():
            logger.info(f"{name} cancelled")
        elif task.exception() is not None:
            logger.error(f"{name} crashed: {task.exception()}")
        else:
            logger.info(f"{name} exited")

        if self._running and all(t.done() for t in self._tasks):
            logger.warning("All orchestrators have exited")
            self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Windows, or not running in the main thread
                logger.debug(f"Cannot install handler for {sig.name}")

    async def _start_status_server(self) -> None:
        """Start the health/status HTTP server"""
        status = self.settings.status
        if not status.port:
            logger.debug("Status server disabled")
            return

        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/status", self._status_handler)

        self._status_runner = web.AppRunner(app)
        await self._status_runner.setup()

        site = web.TCPSite(self._status_runner, status.host, status.port)
        try:
            await site.start()
        except OSError as e:
            logger.error(f"Status server could not bind {status.host}:{status.port}: {e}")
            await self._status_runner.cleanup()
            self._status_runner = None
            return

        logger.info(f"Status server started on {status.host}:{status.port}")

    async def _stop_status_server(self) -> None:
        """Stop the health/status HTTP server"""
        if self._status_runner:
            await self._status_runner.cleanup()
            self._status_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        running = sum(1 for task in self._tasks if not task.done())
        return web.json_response({
            "status": "healthy" if self._running and running else "unhealthy",
            "service": "supervisor",
            "orchestrators_running": running,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _status_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_status())

    def get_status(self) -> dict[str, Any]:
        """Get current supervisor status"""
        return {
            "running": self._running,
            "uptime": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
            "servers": [orchestrator.get_status() for orchestrator in self._orchestrators],
        }
