import asyncio
import logging

import pytest

from ptero_monitor.common.config import TargetConfig, UpdateTimings
from ptero_monitor.common.exceptions import EventStreamError
from ptero_monitor.common.logging_setup import ROOT_LOGGER
from ptero_monitor.orchestrator.contracts import (
    EventStreamSession,
    NotificationSink,
    RemoteControl,
    StatusEvent,
    VersionSource,
    WebSocketInfo,
)
from ptero_monitor.orchestrator.worker import UpdateOrchestrator

# -----------------------------------------------------------------------------
# Test Helpers
# -----------------------------------------------------------------------------

FAST_TIMINGS = UpdateTimings(
    busy_backoff_s=0.01,
    cycle_timeout_s=2.0,
    kill_delay_s=0,
    reinstall_delay_s=0,
    start_delay_s=0,
    stop_grace_s=1.0,
    ws_reconnect_timeout_s=1.0,
    ws_error_reconnect_s=0,
)


def make_target(**overrides) -> TargetConfig:
    values = dict(
        name="Main",
        manifest_url="https://cdn.test/fork/manifest",
        server_url="http://game.test:1212",
        pterodactyl_api_key="ptlc_key",
        pterodactyl_api_url="https://panel.test",
        pterodactyl_server_id="abcd1234",
        check_interval_seconds=3600,
        discord_webhook_url=None,
        log_color="cyan",
    )
    values.update(overrides)
    return TargetConfig(**values)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` until it is true or fail the test"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


def status(value: str) -> StatusEvent:
    return StatusEvent(name="status", args=(value,))


class FakeVersions(VersionSource):
    def __init__(
        self,
        latest: str | None = "build-new",
        running: str | None = "build-old",
        delay: float = 0,
    ):
        self.latest = latest
        self.running = running
        self.delay = delay
        self.calls = 0

    async def latest_build_id(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.latest

    async def running_build_id(self):
        return self.running


class FakeControl(RemoteControl):
    """Records every call in the shared `log`"""

    def __init__(
        self,
        log: list,
        credential: str | None = "watchdog-token",
        begin_update: bool = True,
        infos: list | None = None,
        kill: bool = True,
        reinstall: bool = True,
        start: bool = True,
        info_delay: float = 0,
    ):
        self.log = log
        self.credential = credential
        self.begin_update = begin_update
        self.infos = infos if infos is not None else [WebSocketInfo("wss://node.test/ws", "jwt-1")]
        self.results = {"kill": kill, "start": start}
        self.reinstall = reinstall
        self.info_delay = info_delay

    async def issue_credential(self):
        self.log.append("credential")
        return self.credential

    async def issue_begin_update(self, token):
        self.log.append(("begin_update", token))
        return self.begin_update

    async def event_stream_info(self):
        self.log.append("event_stream_info")
        if self.info_delay:
            await asyncio.sleep(self.info_delay)
        if not self.infos:
            return None
        return self.infos.pop(0)

    async def issue_lifecycle_signal(self, kind):
        self.log.append(kind)
        return self.results.get(kind, False)

    async def issue_reinstall(self):
        self.log.append("reinstall")
        return self.reinstall


class FakeNotifier(NotificationSink):
    def __init__(self, log: list, error: Exception | None = None):
        self.log = log
        self.error = error
        self.messages: list[str] = []

    async def notify(self, message):
        self.log.append("notify")
        self.messages.append(message)
        if self.error is not None:
            raise self.error


class FakeSession(EventStreamSession):
    """
    Scripted event stream.

    Yields `script` in order, then blocks until closed.
    """

    def __init__(
        self,
        log: list,
        script: list[StatusEvent] | None = None,
        connect_ok: bool = True,
        events_error: Exception | None = None,
    ):
        self.log = log
        self.script = list(script or [])
        self.connect_ok = connect_ok
        self.events_error = events_error
        self.token = ""
        self.on_reconnect = None
        self.info: WebSocketInfo | None = None
        self.sent: list[dict] = []
        self.close_calls = 0
        self._closed = False
        self._closed_event = asyncio.Event()

    @property
    def is_closed(self):
        return self._closed

    async def connect(self):
        self.log.append("connect")
        return self.connect_ok

    async def send(self, message):
        if self._closed:
            raise EventStreamError("closed")
        self.sent.append(message)
        self.log.append(("send", message["event"], message["args"][0]))

    async def events(self):
        for event in self.script:
            if self._closed:
                return
            yield event
            await asyncio.sleep(0)
        if self.events_error is not None:
            raise self.events_error
        await self._closed_event.wait()

    async def close(self):
        self.close_calls += 1
        if not self._closed:
            self._closed = True
            self._closed_event.set()
            self.log.append("close")


class Harness:
    """Orchestrator wired to in-memory collaborators"""

    def __init__(
        self,
        script: list[StatusEvent] | None = None,
        connect_ok: bool = True,
        events_error: Exception | None = None,
        notify_error: Exception | None = None,
        target: TargetConfig | None = None,
        versions: FakeVersions | None = None,
        timings: UpdateTimings | None = None,
        **control_options,
    ):
        self.log: list = []
        self.target = target or make_target()
        self.versions = versions or FakeVersions()
        self.control = FakeControl(self.log, **control_options)
        self.notifier = FakeNotifier(self.log, error=notify_error)
        self.session = FakeSession(
            self.log, script=script, connect_ok=connect_ok, events_error=events_error
        )
        self.factory_calls: list[WebSocketInfo] = []
        self.orchestrator = UpdateOrchestrator(
            target=self.target,
            versions=self.versions,
            control=self.control,
            notifier=self.notifier,
            session_factory=self._factory,
            timings=timings or FAST_TIMINGS,
        )

    def _factory(self, info: WebSocketInfo) -> FakeSession:
        self.factory_calls.append(info)
        self.session.token = info.token
        self.session.info = info
        return self.session


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def restore_package_logger():
    """setup_logging() replaces handlers on the package logger; undo it"""
    logger = logging.getLogger(ROOT_LOGGER)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
