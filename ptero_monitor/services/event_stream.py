"""
Panel Websocket Session

aiohttp websocket connection to a server's console stream on the panel.
Reconnects on its own:
- no frame received for `reconnect_timeout` seconds: reconnect at once
- connection closed or errored: reconnect after `error_reconnect_timeout`

After every reconnect the `on_reconnect` callback is awaited before any
further event is yielded, so the owner can re-authenticate first.
"""

import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable

import aiohttp

from ..common.exceptions import EventStreamError, MalformedEventError
from ..common.logging_setup import get_target_logger
from ..orchestrator.contracts import EventStreamSession, StatusEvent, WebSocketInfo

_DISCONNECT_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
)


class PanelEventStream(EventStreamSession):
    """Reconnecting websocket session yielding StatusEvents"""

    def __init__(
        self,
        info: WebSocketInfo,
        origin: str | None = None,
        target_name: str = "",
        log_color: str | None = None,
        reconnect_timeout: float = 30.0,
        error_reconnect_timeout: float = 30.0,
    ):
        self.url = info.url
        self.token = info.token
        self.origin = origin
        self.reconnect_timeout = reconnect_timeout
        self.error_reconnect_timeout = error_reconnect_timeout
        self.on_reconnect: Callable[[], Awaitable[None]] | None = None

        self.logger = get_target_logger(target_name, log_color, "websocket")

        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closed = False
        self._closed_event = asyncio.Event()
        self._reconnect_delay = 0.0
        self._reconnect_count = 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    async def connect(self) -> bool:
        if self._closed:
            return False

        if self._http is None:
            self._http = aiohttp.ClientSession()

        headers = {"Origin": self.origin} if self.origin else None

        try:
            self._ws = await self._http.ws_connect(self.url, headers=headers)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.logger.error(f"Websocket connection to {self.url} failed: {e}")
            self._ws = None
            return False

        self.logger.debug(f"Websocket connected to {self.url}")
        return True

    async def send(self, message: dict) -> None:
        ws = self._ws
        if self._closed or ws is None or ws.closed:
            raise EventStreamError("websocket is not connected")
        try:
            await ws.send_str(json.dumps(message))
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise EventStreamError(f"send failed: {e}")

    async def events(self) -> AsyncIterator[StatusEvent]:
        while not self._closed:
            if not self.is_connected:
                await self._reconnect()
                continue

            try:
                msg = await self._ws.receive(timeout=self.reconnect_timeout)
            except asyncio.TimeoutError:
                if self._closed:
                    break
                self.logger.warning(
                    f"No websocket message for {self.reconnect_timeout:g}s. Reconnecting."
                )
                await self._drop_connection(delay=0.0)
                continue
            except (aiohttp.ClientError, ConnectionResetError) as e:
                if self._closed:
                    break
                self.logger.warning(f"Websocket receive failed: {e}")
                await self._drop_connection(delay=self.error_reconnect_timeout)
                continue

            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    event = StatusEvent.parse(msg.data)
                except MalformedEventError as e:
                    self.logger.warning(f"Failed to decode websocket message: {e.reason}: {msg.data!r}")
                    continue
                yield event

            elif msg.type in _DISCONNECT_TYPES:
                if self._closed:
                    break
                self.logger.warning(f"Websocket disconnected: {msg.type.name}")
                await self._drop_connection(delay=self.error_reconnect_timeout)

    async def _drop_connection(self, delay: float) -> None:
        ws, self._ws = self._ws, None
        self._reconnect_delay = delay
        if ws is not None and not ws.closed:
            await ws.close()

    async def _reconnect(self) -> None:
        if self._reconnect_delay > 0:
            try:
                await asyncio.wait_for(self._closed_event.wait(), timeout=self._reconnect_delay)
                return
            except asyncio.TimeoutError:
                pass

        if self._closed:
            return

        if not await self.connect():
            self._reconnect_delay = self.error_reconnect_timeout
            return

        self._reconnect_count += 1
        self._reconnect_delay = 0.0
        self.logger.info("Websocket reconnected. Re-authenticating.")

        if self.on_reconnect is not None:
            await self.on_reconnect()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()

        ws, self._ws = self._ws, None
        http, self._http = self._http, None

        if ws is not None and not ws.closed:
            self.logger.debug("Closing websocket connection")
            await ws.close()
        if http is not None:
            await http.close()
