"""
Collaborator Contracts

Interfaces the update orchestrator depends on. Concrete implementations
live in `ptero_monitor.services`; tests substitute in-memory fakes.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from ..common.exceptions import MalformedEventError

# Websocket event names as sent by the panel (compared lower-case)
EVENT_AUTH = "auth"
EVENT_AUTH_SUCCESS = "auth success"
EVENT_STATUS = "status"
EVENT_TOKEN_EXPIRING = "token expiring"
EVENT_TOKEN_EXPIRED = "token expired"
EVENT_ERROR = "error"
EVENT_JWT_ERROR = "jwt error"
EVENT_DAEMON_ERROR = "daemon error"

STATUS_STARTING = "starting"

POWER_SIGNALS = ("start", "stop", "restart", "kill")


@dataclass(frozen=True)
class WebSocketInfo:
    """Connection details for a server's event stream"""
    url: str
    token: str


@dataclass(frozen=True)
class StatusEvent:
    """One decoded websocket frame: event name plus string arguments"""
    name: str
    args: tuple[str, ...] = field(default_factory=tuple)

    @property
    def first_arg(self) -> str | None:
        return self.args[0] if self.args else None

    @classmethod
    def parse(cls, payload: str) -> "StatusEvent":
        """
        Decode a `{"event": ..., "args": [...]}` frame.

        Raises:
            MalformedEventError: not JSON, not an object, or no event name
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise MalformedEventError(payload, f"invalid JSON: {e}")

        if not isinstance(data, dict):
            raise MalformedEventError(payload, "frame is not an object")

        name = data.get("event")
        if not isinstance(name, str) or not name.strip():
            raise MalformedEventError(payload, "missing event name")

        raw_args = data.get("args") or []
        if not isinstance(raw_args, list):
            raise MalformedEventError(payload, "args is not a list")

        return cls(
            name=name.strip().lower(),
            args=tuple("" if arg is None else str(arg) for arg in raw_args),
        )


def auth_message(token: str) -> dict:
    """Websocket authentication frame"""
    return {"event": EVENT_AUTH, "args": [token]}


class VersionSource(ABC):
    """Published and running build ids for one target"""

    @abstractmethod
    async def latest_build_id(self) -> str | None:
        """Most recently published build, or None if unavailable"""

    @abstractmethod
    async def running_build_id(self) -> str | None:
        """Build the target is currently running, or None if unavailable"""


class RemoteControl(ABC):
    """Privileged request/response operations against one target"""

    @abstractmethod
    async def issue_credential(self) -> str | None:
        """Short-lived credential for the begin-update command"""

    @abstractmethod
    async def issue_begin_update(self, token: str) -> bool:
        """Ask the target to begin updating; True when accepted"""

    @abstractmethod
    async def event_stream_info(self) -> WebSocketInfo | None:
        """Fresh event stream url and token"""

    @abstractmethod
    async def issue_lifecycle_signal(self, kind: str) -> bool:
        """Send a power signal (start, stop, restart, kill)"""

    @abstractmethod
    async def issue_reinstall(self) -> bool:
        """Trigger a reinstall of the target"""


class EventStreamSession(ABC):
    """
    A live event stream connection.

    `events()` is infinite until `close()` is called and cannot be
    restarted. Reconnection happens underneath it; after each reconnect
    `on_reconnect` is awaited before any further event is yielded.
    """

    token: str
    on_reconnect: Callable[[], Awaitable[None]] | None = None

    @abstractmethod
    async def connect(self) -> bool:
        """Open the connection; False when it could not be established"""

    @abstractmethod
    async def send(self, message: dict) -> None:
        """Send a JSON message"""

    @abstractmethod
    def events(self) -> AsyncIterator[StatusEvent]:
        """Inbound events until the session is closed"""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection; safe to call more than once"""

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """True once close() has been called"""


class NotificationSink(ABC):
    """Fire-and-forget delivery of a completion message"""

    @abstractmethod
    async def notify(self, message: str) -> None:
        """Deliver the message; failures are logged, never raised"""


SessionFactory = Callable[[WebSocketInfo], EventStreamSession]
