"""
Custom Exception Classes for the Update Monitor

Hierarchical exception structure shared by the supervisor, the
collaborator clients and the per-target orchestrators.
"""


class MonitorError(Exception):
    """Base exception for all update monitor errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(MonitorError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class EventStreamError(MonitorError):
    """Websocket event stream errors"""

    def __init__(self, message: str, target: str | None = None):
        self.target = target
        super().__init__(f"Event Stream Error: {message}", recoverable=True)


class MalformedEventError(EventStreamError):
    """Inbound websocket frame could not be decoded into a status event"""

    def __init__(self, payload: str, reason: str):
        self.payload = payload
        self.reason = reason
        super().__init__(f"Malformed event ({reason})")
