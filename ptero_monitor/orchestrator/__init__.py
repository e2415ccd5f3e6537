"""
Update Orchestration

Per-server update cycle: polling loop, cycle driver, websocket event
handling and the post-update sequence.
"""

from .contracts import (
    EventStreamSession,
    NotificationSink,
    RemoteControl,
    StatusEvent,
    VersionSource,
    WebSocketInfo,
)
from .cycle import CompletionSignal, CycleOutcome, Idle, Running, UpdateCycle
from .worker import UpdateOrchestrator

__all__ = [
    "EventStreamSession",
    "NotificationSink",
    "RemoteControl",
    "StatusEvent",
    "VersionSource",
    "WebSocketInfo",
    "CompletionSignal",
    "CycleOutcome",
    "Idle",
    "Running",
    "UpdateCycle",
    "UpdateOrchestrator",
]
