"""Sync package: coordinator and sync health events."""
from .coordinator import DEFAULT_SIZE, StateChange, SyncCoordinator
from .events import EventBus, SyncEvent, SyncMode, SyncOutcome

__all__ = [
    "DEFAULT_SIZE",
    "EventBus",
    "StateChange",
    "SyncCoordinator",
    "SyncEvent",
    "SyncMode",
    "SyncOutcome",
]
