"""Sync health events and a tiny listener registry.

The coordinator reports what happened on each remote attempt; the host
application decides whether to show a banner, a badge or nothing.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Generic, List, Optional, TypeVar

from thriftcart.logging import get_logger

logger = get_logger(__name__)


class SyncMode(str, Enum):
    GUEST = "guest"              # no session, local store is authoritative
    RECONCILING = "reconciling"  # login merge in progress
    SYNCED = "synced"            # remote is authoritative, local mirrors it
    DEGRADED = "degraded"        # session present but remote unreachable


class SyncOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEGRADED = "degraded"  # failure that moved the coordinator out of SYNCED
    RESTORED = "restored"  # success that brought it back from DEGRADED


@dataclass(frozen=True)
class SyncEvent:
    """One remote sync attempt."""

    operation: str
    outcome: SyncOutcome
    mode: SyncMode
    error: Optional[str] = None
    at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def ok(self) -> bool:
        return self.outcome in (SyncOutcome.SUCCEEDED, SyncOutcome.RESTORED)


T = TypeVar("T")


class EventBus(Generic[T]):
    """Synchronous fan-out to subscribed listeners."""

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener and return a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, payload: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                # A broken UI callback must not break cart writes
                logger.exception(f"{self.name} listener {listener!r} failed")

    def __len__(self) -> int:
        return len(self._listeners)
