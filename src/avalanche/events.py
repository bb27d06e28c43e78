"""
Publish/subscribe registry for playback notifications.

Every engine and coordinator owns its own EventEmitter; nothing is broadcast
across instances.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    FRAME_CHANGE = "frame_change"
    PLAY_STATE_CHANGE = "play_state_change"
    LOAD_PROGRESS = "load_progress"
    READY = "ready"
    ERROR = "error"
    AVALANCHE_CHANGE = "avalanche_change"


@dataclass(frozen=True)
class Event:
    """Notification payload. Only the fields relevant to ``type`` are set."""

    type: EventType
    simulation_id: Optional[str] = None
    frame_index: Optional[int] = None
    total_frames: Optional[int] = None
    time: Optional[float] = None
    is_playing: Optional[bool] = None
    loaded: Optional[int] = None
    total: Optional[int] = None
    error: Optional[BaseException] = None


EventHandler = Callable[[Event], None]


class EventEmitter:
    """Ordered handler lists keyed by event type."""

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = {}

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.setdefault(EventType(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(EventType(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: Event) -> None:
        # Copy so handlers may unsubscribe while being notified
        for handler in list(self._handlers.get(event.type, [])):
            handler(event)

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(EventType(event_type), []))

    def clear(self) -> None:
        self._handlers.clear()
