"""
Progression event publication

The engine reports what happened (XP earned, level ups, unlocks, quest
transitions) to any number of subscribers: UI layers, notification
schedulers, analytics. Handlers run inline in subscription order and async
handlers are awaited before the engine call returns, so subscribers with
slow work should schedule it themselves. A failing subscriber is logged
and never changes the engine's result.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

logger = logging.getLogger(__name__)

EventType = Literal[
    "habit_completed",
    "habit_uncompleted",
    "level_up",
    "achievement_unlocked",
    "quest_completed",
    "quest_claimed",
    "streak_freeze_used",
]

VALID_EVENT_TYPES = {
    "habit_completed",
    "habit_uncompleted",
    "level_up",
    "achievement_unlocked",
    "quest_completed",
    "quest_claimed",
    "streak_freeze_used",
}


@dataclass(frozen=True)
class ProgressionEvent:
    """Something that happened to a user's progression"""
    type: EventType
    user_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.type not in VALID_EVENT_TYPES:
            raise ValueError(
                f"Invalid event type '{self.type}'. "
                f"Must be one of: {', '.join(sorted(VALID_EVENT_TYPES))}"
            )


EventHandler = Callable[[ProgressionEvent], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publisher with sync and async subscribers"""

    def __init__(self):
        self._handlers: List[tuple[Optional[str], EventHandler]] = []

    def subscribe(self, handler: EventHandler, event_type: Optional[EventType] = None) -> None:
        """
        Register a handler for one event type, or for every event

        Args:
            handler: Callable taking a ProgressionEvent; may be a coroutine function
            event_type: Only deliver this type (None = all events)
        """
        if event_type is not None and event_type not in VALID_EVENT_TYPES:
            raise ValueError(f"Invalid event type '{event_type}'")
        self._handlers.append((event_type, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._handlers = [(t, h) for t, h in self._handlers if h is not handler]

    async def publish(self, event: ProgressionEvent) -> None:
        """Deliver an event to every matching handler"""
        for event_type, handler in list(self._handlers):
            if event_type is not None and event_type != event.type:
                continue

            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Event handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.type} (user {event.user_id}): {e}",
                    exc_info=True
                )

    async def emit(self, event_type: EventType, user_id: str, **payload: Any) -> None:
        """Build and publish an event"""
        await self.publish(ProgressionEvent(type=event_type, user_id=user_id, payload=payload))
