"""Session notifications.

The controller publishes a closed set of events. Each event carries no
payload beyond "re-query state now"; subscribers read registers, variables
or breakpoints back from the controller when they receive one.

Example:
    unsubscribe = controller.subscribe(lambda event: print(event.value))

    async for event in controller.events.listen():
        if event is SessionEvent.DEVICE_DISCONNECTED:
            break
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class SessionEvent(Enum):
    """Events emitted by the debug session controller."""
    HALTED = "halted"
    BREAKPOINT_HIT = "breakpoint-hit"
    STEP_COMPLETED = "step-completed"
    DEVICE_DISCONNECTED = "device-disconnected"


EventCallback = Callable[[SessionEvent], None]


class SessionEvents:
    """Callback subscriptions plus awaitable listener queues."""

    def __init__(self) -> None:
        self._callbacks: List[EventCallback] = []
        self._queues: Set["asyncio.Queue[SessionEvent]"] = set()

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback.

        Returns:
            A function that removes the subscription
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: SessionEvent) -> None:
        """Deliver an event to every callback and listener."""
        logger.debug(f"Session event: {event.value}")
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Error in {event.value} subscriber")
        for queue in list(self._queues):
            queue.put_nowait(event)

    async def listen(
        self, until: Optional[SessionEvent] = None
    ) -> AsyncIterator[SessionEvent]:
        """Yield events as they are emitted.

        Args:
            until: Stop after yielding this event
        """
        queue: "asyncio.Queue[SessionEvent]" = asyncio.Queue()
        self._queues.add(queue)
        try:
            while True:
                event = await queue.get()
                yield event
                if until is not None and event is until:
                    return
        finally:
            self._queues.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._queues)
