"""In-process listener registry for appointment events.

Notification delivery lives outside the engine; collaborators subscribe here
and receive the committed appointment after the transaction succeeds.
"""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]

APPOINTMENT_BOOKED = 'appointment.booked'
APPOINTMENT_RESCHEDULED = 'appointment.rescheduled'


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event_name: str, listener: Listener) -> None:
        self._listeners[event_name].append(listener)

    def unsubscribe(self, event_name: str, listener: Listener) -> None:
        if listener in self._listeners.get(event_name, []):
            self._listeners[event_name].remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event_name: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event_name, [])) + list(self._listeners.get('*', [])):
            try:
                listener(event_name, payload)
            except Exception:
                # The appointment is already committed; a failing listener must not undo it.
                logger.exception('Listener for %s failed', event_name)


def transition_event_name(status: str) -> str:
    return f'appointment.{status.lower()}'


event_bus = EventBus()
