"""In-process event bus for auto-mode lifecycle notifications.

Events are emitted as ``(event_type, payload)`` pairs. The orchestrator emits
everything under ``AUTO_MODE_EVENT`` with a ``type`` key in the payload:
- auto_mode_started / auto_mode_stopped / auto_mode_idle
- auto_mode_feature_start / auto_mode_feature_complete
- auto_mode_error
- auto_mode_resuming_features
- feature_interrupted
"""

from typing import Any, Callable

from rich.console import Console

from .protocols import EventCallback


console = Console()

AUTO_MODE_EVENT = "auto-mode:event"


class EventType:
    """Values of the ``type`` key of auto-mode event payloads."""
    STARTED = "auto_mode_started"
    STOPPED = "auto_mode_stopped"
    IDLE = "auto_mode_idle"
    FEATURE_START = "auto_mode_feature_start"
    FEATURE_COMPLETE = "auto_mode_feature_complete"
    ERROR = "auto_mode_error"
    RESUMING = "auto_mode_resuming_features"
    FEATURE_INTERRUPTED = "feature_interrupted"


class EventBus:
    """Synchronous fan-out of events to subscribers.

    A subscriber that raises is reported and skipped; it never prevents
    delivery to the others or breaks the emitter.
    """

    def __init__(self):
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback.

        Returns:
            Function that removes the callback again
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver an event to every current subscriber."""
        for callback in list(self._subscribers):
            try:
                callback(event_type, payload)
            except Exception as e:
                console.print(f"[red]Event subscriber failed for {event_type}: {e}[/red]")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
