"""Typed change events and the publish/subscribe contract toward the UI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")


@dataclass(frozen=True)
class Event:
    """Base event. Subscribing to Event receives every event of an emitter."""

    source: Any


@dataclass(frozen=True)
class PropertyChanged(Event):
    name: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class ErrorRaised(Event):
    error: Exception


@dataclass(frozen=True)
class RefreshCompleted(Event):
    status: Any


@dataclass(frozen=True)
class AuthStateChanged(Event):
    old_state: Any
    new_state: Any


class EventEmitter:
    """Synchronous in-process event dispatcher."""

    def __init__(self) -> None:
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: Type[E], callback: Callable[[E], None]) -> Callable[[], None]:
        """Register a callback for an event type.

        Args:
            event_type: Event class to listen for (subclasses included)
            callback: Called with the event instance

        Returns:
            A function that removes the subscription
        """
        self._subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for event_type, callbacks in list(self._subscribers.items()):
            if not isinstance(event, event_type):
                continue
            for callback in list(callbacks):
                try:
                    callback(event)
                except Exception:
                    logger.exception(f"Subscriber {callback!r} failed handling {type(event).__name__}")


class ObservableModel(EventEmitter):
    """Emitter whose public fields announce their changes."""

    def _update(self, **fields: Any) -> None:
        """Assign all fields, then emit one PropertyChanged per changed field.

        All assignments happen before the first notification, so a subscriber
        reading sibling fields never sees a half-applied update.
        """
        changes: List[PropertyChanged] = []
        for name, value in fields.items():
            old_value = getattr(self, name, None)
            setattr(self, name, value)
            if old_value != value:
                changes.append(PropertyChanged(self, name, old_value, value))
        for change in changes:
            self.emit(change)

    def _report_error(self, error: Exception, field: str = "last_error") -> None:
        logger.error(f"{type(self).__name__}: {error}")
        self._update(**{field: error})
        self.emit(ErrorRaised(self, error))

    def on_change(self, name: str, callback: Callable[[PropertyChanged], None]) -> Callable[[], None]:
        """Subscribe to changes of a single field."""

        def _filtered(event: PropertyChanged) -> None:
            if event.name == name:
                callback(event)

        return self.subscribe(PropertyChanged, _filtered)
