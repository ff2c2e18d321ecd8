"""
GALAX Event Infrastructure

Observable ledger events for external indexers. Events are immutable facts
about committed transitions: a world buffers the events of a transition and
publishes them only once the transition commits, so subscribers never see an
event for a rolled-back call.

    ┌──────────────────────────────────────────────────────────────┐
    │  World transition ──commit──▶ EventStore.append(stream, ...) │
    │                          └──▶ EventBus.publish(event)        │
    │                                                              │
    │  Streams: "world", "territory-<id>"                          │
    └──────────────────────────────────────────────────────────────┘

Usage
─────

    bus = EventBus()

    @bus.subscribe(ResourceProduced)
    def index_production(event):
        print(event.territory_id, event.amount)
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type

from galax.observability import LedgerLayer, get_logger

logger = get_logger("events", LedgerLayer.EVENTS)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all ledger events.

    Each event has a unique id, a timestamp and the correlation id of the
    call that produced it.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    @property
    def timestamp(self) -> datetime:
        return datetime.fromisoformat(self.event_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of the event content (canonical JSON, SHA-256)."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class TerritoryCreated(Event):
    """Emitted when the world registry creates a territory."""
    territory_id: int = 0
    owner: str = ""
    address: str = ""
    name: str = ""


@dataclass
class BusinessCreated(Event):
    """Emitted when a business is appended to a territory's registry."""
    business_id: int = 0
    territory_id: int = 0
    business_type: int = 0
    owner: str = ""


@dataclass
class ParticipantJoined(Event):
    """Emitted on every successful join, including same-territory re-joins."""
    territory_id: int = 0
    participant: str = ""
    previous_territory_id: Optional[int] = None


@dataclass
class ResourceProduced(Event):
    territory_id: int = 0
    participant: str = ""
    resource_id: int = 0
    amount: int = 0
    reward: int = 0


@dataclass
class ItemConsumed(Event):
    participant: str = ""
    item_id: int = 0
    amount: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error raised by a subscriber while handling an event."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


class EventBus:
    """
    In-memory synchronous event bus.

    Handlers run in priority order (higher first). A failing handler never
    propagates into the ledger: the failure is counted, logged, collected in
    ``errors`` and passed to ``on_error``.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self.errors: List[EventHandlerError] = []

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        With no event types the handler receives every event.
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        with self._lock:
            self._published_count += 1
            handlers_to_call = [
                r for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
            ]

        for registration in handlers_to_call:
            self._call_handler(registration, event)

    def _call_handler(self, registration: EventHandlerRegistration, event: Event) -> None:
        handler = registration.handler
        try:
            if registration.filter_func is not None and not registration.filter_func(event):
                return
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            error = EventHandlerError(event, handler, e)
            with self._lock:
                self.errors.append(error)
            logger.warning(str(error), operation="publish", event_type=event.event_type)
            if self._on_error:
                self._report(error)

    def _report(self, error: EventHandlerError) -> None:
        try:
            self._on_error(error)
        except Exception as e:
            logger.warning(
                f"on_error callback failed: {e}",
                operation="publish",
                event_type=error.event.event_type,
            )

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": len(self.errors),
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "stream_id": self.stream_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
        }


class EventStore:
    """
    Append-only event store.

    Events are organized into streams: ``world`` for registry-level events
    and ``territory-<id>`` for everything scoped to one territory.
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._sequence_number = 0
        self._lock = threading.RLock()

    def append(
        self,
        stream_id: str,
        events: List[Event],
        expected_version: Optional[int] = None,
    ) -> List[EventRecord]:
        """
        Append events to a stream.

        Raises:
            ConcurrencyError: If expected_version doesn't match
        """
        with self._lock:
            stream = self._streams.setdefault(stream_id, [])
            current_version = len(stream)

            if expected_version is not None and expected_version != current_version:
                raise ConcurrencyError(stream_id, expected_version, current_version)

            records = []
            for event in events:
                self._sequence_number += 1
                current_version += 1
                record = EventRecord(
                    sequence_number=self._sequence_number,
                    event=event,
                    stream_id=stream_id,
                    version=current_version,
                )
                self._events.append(record)
                stream.append(record)
                records.append(record)

            return records

    def read_stream(
        self,
        stream_id: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> List[Event]:
        with self._lock:
            stream = self._streams.get(stream_id, [])
            if to_version is None:
                to_version = len(stream)
            return [r.event for r in stream[from_version:to_version]]

    def read_all(
        self,
        from_position: int = 0,
        max_count: int = 1000,
    ) -> List[EventRecord]:
        with self._lock:
            return self._events[from_position:from_position + max_count]

    def get_stream_version(self, stream_id: str) -> int:
        with self._lock:
            return len(self._streams.get(stream_id, ()))

    def get_stream_ids(self) -> List[str]:
        with self._lock:
            return list(self._streams.keys())

    @property
    def total_events(self) -> int:
        with self._lock:
            return len(self._events)


class ConcurrencyError(Exception):
    """Optimistic concurrency violation."""
    def __init__(self, stream_id: str, expected: int, actual: int):
        self.stream_id = stream_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrency error for stream '{stream_id}': "
            f"expected version {expected}, actual {actual}"
        )


def stream_for(event: Event) -> str:
    """Stream an event is recorded under."""
    territory_id = getattr(event, "territory_id", None)
    if territory_id:
        return f"territory-{territory_id}"
    return "world"
