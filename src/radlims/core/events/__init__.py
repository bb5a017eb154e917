"""Event bus and event definitions for RadLIMS.

Usage:
    >>> from radlims.core.events import event_bus, SampleCommittedEvent
    >>>
    >>> async def on_commit(event: SampleCommittedEvent):
    ...     print(f"Sample {event.sample_id} is now {event.status}")
    >>>
    >>> event_bus.subscribe(SampleCommittedEvent, on_commit)
"""

from radlims.core.events.bus import EventBus, EventHandler, event_bus
from radlims.core.events.events import Event, SampleCommittedEvent

__all__ = [
    # Event bus
    "EventBus",
    "EventHandler",
    "event_bus",
    # Events
    "Event",
    "SampleCommittedEvent",
]
