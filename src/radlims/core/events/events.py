"""Domain events published after committed workflow writes.

Events are only ever published once the store has acknowledged the commit, so
any observer sees a sample's status together with the ledger entry that
produced it.
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from radlims.utils.time import utcnow


class Event(ABC):
    """Base class for all events.

    Attributes:
        timestamp: UTC time the event was created
    """

    timestamp: datetime


@dataclass
class SampleCommittedEvent(Event):
    """A sample write was committed.

    Attributes:
        sample_id: Identifier of the sample
        lab: Lab owning the sample after the commit
        previous_lab: Lab before the commit when a corrective edit moved it
        status: Status after the commit
        version: Version after the commit; higher versions supersede lower ones
        kind: "reception", "transition", "ledger" or "modification"
        action: History action of the commit, None for corrective edits
        document: JSON-ready committed sample document
    """

    sample_id: str
    lab: str
    status: str
    version: int
    kind: str
    document: dict[str, Any]
    action: Optional[str] = None
    previous_lab: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def labs(self) -> frozenset[str]:
        """Every lab whose viewers are affected by the commit."""
        if self.previous_lab and self.previous_lab != self.lab:
            return frozenset({self.lab, self.previous_lab})
        return frozenset({self.lab})
