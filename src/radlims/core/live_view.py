"""Live view of the samples of a set of labs.

A subscription holds the committed documents of every sample whose lab is in
its lab set and queues a fresh ``SampleSetSnapshot`` whenever a commit changes
that set. Documents only ever arrive from the store or from
``SampleCommittedEvent``, which is published after the commit, so a viewer
never sees a status without the history entry that produced it.

Each held sample keeps the highest version seen. Older copies, whether from
the initial load or from a late event, never replace a newer one, which keeps
the per-sample history order equal to the commit order.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from radlims.core.events import EventBus, SampleCommittedEvent
from radlims.core.workflow.documents import sample_document
from radlims.core.workflow.states import LIFECYCLE
from radlims.db.repositories.sample import SampleRepository
from radlims.utils.time import utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SampleSetSnapshot:
    """Committed state of every sample of a lab set at one instant.

    Attributes:
        labs: Lab codes the snapshot covers
        samples: JSON documents keyed by sample id
        by_status: Documents grouped by status, every status present, in
            lifecycle order
        generated_at: When the snapshot was built
        sequence: Position of the snapshot in its subscription's stream
    """

    labs: frozenset[str]
    samples: dict[str, dict[str, Any]]
    by_status: dict[str, list[dict[str, Any]]]
    generated_at: datetime
    sequence: int

    @classmethod
    def build(
        cls, labs: frozenset[str], samples: dict[str, dict[str, Any]], sequence: int
    ) -> "SampleSetSnapshot":
        by_status: dict[str, list[dict[str, Any]]] = {status.value: [] for status in LIFECYCLE}
        ordered = sorted(samples.values(), key=lambda doc: (doc["created_at"], doc["id"]))
        for document in ordered:
            by_status.setdefault(document["status"], []).append(document)
        return cls(
            labs=labs,
            samples=dict(samples),
            by_status=by_status,
            generated_at=utcnow(),
            sequence=sequence,
        )

    @property
    def counts(self) -> dict[str, int]:
        return {status: len(documents) for status, documents in self.by_status.items()}

    def to_message(self) -> dict[str, Any]:
        """WebSocket message for the snapshot."""
        return {
            "type": "snapshot",
            "sequence": self.sequence,
            "generated_at": self.generated_at.isoformat(),
            "labs": sorted(self.labs),
            "total": len(self.samples),
            "counts": self.counts,
            "by_status": self.by_status,
        }


class LiveViewSubscription:
    """Stream of snapshots for one viewer.

    Iterate with ``async for``; iteration ends once the subscription is
    closed. The queue is bounded and, being full, drops its oldest snapshot
    since every snapshot supersedes the ones before it.

    Example:
        >>> async with await synchronizer.subscribe({"BUSAN"}) as subscription:
        ...     async for snapshot in subscription:
        ...         render(snapshot.by_status)
    """

    def __init__(
        self,
        synchronizer: "LiveViewSynchronizer",
        labs: Iterable[str],
        queue_size: int = 32,
    ) -> None:
        self.labs: frozenset[str] = frozenset(labs)
        self._synchronizer = synchronizer
        self._samples: dict[str, dict[str, Any]] = {}
        # Highest version seen per sample, kept for samples that left the set
        self._versions: dict[str, int] = {}
        self._queue: asyncio.Queue[Optional[SampleSetSnapshot]] = asyncio.Queue(
            maxsize=max(1, queue_size)
        )
        self._sequence = 0
        self._loaded = False
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Snapshots queued and not yet consumed."""
        return self._queue.qsize()

    def current(self) -> SampleSetSnapshot:
        """Snapshot of the currently held documents (not queued)."""
        return SampleSetSnapshot.build(self.labs, self._samples, self._sequence)

    def load(self, documents: Iterable[dict[str, Any]]) -> None:
        """Merge the initial store read and queue the first snapshot."""
        for document in documents:
            if document["lab"] in self.labs:
                self._merge(document["id"], document["version"], document)
        self._loaded = True
        self._push()

    def apply(self, event: SampleCommittedEvent) -> bool:
        """Merge one committed document.

        Returns:
            True when the held set changed
        """
        if self._closed:
            return False
        document = event.document if event.lab in self.labs else None
        changed = self._merge(event.sample_id, event.version, document)
        if changed and self._loaded:
            self._push()
        return changed

    def _merge(
        self, sample_id: str, version: int, document: Optional[dict[str, Any]]
    ) -> bool:
        if version <= self._versions.get(sample_id, 0):
            return False
        self._versions[sample_id] = version
        if document is None:
            return self._samples.pop(sample_id, None) is not None
        self._samples[sample_id] = document
        return True

    def _push(self) -> None:
        if self._closed:
            return
        self._sequence += 1
        snapshot = SampleSetSnapshot.build(self.labs, self._samples, self._sequence)
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(snapshot)

    async def get(self) -> Optional[SampleSetSnapshot]:
        """Next snapshot, or None once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> "LiveViewSubscription":
        return self

    async def __anext__(self) -> SampleSetSnapshot:
        snapshot = await self.get()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot

    def close(self) -> None:
        """Stop delivery and release everything the subscription holds."""
        if self._closed:
            return
        self._closed = True
        self._synchronizer._detach(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)
        self._samples.clear()
        self._versions.clear()

    async def __aenter__(self) -> "LiveViewSubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class LiveViewSynchronizer:
    """Fans committed sample documents out to lab-scoped subscriptions.

    Args:
        event_bus: Bus carrying SampleCommittedEvent
        session_factory: Sessions used for the initial read of a subscription
        queue_size: Snapshot queue bound of each subscription
    """

    def __init__(
        self,
        event_bus: EventBus,
        session_factory: async_sessionmaker[AsyncSession],
        queue_size: int = 32,
    ) -> None:
        self._event_bus = event_bus
        self._session_factory = session_factory
        self._queue_size = queue_size
        self._lab_subscribers: dict[str, set[LiveViewSubscription]] = {}
        self._subscriptions: set[LiveViewSubscription] = set()
        self._started = False

    def start(self) -> None:
        """Begin listening for committed samples."""
        if self._started:
            return
        self._event_bus.subscribe(SampleCommittedEvent, self._on_committed)
        self._started = True
        logger.info("live_view_started")

    async def stop(self) -> None:
        """Close every subscription and stop listening."""
        for subscription in list(self._subscriptions):
            subscription.close()
        if self._started:
            self._event_bus.unsubscribe(SampleCommittedEvent, self._on_committed)
            self._started = False
        logger.info("live_view_stopped")

    async def subscribe(self, labs: Iterable[str]) -> LiveViewSubscription:
        """Open a subscription for the samples of labs.

        The subscription is registered before the store is read, so no
        commit can fall between the initial read and the first event.

        Raises:
            SQLAlchemyError: If the initial read fails
        """
        subscription = LiveViewSubscription(self, labs, self._queue_size)
        self._attach(subscription)

        try:
            documents: list[dict[str, Any]] = []
            if subscription.labs:
                async with self._session_factory() as session:
                    samples = await SampleRepository(session).list_by_labs(
                        subscription.labs, limit=None, with_history=True
                    )
                    documents = [
                        sample_document(sample).model_dump(mode="json") for sample in samples
                    ]
        except Exception:
            subscription.close()
            raise

        subscription.load(documents)
        logger.info(
            "live_view_subscribed",
            labs=sorted(subscription.labs),
            samples=len(documents),
            subscriptions=len(self._subscriptions),
        )
        return subscription

    def _attach(self, subscription: LiveViewSubscription) -> None:
        self._subscriptions.add(subscription)
        for lab in subscription.labs:
            self._lab_subscribers.setdefault(lab, set()).add(subscription)

    def _detach(self, subscription: LiveViewSubscription) -> None:
        self._subscriptions.discard(subscription)
        for lab in subscription.labs:
            subscribers = self._lab_subscribers.get(lab)
            if subscribers is None:
                continue
            subscribers.discard(subscription)
            if not subscribers:
                del self._lab_subscribers[lab]

    async def _on_committed(self, event: SampleCommittedEvent) -> None:
        targets: set[LiveViewSubscription] = set()
        for lab in event.labs:
            targets.update(self._lab_subscribers.get(lab, ()))
        for subscription in targets:
            subscription.apply(event)

    def get_subscription_count(self, lab: Optional[str] = None) -> int:
        if lab is None:
            return len(self._subscriptions)
        return len(self._lab_subscribers.get(lab, ()))
