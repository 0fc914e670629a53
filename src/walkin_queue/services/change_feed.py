"""Row-level change events and their in-process delivery.

The ticket store publishes one event per committed row change. Each
subscriber gets its own asyncio queue and consumer task, so delivery is
asynchronous and a slow or failing handler never blocks the publisher or
other subscribers. Subscriptions are explicit handles owned by the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# Configure logger for this module
logger = logging.getLogger(__name__)

SEQUENCE_TABLE = "sequence"


class ChangeKind(str, Enum):
    """Kinds of row changes the store reports."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class SequenceRow:
    """Raw sequence payload as stored; ``window_id`` is None when unbound."""

    id: int
    created_at: datetime
    office_id: int
    ticket_id: int
    priority_id: int
    status_id: int
    window_id: int | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ChangeEvent:
    """One committed change. ``row`` is the new row, or the old one for deletes."""

    table: str
    kind: ChangeKind
    row: SequenceRow


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    """Handle returned by :meth:`ChangeFeed.subscribe`; call ``unsubscribe`` to stop."""

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        kinds: frozenset[ChangeKind],
        handler: ChangeHandler,
        name: str,
    ) -> None:
        self._feed = feed
        self.table = table
        self.kinds = kinds
        self.name = name
        self._handler = handler
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = self._loop.create_task(
            self._run(), name=f"change-feed:{name}"
        )

    @property
    def active(self) -> bool:
        return self._task is not None

    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and event.kind in self.kinds

    def deliver(self, event: ChangeEvent) -> None:
        """Queue ``event`` for the handler. Callable from any thread."""
        if self._task is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(event)
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            logger.warning(
                "Subscription %s lost its event loop; %s row %s dropped",
                self.name,
                event.kind.value,
                event.row.id,
            )

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handler(event)
            except Exception:
                logger.exception(
                    "Subscriber %s failed on %s %s row %s; event dropped",
                    self.name,
                    event.kind.value,
                    event.table,
                    event.row.id,
                )
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every event delivered so far has been handled."""
        if self._task is not None:
            await self._queue.join()

    def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self._feed._remove(self)
        logger.info("Subscription %s closed", self.name)


class ChangeFeed:
    """Fan-out of store change events to the current subscribers."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        handler: ChangeHandler,
        *,
        table: str = SEQUENCE_TABLE,
        kinds: Iterable[ChangeKind] | None = None,
        name: str | None = None,
    ) -> Subscription:
        """Register ``handler`` for changes on ``table``. Must run inside an event loop."""
        selected = frozenset(kinds) if kinds is not None else frozenset(ChangeKind)
        subscription = Subscription(
            self,
            table,
            selected,
            handler,
            name or f"{table}-{len(self._subscriptions) + 1}",
        )
        self._subscriptions.append(subscription)
        logger.info(
            "Subscription %s opened for %s (%s)",
            subscription.name,
            table,
            ", ".join(sorted(kind.value for kind in selected)),
        )
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.deliver(event)

    def publish_all(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            self.publish(event)

    async def join(self) -> None:
        """Wait until all subscribers have drained their queues."""
        for subscription in list(self._subscriptions):
            await subscription.join()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
