"""Per-viewer wiring of the queue projection, notifications and announcements.

A monitor owns everything one display or staff session needs: the live
queue snapshot, the notification reconciler and the announcement sequencer,
all fed from the same change feed. Reconnecting re-runs the bootstrap
instead of trusting that no event was missed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from walkin_queue.services.announcer import Announcement, AnnouncementSequencer
from walkin_queue.services.change_feed import ChangeEvent, ChangeKind, Subscription
from walkin_queue.services.paging import Pager, get_pager
from walkin_queue.services.projection import QueueSnapshot, SequenceView, serving_by_window
from walkin_queue.services.reconciler import EventReconciler
from walkin_queue.services.reconciler_state import ReconcilerStateCache
from walkin_queue.services.status import StatusBucket
from walkin_queue.services.ticket_store import TicketStore, get_ticket_store

# Configure logger for this module
logger = logging.getLogger(__name__)


class QueueMonitor:
    """Keeps one viewer's projection and notification feed in sync with the store."""

    def __init__(
        self,
        store: TicketStore,
        *,
        account_id: str,
        office_ids: Iterable[int],
        pager: Pager | None = None,
        announcer: AnnouncementSequencer | None = None,
        state_cache: ReconcilerStateCache | None = None,
        announce: bool = True,
    ) -> None:
        self.store = store
        self.account_id = account_id
        self.office_ids = frozenset(office_ids)
        self.snapshot = QueueSnapshot()
        self.reconciler = EventReconciler(
            store,
            office_ids=self.office_ids,
            state_cache=state_cache,
            viewer_key=account_id,
        )
        if announcer is None and announce:
            announcer = AnnouncementSequencer(pager or get_pager())
        self.announcer = announcer
        self._subscriptions: list[Subscription] = []
        self._lock = asyncio.Lock()
        # Cleared while the snapshot is rebuilt; handlers wait on it.
        self._ready = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    async def start(self) -> None:
        """Start listening, then load the snapshot and bootstrap notifications.

        Events published during the load queue up behind it, so a check-in
        committed meanwhile is applied once the snapshot is in place.
        """
        async with self._lock:
            if self._subscriptions:
                return
            self._ready.clear()
            self._subscriptions = [
                self.store.feed.subscribe(self._on_change, name=f"queue:{self.account_id}"),
                self.store.feed.subscribe(
                    self._on_insert,
                    kinds=[ChangeKind.INSERT],
                    name=f"notifications:{self.account_id}",
                ),
            ]
            try:
                await self._load()
            except Exception:
                self._unsubscribe()
                raise
            logger.info(
                "Queue monitor started for %s on offices %s",
                self.account_id,
                sorted(self.office_ids),
            )

    async def stop(self) -> None:
        async with self._lock:
            self._unsubscribe()
            if self.announcer is not None:
                await self.announcer.close()
            logger.info("Queue monitor stopped for %s", self.account_id)

    async def reconnect(self) -> None:
        """Drop the subscriptions, rebuild from the store and subscribe again."""
        async with self._lock:
            self._unsubscribe()
        await self.start()

    async def set_scope(self, office_ids: Iterable[int]) -> None:
        """Switch the viewer to another set of offices."""
        office_ids = frozenset(office_ids)
        if office_ids == self.office_ids:
            return
        async with self._lock:
            self.office_ids = office_ids
            self.reconciler.set_scope(office_ids)
            if self._subscriptions:
                await self._load()

    async def _load(self) -> None:
        self._ready.clear()
        try:
            views = await asyncio.to_thread(self.store.load_views, self.office_ids)
            self.snapshot.replace_all(views)
            if self.announcer is not None:
                self.announcer.seed(
                    view.id
                    for office_id in self.office_ids
                    for view in serving_by_window(views, office_id).values()
                )
            await self.reconciler.bootstrap(self.account_id, self.office_ids)
        finally:
            self._ready.set()

    def _unsubscribe(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    async def _on_insert(self, event: ChangeEvent) -> None:
        await self._ready.wait()
        await self.reconciler.handle_change(event)

    async def _on_change(self, event: ChangeEvent) -> None:
        await self._ready.wait()
        row = event.row
        if event.kind == ChangeKind.DELETE or not row.is_active:
            self.snapshot.discard(row.id)
            return
        if row.office_id not in self.office_ids:
            return
        view = await asyncio.to_thread(self.store.get_view, row.id)
        if view is None or not view.is_active:
            self.snapshot.discard(row.id)
            return
        if not self.snapshot.apply(view):
            return
        if event.kind == ChangeKind.INSERT:
            self._maybe_announce(view)

    def _maybe_announce(self, view: SequenceView) -> None:
        if self.announcer is None or view.window_id is None:
            return
        # Arriving re-inserts the row; only the claim itself is announced.
        if view.bucket is StatusBucket.SERVING:
            self.announcer.enqueue(Announcement.from_view(view))

    # --- Read side -------------------------------------------------------------------

    def waiting_list(self, office_id: int, window_id: int | None = None) -> list[SequenceView]:
        return self.snapshot.waiting_list(office_id, window_id)

    def serving_entry(self, office_id: int, window_id: int | None = None) -> SequenceView | None:
        return self.snapshot.serving_entry(office_id, window_id)


class NotificationHub:
    """Keeps one running :class:`QueueMonitor` per account."""

    def __init__(
        self,
        store: TicketStore,
        *,
        pager: Pager | None = None,
        state_cache: ReconcilerStateCache | None = None,
        announce: bool = False,
    ) -> None:
        self.store = store
        self.pager = pager
        self.state_cache = state_cache
        self.announce = announce
        self._monitors: dict[str, QueueMonitor] = {}

    async def monitor_for(self, account_id: str, office_ids: Iterable[int]) -> QueueMonitor:
        office_ids = frozenset(office_ids)
        monitor = self._monitors.get(account_id)
        if monitor is None:
            monitor = QueueMonitor(
                self.store,
                account_id=account_id,
                office_ids=office_ids,
                pager=self.pager,
                state_cache=self.state_cache,
                announce=self.announce,
            )
            self._monitors[account_id] = monitor
            await monitor.start()
        else:
            await monitor.set_scope(office_ids)
        return monitor

    def get(self, account_id: str) -> QueueMonitor | None:
        return self._monitors.get(account_id)

    async def close(self) -> None:
        for monitor in list(self._monitors.values()):
            await monitor.stop()
        self._monitors.clear()

    async def clear(self, account_id: str) -> datetime:
        """Clear an account's feed, whether or not a monitor is running for it."""
        monitor = self._monitors.get(account_id)
        if monitor is not None:
            return await monitor.reconciler.clear(account_id)
        reconciler = EventReconciler(
            self.store,
            state_cache=self.state_cache,
            viewer_key=account_id,
        )
        return await reconciler.clear(account_id)


class _NotificationHubSingleton:
    """Singleton wrapper for the application-wide NotificationHub."""

    _instance: NotificationHub | None = None

    @classmethod
    def get_instance(cls) -> NotificationHub:
        if cls._instance is None:
            cls._instance = NotificationHub(
                get_ticket_store(),
                state_cache=ReconcilerStateCache(),
            )
        return cls._instance

    @classmethod
    async def reset(cls) -> None:
        if cls._instance is not None:
            await cls._instance.close()
            cls._instance = None


def get_notification_hub() -> NotificationHub:
    """Return the application-wide notification hub."""
    return _NotificationHubSingleton.get_instance()


async def close_notification_hub() -> None:
    """Stop every running monitor and forget the hub."""
    await _NotificationHubSingleton.reset()
