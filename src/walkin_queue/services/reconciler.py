"""Notification engine: turns the sequence change stream into an arrival feed.

Every staff action on a ticket (claim, arrive, complete, transfer) inserts a
new sequence row for the same ticket, so the stream is full of rows that look
like arrivals but are not. The reconciler keeps two suppression sets:

``seen_ticket_ids``
    Tickets already considered. Any later row for one of them is a staff
    action and is ignored. Never reset by a clear; pruned on bootstrap to
    tickets with recent activity or a retained notification. A row that is
    not the first of its ticket never notifies, so pruning cannot revive an
    old ticket.

``seen_sequence_ids``
    Rows already turned into a notification, so overlapping bootstrap and
    stream paths cannot emit the same row twice. Reset by a clear.

The clear checkpoint of an account is the newest of the locally cached value
and the value stored in account metadata, so a clear on one device hides the
same arrivals on every other device of that account.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from walkin_queue.core.settings import settings
from walkin_queue.db.time import as_utc
from walkin_queue.models.account import NOTIFICATION_CLEARED_AT_KEY
from walkin_queue.schemas.notification import Notification, ReconcilerSnapshot
from walkin_queue.services.change_feed import (
    SEQUENCE_TABLE,
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    SequenceRow,
    Subscription,
)
from walkin_queue.services.errors import StoreUnavailableError
from walkin_queue.services.reconciler_state import ReconcilerStateCache
from walkin_queue.services.ticket_store import TicketDetails, TicketStore

# Configure logger for this module
logger = logging.getLogger(__name__)


def _parse_checkpoint(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.warning("Ignoring malformed clear checkpoint %r", value)
        return None


def _is_first_row(row: SequenceRow, details: TicketDetails) -> bool:
    return details.first_sequence_id is None or details.first_sequence_id == row.id


def earliest_per_ticket(rows: Iterable[SequenceRow]) -> dict[int, SequenceRow]:
    """Return the first row of every ticket; ties on timestamp go to the lower id."""
    earliest: dict[int, SequenceRow] = {}
    for row in rows:
        current = earliest.get(row.ticket_id)
        if current is None or (row.created_at, row.id) < (current.created_at, current.id):
            earliest[row.ticket_id] = row
    return earliest


class EventReconciler:
    """Deduplicated, at-most-once arrival feed for one viewer."""

    def __init__(
        self,
        store: TicketStore,
        *,
        office_ids: Iterable[int] = (),
        history_size: int | None = None,
        bootstrap_window: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
        state_cache: ReconcilerStateCache | None = None,
        viewer_key: str | None = None,
    ) -> None:
        self.store = store
        if history_size is None:
            history_size = settings.notification_history_size
        if bootstrap_window is None:
            bootstrap_window = timedelta(seconds=settings.bootstrap_window_seconds)
        self.history_size = history_size
        self.bootstrap_window = bootstrap_window
        self._clock = clock or store.now
        self._state_cache = state_cache
        self.viewer_key = viewer_key

        self._office_ids: frozenset[int] = frozenset(office_ids)
        self._notifications: list[Notification] = []
        self._seen_ticket_ids: set[int] = set()
        self._seen_sequence_ids: set[int] = set()
        self._cleared_at: dict[str, datetime] = {}

        if state_cache is not None and viewer_key is not None:
            stored = state_cache.load(viewer_key)
            if stored is not None:
                self.restore(stored)

    # --- Read side -------------------------------------------------------------------

    @property
    def office_ids(self) -> frozenset[int]:
        return self._office_ids

    @property
    def notifications(self) -> list[Notification]:
        """Newest first."""
        return list(self._notifications)

    @property
    def seen_ticket_ids(self) -> frozenset[int]:
        return frozenset(self._seen_ticket_ids)

    @property
    def seen_sequence_ids(self) -> frozenset[int]:
        return frozenset(self._seen_sequence_ids)

    @property
    def unread_count(self) -> int:
        return sum(1 for notification in self._notifications if not notification.read)

    def cleared_at(self, account_id: str) -> datetime | None:
        return self._cleared_at.get(account_id)

    # --- Bootstrap -------------------------------------------------------------------

    async def _resolve_checkpoint(self, account_id: str) -> datetime | None:
        try:
            stored = await asyncio.to_thread(
                self.store.get_account_value, account_id, NOTIFICATION_CLEARED_AT_KEY
            )
        except StoreUnavailableError as exc:
            logger.warning("Account metadata unavailable, using local checkpoint: %s", exc)
            stored = None
        remote = _parse_checkpoint(stored)
        local = self._cleared_at.get(account_id)
        if remote is not None and (local is None or remote > local):
            self._cleared_at[account_id] = remote
            return remote
        return local

    async def bootstrap(
        self,
        account_id: str,
        office_ids: Iterable[int] | None = None,
    ) -> list[Notification]:
        """Rebuild suppression state and the feed from recent history.

        Runs on start and on every reconnect; the stream is never assumed to
        be continuous. Returns the notifications that were added, newest first.
        """
        if office_ids is not None:
            self._office_ids = frozenset(office_ids)
        if not self._office_ids:
            return []

        checkpoint = await self._resolve_checkpoint(account_id)
        since = self._clock() - self.bootstrap_window
        rows = await asyncio.to_thread(self.store.recent_rows, self._office_ids, since)
        active_tickets = await asyncio.to_thread(self.store.recent_ticket_ids, since)
        first_rows = earliest_per_ticket(rows)

        # Captured before pruning: tickets this viewer had already considered.
        blocked = set(self._seen_ticket_ids)
        if checkpoint is not None:
            blocked.update(
                ticket_id for ticket_id, row in first_rows.items() if row.created_at < checkpoint
            )
        self._seen_ticket_ids = (
            (self._seen_ticket_ids & active_tickets)
            | {row.ticket_id for row in rows}
            | {n.ticket_id for n in self._notifications}
        )

        candidates = sorted(
            (
                row
                for ticket_id, row in first_rows.items()
                if ticket_id not in blocked and row.id not in self._seen_sequence_ids
            ),
            key=lambda row: (row.created_at, row.id),
        )
        # Only the newest entries can survive the history cap.
        candidates = candidates[max(len(candidates) - self.history_size, 0) :]
        details = await asyncio.to_thread(self.store.describe_rows, candidates)

        loaded: list[Notification] = []
        for row in candidates:
            if not _is_first_row(row, details[row.id]):
                continue
            self._seen_sequence_ids.add(row.id)
            loaded.append(
                self._build(row, details[row.id], notification_id=f"notif-{row.id}", read=True)
            )
        loaded.reverse()

        if loaded:
            self._notifications = (loaded + self._notifications)[: self.history_size]
            logger.info(
                "Loaded %d recent notification(s) for %s across %d office(s)",
                len(loaded),
                account_id,
                len(self._office_ids),
            )
        else:
            logger.debug("No recent arrivals to load for %s", account_id)
        self._persist()
        return loaded

    # --- Live stream -----------------------------------------------------------------

    async def handle_change(self, event: ChangeEvent) -> Notification | None:
        """Feed handler. Only inserts can produce a notification."""
        if event.table != SEQUENCE_TABLE or event.kind != ChangeKind.INSERT:
            return None
        return await self.handle_insert(event.row)

    async def handle_insert(self, row: SequenceRow) -> Notification | None:
        if row.office_id not in self._office_ids:
            logger.debug("Ignoring sequence %s for office %s", row.id, row.office_id)
            return None
        if row.ticket_id in self._seen_ticket_ids:
            logger.debug("Ignoring staff action on already seen ticket %s", row.ticket_id)
            return None
        if row.id in self._seen_sequence_ids:
            logger.debug("Ignoring duplicate delivery of sequence %s", row.id)
            return None

        # Claimed before the lookup so a duplicate delivery arriving meanwhile is suppressed.
        self._seen_ticket_ids.add(row.ticket_id)
        try:
            details = await asyncio.to_thread(self.store.ticket_details, row)
        except StoreUnavailableError as exc:
            logger.warning("Could not describe sequence %s, notification dropped: %s", row.id, exc)
            self._persist()
            return None
        if not _is_first_row(row, details):
            logger.debug("Ignoring staff action on earlier ticket %s", row.ticket_id)
            self._persist()
            return None

        notification = self._build(
            row,
            details,
            notification_id=f"notif-{uuid.uuid4().hex[:12]}",
            read=False,
            timestamp=self._clock(),
        )
        self._seen_sequence_ids.add(row.id)
        self._notifications = [notification, *self._notifications][: self.history_size]
        logger.info(
            "New arrival %s at %s (sequence %s)",
            notification.ticket_code,
            notification.office_name,
            row.id,
        )
        self._persist()
        return notification

    def subscribe(self, feed: ChangeFeed) -> Subscription:
        """Start consuming inserts from ``feed``; the caller owns the returned handle."""
        return feed.subscribe(
            self.handle_change,
            kinds=[ChangeKind.INSERT],
            name=f"notifications:{self.viewer_key or id(self)}",
        )

    # --- Commands --------------------------------------------------------------------

    async def clear(self, account_id: str) -> datetime:
        """Empty the feed and move the account checkpoint to now.

        ``seen_ticket_ids`` is kept so a late staff-action row for an arrival
        that was already shown is not mistaken for a new one.
        """
        cleared_at = self._clock()
        self._cleared_at[account_id] = cleared_at
        self._notifications = []
        self._seen_sequence_ids = set()
        try:
            await asyncio.to_thread(
                self.store.set_account_value,
                account_id,
                NOTIFICATION_CLEARED_AT_KEY,
                cleared_at.isoformat(),
            )
        except StoreUnavailableError as exc:
            logger.warning("Failed to sync clear checkpoint for %s: %s", account_id, exc)
        self._persist()
        logger.info("Notifications cleared for %s at %s", account_id, cleared_at.isoformat())
        return cleared_at

    def set_scope(self, office_ids: Iterable[int]) -> int:
        """Restrict the viewer to ``office_ids`` and purge entries outside it.

        ``seen_sequence_ids`` is pruned to the surviving entries. Tickets stay
        in ``seen_ticket_ids`` so restoring the scope does not re-notify them.
        Returns the number of purged notifications.
        """
        self._office_ids = frozenset(office_ids)
        kept = [n for n in self._notifications if n.office_id in self._office_ids]
        purged = len(self._notifications) - len(kept)
        if purged:
            self._notifications = kept
            self._seen_sequence_ids = {n.sequence_id for n in kept}
            logger.info("Purged %d notification(s) from other offices", purged)
        self._persist()
        return purged

    def mark_read(self, notification_id: str) -> bool:
        for notification in self._notifications:
            if notification.id == notification_id:
                changed = not notification.read
                notification.read = True
                self._persist()
                return changed
        return False

    def mark_all_read(self) -> int:
        changed = 0
        for notification in self._notifications:
            if not notification.read:
                notification.read = True
                changed += 1
        if changed:
            self._persist()
        return changed

    # --- Persistence boundary --------------------------------------------------------

    def snapshot(self) -> ReconcilerSnapshot:
        return ReconcilerSnapshot(
            notifications=[n.model_copy() for n in self._notifications],
            seen_sequence_ids=sorted(self._seen_sequence_ids),
            seen_ticket_ids=sorted(self._seen_ticket_ids),
            cleared_at_by_account=dict(self._cleared_at),
        )

    def restore(self, snapshot: ReconcilerSnapshot) -> None:
        self._notifications = [n.model_copy() for n in snapshot.notifications][
            : self.history_size
        ]
        self._seen_sequence_ids = set(snapshot.seen_sequence_ids)
        self._seen_ticket_ids = set(snapshot.seen_ticket_ids)
        self._cleared_at = {
            account_id: as_utc(value)
            for account_id, value in snapshot.cleared_at_by_account.items()
        }

    def _persist(self) -> None:
        if self._state_cache is not None and self.viewer_key is not None:
            self._state_cache.save(self.viewer_key, self.snapshot())

    @staticmethod
    def _build(
        row: SequenceRow,
        details: TicketDetails,
        *,
        notification_id: str,
        read: bool,
        timestamp: datetime | None = None,
    ) -> Notification:
        return Notification(
            id=notification_id,
            sequence_id=row.id,
            ticket_id=row.ticket_id,
            office_id=row.office_id,
            office_name=details.office_name,
            ticket_code=details.ticket_code,
            priority_label=details.priority_label,
            timestamp=timestamp or row.created_at,
            read=read,
        )
