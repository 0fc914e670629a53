"""Serialized "now serving" announcements.

Windows can claim tickets in quick succession; announcements are played one
at a time in claim order so they never talk over each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from walkin_queue.core.settings import settings
from walkin_queue.services.paging import Pager
from walkin_queue.services.priority import PriorityClass, classify
from walkin_queue.services.projection import SequenceView

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Announcement:
    """One pending page for a ticket bound to a window."""

    sequence_id: int
    ticket_code: str
    window_name: str | None = None
    office_name: str | None = None
    priority_label: str | None = None

    @classmethod
    def from_view(cls, view: SequenceView) -> Announcement:
        return cls(
            sequence_id=view.id,
            ticket_code=view.ticket_code,
            window_name=view.window_name,
            office_name=view.office_name,
            priority_label=view.priority_label,
        )

    @property
    def text(self) -> str:
        spoken_code = " ".join(self.ticket_code)
        where = self.window_name or "the counter"
        lead = "Now serving"
        if classify(self.priority_label) is not PriorityClass.REGULAR:
            lead = f"Now serving {self.priority_label}"
        return f"{lead}, ticket {spoken_code}, please proceed to {where}."


class AnnouncementSequencer:
    """FIFO of pending announcements with a single "currently announcing" slot.

    A playback that fails is logged and counted as done so the queue always
    advances. Sequence ids already announced, queued or seeded are skipped.
    """

    def __init__(
        self,
        pager: Pager,
        *,
        repeat: int | None = None,
        pause_seconds: float | None = None,
        settle_seconds: float | None = None,
    ) -> None:
        self.pager = pager
        self.repeat = repeat if repeat is not None else settings.announcement_repeat_count
        self.pause_seconds = (
            pause_seconds if pause_seconds is not None else settings.announcement_pause_seconds
        )
        self.settle_seconds = (
            settle_seconds if settle_seconds is not None else settings.announcement_settle_seconds
        )
        self._pending: deque[Announcement] = deque()
        self._current: Announcement | None = None
        self._announced: set[int] = set()
        self._task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def current(self) -> Announcement | None:
        return self._current

    @property
    def pending(self) -> list[Announcement]:
        return list(self._pending)

    def seed(self, sequence_ids: Iterable[int]) -> None:
        """Mark rows that were already serving on load as announced.

        Replaces the handled set: rows that are no longer serving are never
        inserted again, so only these and the queued ones need remembering.
        """
        announced = set(sequence_ids)
        announced.update(announcement.sequence_id for announcement in self._pending)
        if self._current is not None:
            announced.add(self._current.sequence_id)
        self._announced = announced

    def enqueue(self, announcement: Announcement) -> bool:
        """Queue an announcement; returns False if that sequence was already handled."""
        if announcement.sequence_id in self._announced:
            return False
        self._announced.add(announcement.sequence_id)
        self._pending.append(announcement)
        self._idle.clear()
        self._kick()
        return True

    def _kick(self) -> None:
        if self._current is None and (self._task is None or self._task.done()):
            self._task = asyncio.get_running_loop().create_task(
                self._drain(), name="announcement-sequencer"
            )

    async def _drain(self) -> None:
        try:
            while self._current is None and self._pending:
                self._current = self._pending.popleft()
                await self._play(self._current)
                await asyncio.sleep(self.settle_seconds)
                self._current = None
        finally:
            self._current = None
            if not self._pending:
                self._idle.set()

    async def _play(self, announcement: Announcement) -> None:
        try:
            await self.pager.announce(
                announcement.text,
                repeat=self.repeat,
                pause_seconds=self.pause_seconds,
            )
        except Exception as exc:
            logger.warning(
                "Announcement for ticket %s failed, moving on: %s",
                announcement.ticket_code,
                exc,
            )

    async def join(self) -> None:
        """Wait until every queued announcement has been played."""
        await self._idle.wait()

    async def close(self) -> None:
        """Stop playback and drop whatever is still queued."""
        self._pending.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._current = None
        self._idle.set()
