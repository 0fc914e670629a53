# tests/services/test_monitor.py
import asyncio
import threading

import pytest
from pytest_mock import MockerFixture

from walkin_queue.services.announcer import AnnouncementSequencer
from walkin_queue.services.claim import ClaimCoordinator
from walkin_queue.services.lifecycle import TicketLifecycle
from walkin_queue.services.monitor import NotificationHub, QueueMonitor
from walkin_queue.services.paging import LoggingPager
from walkin_queue.services.reconciler_state import ReconcilerStateCache
from walkin_queue.services.status import StatusBucket
from walkin_queue.services.ticket_store import TicketStore

ACCOUNT = "front-desk"


async def _settle(monitor: QueueMonitor) -> None:
    await monitor.store.feed.join()
    if monitor.announcer is not None:
        await asyncio.wait_for(monitor.announcer.join(), timeout=2)


def _monitor(store: TicketStore, office_ids, pager: LoggingPager, **kwargs) -> QueueMonitor:
    announcer = AnnouncementSequencer(pager, repeat=1, pause_seconds=0, settle_seconds=0)
    return QueueMonitor(
        store,
        account_id=ACCOUNT,
        office_ids=office_ids,
        announcer=announcer,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_monitor_tracks_queue_and_announces_new_claims_once(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    clock,
    reference,
) -> None:
    coordinator = ClaimCoordinator(store)
    first = lifecycle.issue(reference.office_1, reference.regular)
    already_serving = coordinator.claim(reference.office_1, reference.window_1).claimed

    pager = LoggingPager()
    monitor = _monitor(store, [reference.office_1], pager)
    await monitor.start()
    try:
        assert monitor.running
        assert monitor.serving_entry(reference.office_1, reference.window_1).id == (
            already_serving.id
        )
        assert [n.ticket_id for n in monitor.reconciler.notifications] == [first.ticket_id]

        clock.advance(60)
        second = lifecycle.issue(reference.office_1, reference.urgent)
        await _settle(monitor)
        assert [v.id for v in monitor.waiting_list(reference.office_1)] == [second.id]
        assert monitor.reconciler.unread_count == 1

        clock.advance(60)
        claimed = coordinator.claim(reference.office_1, reference.window_2).claimed
        await _settle(monitor)
        assert monitor.waiting_list(reference.office_1) == []
        assert monitor.serving_entry(reference.office_1, reference.window_2).id == claimed.id
        assert len(pager.spoken) == 1
        assert "Window 2" in pager.spoken[0]
        assert " ".join(second.ticket_code) in pager.spoken[0]

        lifecycle.arrive(claimed.id)
        await _settle(monitor)
        entry = monitor.serving_entry(reference.office_1, reference.window_2)
        assert entry.bucket is StatusBucket.ARRIVED
        assert len(pager.spoken) == 1

        await monitor.reconnect()
        await _settle(monitor)
        assert len(pager.spoken) == 1
        assert len(monitor.reconciler.notifications) == 2
        assert monitor.serving_entry(reference.office_1, reference.window_2).bucket is (
            StatusBucket.ARRIVED
        )
    finally:
        await monitor.stop()

    assert not monitor.running
    assert store.feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_monitor_ignores_other_offices(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    pager = LoggingPager()
    monitor = _monitor(store, [reference.office_2], pager)
    await monitor.start()
    try:
        lifecycle.issue(reference.office_1, reference.regular)
        ClaimCoordinator(store).claim(reference.office_1, reference.window_1)
        await _settle(monitor)
        assert len(monitor.snapshot) == 0
        assert monitor.reconciler.notifications == []
        assert pager.spoken == []
    finally:
        await monitor.stop()


@pytest.mark.asyncio
async def test_scope_change_reloads_the_snapshot(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    registration = lifecycle.issue(reference.office_1, reference.regular)
    laboratory = lifecycle.issue(reference.office_2, reference.regular)
    monitor = _monitor(store, [reference.office_1, reference.office_2], LoggingPager())
    await monitor.start()
    try:
        assert len(monitor.reconciler.notifications) == 2
        await monitor.set_scope([reference.office_2])
        assert [v.id for v in monitor.snapshot.rows] == [laboratory.id]
        assert [n.sequence_id for n in monitor.reconciler.notifications] == [laboratory.id]
        assert monitor.waiting_list(reference.office_1) == []
        assert registration.ticket_id in monitor.reconciler.seen_ticket_ids
    finally:
        await monitor.stop()


@pytest.mark.asyncio
async def test_hub_reuses_monitors_and_clears_without_one(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    clock,
    reference,
    local_state_cache: ReconcilerStateCache,
) -> None:
    lifecycle.issue(reference.office_1, reference.regular)
    hub = NotificationHub(store, state_cache=local_state_cache)
    try:
        monitor = await hub.monitor_for(ACCOUNT, [reference.office_1])
        assert await hub.monitor_for(ACCOUNT, [reference.office_1]) is monitor
        assert hub.get(ACCOUNT) is monitor
        assert monitor.announcer is None
        assert len(monitor.reconciler.notifications) == 1

        clock.advance(5)
        cleared_at = await hub.clear(ACCOUNT)
        assert monitor.reconciler.notifications == []
        assert monitor.reconciler.cleared_at(ACCOUNT) == cleared_at

        other_cleared = await hub.clear("kiosk")
        assert other_cleared == clock()
        assert hub.get("kiosk") is None
    finally:
        await hub.close()

    assert hub.get(ACCOUNT) is None
    assert store.feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_check_in_during_start_is_applied_after_the_load(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
    mocker: MockerFixture,
) -> None:
    original = store.describe_rows
    issued = []

    def describe_then_check_in(rows):
        if not issued:
            issued.append(lifecycle.issue(reference.office_1, reference.regular))
        return original(rows)

    mocker.patch.object(store, "describe_rows", side_effect=describe_then_check_in)
    monitor = _monitor(store, [reference.office_1], LoggingPager())
    await monitor.start()
    try:
        await _settle(monitor)
        assert [v.id for v in monitor.waiting_list(reference.office_1)] == [issued[0].id]
        notifications = monitor.reconciler.notifications
        assert [n.sequence_id for n in notifications] == [issued[0].id]
        assert notifications[0].read is False
    finally:
        await monitor.stop()


@pytest.mark.asyncio
async def test_reconnect_recovers_arrivals_missed_while_disconnected(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
    mocker: MockerFixture,
) -> None:
    monitor = _monitor(store, [reference.office_1], LoggingPager())
    await monitor.start()
    try:
        dropped = mocker.patch.object(store.feed, "publish_all")
        issued = lifecycle.issue(reference.office_1, reference.regular)
        await _settle(monitor)
        dropped.assert_called_once()
        assert monitor.waiting_list(reference.office_1) == []
        assert monitor.reconciler.notifications == []
        mocker.stopall()

        await monitor.reconnect()
        await _settle(monitor)
        assert [v.id for v in monitor.waiting_list(reference.office_1)] == [issued.id]
        assert [n.sequence_id for n in monitor.reconciler.notifications] == [issued.id]
    finally:
        await monitor.stop()


@pytest.mark.asyncio
async def test_monitor_reads_the_store_off_the_event_loop_thread(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
    mocker: MockerFixture,
) -> None:
    loop_thread = threading.get_ident()
    threads: dict[str, int] = {}

    def record(name: str) -> None:
        original = getattr(store, name)

        def wrapper(*args, **kwargs):
            threads[name] = threading.get_ident()
            return original(*args, **kwargs)

        mocker.patch.object(store, name, side_effect=wrapper)

    record("load_views")
    record("get_view")
    monitor = _monitor(store, [reference.office_1], LoggingPager())
    await monitor.start()
    try:
        issued = await lifecycle.generate_ticket(reference.office_1, reference.regular)
        await _settle(monitor)
        assert [v.id for v in monitor.waiting_list(reference.office_1)] == [issued.id]
    finally:
        await monitor.stop()

    assert set(threads) == {"load_views", "get_view"}
    assert loop_thread not in threads.values()
