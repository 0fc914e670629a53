"""Notification feed endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from walkin_queue.api.v1.dependencies import HubDep
from walkin_queue.schemas import ClearNotificationsRequest, NotificationFeed
from walkin_queue.services.monitor import NotificationHub, QueueMonitor

router = APIRouter(prefix="/notifications", tags=["notifications"])

AccountQuery = Annotated[str, Query(min_length=1, description="Viewing account")]


def _feed(monitor: QueueMonitor) -> NotificationFeed:
    reconciler = monitor.reconciler
    return NotificationFeed(
        account_id=monitor.account_id,
        unread=reconciler.unread_count,
        cleared_at=reconciler.cleared_at(monitor.account_id),
        notifications=reconciler.notifications,
    )


def _require_monitor(hub: NotificationHub, account_id: str) -> QueueMonitor:
    monitor = hub.get(account_id)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No notification feed is open for this account",
        )
    return monitor


@router.get("", response_model=NotificationFeed)
async def get_notifications(
    hub: HubDep,
    account_id: AccountQuery,
    office_ids: Annotated[list[int], Query(description="Offices the viewer may see")],
) -> NotificationFeed:
    """Open (or rescope) the account's feed and return it, newest first."""
    monitor = await hub.monitor_for(account_id, office_ids)
    return _feed(monitor)


@router.post("/clear", response_model=NotificationFeed)
async def clear_notifications(payload: ClearNotificationsRequest, hub: HubDep) -> NotificationFeed:
    """Hide everything up to now for this account on every device."""
    cleared_at = await hub.clear(payload.account_id)
    monitor = hub.get(payload.account_id)
    if monitor is not None:
        return _feed(monitor)
    return NotificationFeed(account_id=payload.account_id, unread=0, cleared_at=cleared_at)


@router.post("/read-all", response_model=NotificationFeed)
async def mark_all_read(hub: HubDep, account_id: AccountQuery) -> NotificationFeed:
    monitor = _require_monitor(hub, account_id)
    monitor.reconciler.mark_all_read()
    return _feed(monitor)


@router.post("/{notification_id}/read", response_model=NotificationFeed)
async def mark_read(
    notification_id: str,
    hub: HubDep,
    account_id: AccountQuery,
) -> NotificationFeed:
    monitor = _require_monitor(hub, account_id)
    if not any(n.id == notification_id for n in monitor.reconciler.notifications):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    monitor.reconciler.mark_read(notification_id)
    return _feed(monitor)
