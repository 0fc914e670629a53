"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends

from walkin_queue.services.lifecycle import TicketLifecycle
from walkin_queue.services.monitor import NotificationHub, get_notification_hub
from walkin_queue.services.ticket_store import TicketStore, get_ticket_store

# Type alias for the ticket store dependency
StoreDep = Annotated[TicketStore, Depends(get_ticket_store)]

# Type alias for the notification hub dependency
HubDep = Annotated[NotificationHub, Depends(get_notification_hub)]


def get_lifecycle(store: StoreDep) -> TicketLifecycle:
    """Build the lifecycle service on top of the request's ticket store."""
    return TicketLifecycle(store)


LifecycleDep = Annotated[TicketLifecycle, Depends(get_lifecycle)]
