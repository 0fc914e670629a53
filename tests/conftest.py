# tests/conftest.py
from __future__ import annotations

from collections.abc import Generator, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from walkin_queue.db.session import Base
from walkin_queue.main import app as fastapi_app
from walkin_queue.models import Office, PriorityType, ServiceWindow, StatusType
from walkin_queue.services import monitor as monitor_module
from walkin_queue.services import ticket_store as ticket_store_module
from walkin_queue.services.change_feed import ChangeFeed
from walkin_queue.services.lifecycle import TicketLifecycle
from walkin_queue.services.monitor import NotificationHub
from walkin_queue.services.reconciler_state import ReconcilerStateCache, clear_local_state
from walkin_queue.services.ticket_store import TicketStore

START = datetime(2026, 3, 2, 10, 0, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock handed to the store and the reconciler."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int, second: int = 0) -> datetime:
        self.now = self.now.replace(hour=hour, minute=minute, second=second, microsecond=0)
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@dataclass(frozen=True)
class Reference:
    """Ids of the seeded offices, windows, priorities and statuses."""

    office_1: int
    office_2: int
    window_1: int
    window_2: int
    window_3: int
    regular: int
    urgent: int
    senior: int
    pending: int
    serving: int
    arrived: int
    completed: int


@pytest.fixture(scope="session")
def engine(tmp_path_factory: pytest.TempPathFactory) -> Generator[Engine, None, None]:
    # File-backed so worker threads get their own connections.
    path = tmp_path_factory.mktemp("db") / "queue.db"
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())
        clear_local_state()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture()
def store(session_factory: sessionmaker[Session], clock: FakeClock) -> TicketStore:
    return TicketStore(session_factory, ChangeFeed(), clock)


@pytest.fixture()
def lifecycle(store: TicketStore) -> TicketLifecycle:
    return TicketLifecycle(store)


@pytest.fixture()
def reference(session_factory: sessionmaker[Session]) -> Reference:
    with session_factory() as db, db.begin():
        office_1 = Office(description="Registration", is_active=True, created_at=START)
        office_2 = Office(description="Laboratory", is_active=True, created_at=START)
        db.add_all([office_1, office_2])
        db.flush()
        window_1 = ServiceWindow(office_id=office_1.id, description="Window 1")
        window_2 = ServiceWindow(office_id=office_1.id, description="Window 2")
        window_3 = ServiceWindow(office_id=office_2.id, description="Lab Counter")
        priorities = [
            PriorityType(label="Regular", created_at=START),
            PriorityType(label="Urgent", created_at=START),
            PriorityType(label="Senior Citizen", created_at=START),
        ]
        statuses = [
            StatusType(label="Pending", created_at=START),
            StatusType(label="Now Serving", created_at=START),
            StatusType(label="Arrived", created_at=START),
            StatusType(label="Completed", created_at=START),
        ]
        db.add_all([window_1, window_2, window_3, *priorities, *statuses])
        db.flush()
        return Reference(
            office_1=office_1.id,
            office_2=office_2.id,
            window_1=window_1.id,
            window_2=window_2.id,
            window_3=window_3.id,
            regular=priorities[0].id,
            urgent=priorities[1].id,
            senior=priorities[2].id,
            pending=statuses[0].id,
            serving=statuses[1].id,
            arrived=statuses[2].id,
            completed=statuses[3].id,
        )


@pytest.fixture()
def local_state_cache() -> ReconcilerStateCache:
    return ReconcilerStateCache(use_redis=False, ttl_seconds=3600)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    store: TicketStore,
    local_state_cache: ReconcilerStateCache,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[TestClient]:
    monkeypatch.setattr(ticket_store_module._TicketStoreSingleton, "_instance", store)
    monkeypatch.setattr(
        monitor_module._NotificationHubSingleton,
        "_instance",
        NotificationHub(store, state_cache=local_state_cache),
    )
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
