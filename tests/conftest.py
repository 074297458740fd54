from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from plantdesk.db.session import create_schema
from plantdesk.identity.actors import Actor, ActorRegistry, Role, RolePermissionChecker, StaticActorDirectory
from plantdesk.metrics import MetricsRegistry, register_default_metrics
from plantdesk.notifications.connections import ConnectionManager
from plantdesk.notifications.fanout import NotificationFanout
from plantdesk.notifications.repository import InboxRepository
from plantdesk.notifications.service import InboxService
from plantdesk.storage.blob import LocalBlobStore
from plantdesk.tickets.repository import TicketRepository
from plantdesk.tickets.service import TicketService

START = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)


class TickingClock:
    """Returns strictly increasing timestamps, one second apart."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSocket:
    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        self.accepted = False
        self.closed_with: int | None = None
        self.sent: list[str] = []
        self.fail = fail
        self.delay = delay

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = code

    @property
    def messages(self) -> list[dict]:
        return [json.loads(item) for item in self.sent]


ACTORS = {
    "tech": Actor("tech-1", Role.TECHNICIAN, "acme", frozenset({"plant-1"}), "Tess"),
    "tech2": Actor("tech-2", Role.TECHNICIAN, "acme", frozenset({"plant-1"}), "Theo"),
    "manager": Actor("manager-1", Role.PLANT_MANAGER, "acme", frozenset({"plant-1"}), "Mo"),
    "manager_other_plant": Actor("manager-2", Role.PLANT_MANAGER, "acme", frozenset({"plant-2"}), "Mia"),
    "company": Actor("company-1", Role.COMPANY_ADMIN, "acme", frozenset(), "Cy"),
    "company_other_tenant": Actor("company-9", Role.COMPANY_ADMIN, "globex", frozenset(), "Gus"),
    "superadmin": Actor("root-1", Role.SUPERADMIN, None, frozenset(), "Sam"),
}


@pytest.fixture
def actors() -> dict[str, Actor]:
    return dict(ACTORS)


@pytest.fixture
def actor_registry() -> ActorRegistry:
    return ActorRegistry([(f"{name}-token", actor) for name, actor in ACTORS.items()])


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def socket_factory():
    return FakeSocket


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'plantdesk.db'}")
    await create_schema(engine)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def inbox_repository(session_factory) -> InboxRepository:
    return InboxRepository(session_factory)


@pytest.fixture
def ticket_repository(session_factory) -> TicketRepository:
    return TicketRepository(session_factory)


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


@pytest_asyncio.fixture
async def fanout(inbox_repository, connections, metrics):
    fanout = NotificationFanout(inbox_repository, connections, push_timeout=0.5, metrics=metrics)
    yield fanout
    await fanout.drain()


@pytest.fixture
def inbox_service(inbox_repository, clock) -> InboxService:
    return InboxService(inbox_repository, max_page_size=50, clock=clock)


@pytest.fixture
def make_ticket_service(ticket_repository, fanout, actor_registry, clock, metrics, tmp_path):
    def factory(**overrides) -> TicketService:
        options = {
            "fanout": fanout,
            "directory": StaticActorDirectory(actor_registry),
            "permissions": RolePermissionChecker(),
            "blob_store": LocalBlobStore(tmp_path / "blobs", base_url="https://files.test/attachments"),
            "clock": clock,
            "metrics": metrics,
        }
        options.update(overrides)
        return TicketService(ticket_repository, **options)

    return factory


@pytest.fixture
def ticket_service(make_ticket_service) -> TicketService:
    return make_ticket_service()
