from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from plantdesk.api.routes import inbox, ping, realtime, tickets
from plantdesk.core.config import Settings, get_settings
from plantdesk.core.errors import register_exception_handlers
from plantdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from plantdesk.db.session import create_engine_and_session_factory
from plantdesk.identity.actors import ActorRegistry, RolePermissionChecker, StaticActorDirectory
from plantdesk.middleware import ActorMiddleware
from plantdesk.notifications.connections import ConnectionManager
from plantdesk.notifications.fanout import NotificationFanout
from plantdesk.notifications.repository import InboxRepository
from plantdesk.notifications.service import InboxService
from plantdesk.storage.blob import LocalBlobStore
from plantdesk.tickets.repository import TicketRepository
from plantdesk.tickets.service import TicketService
from plantdesk.tickets.sla import PriorityChangePolicy, SLAPolicy


def build_actor_registry(settings: Settings) -> ActorRegistry:
    if settings.actors_file is not None:
        return ActorRegistry.from_yaml(settings.actors_file)
    return ActorRegistry.demo()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pragma: no cover - executed by framework
    settings: Settings = app.state.settings
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    sla_policy = SLAPolicy.from_hours(settings.sla_windows)

    connections = ConnectionManager()
    app.state.connections = connections
    app.state.ticket_service = None
    app.state.inbox_service = None

    engine, session_factory = create_engine_and_session_factory(settings.database_url, echo=settings.sql_echo)
    fanout: NotificationFanout | None = None
    try:
        ticket_repository = TicketRepository(session_factory, engine=engine)
        await ticket_repository.ensure_schema()
        inbox_repository = InboxRepository(session_factory)
        fanout = NotificationFanout(
            inbox_repository,
            connections,
            push_timeout=settings.realtime_push_timeout_seconds,
        )
        app.state.ticket_service = TicketService(
            ticket_repository,
            fanout=fanout,
            directory=StaticActorDirectory(app.state.actor_registry),
            permissions=app.state.permission_checker,
            blob_store=LocalBlobStore(settings.attachments_dir, base_url=settings.attachments_base_url),
            sla_policy=sla_policy,
            priority_change_policy=PriorityChangePolicy(settings.sla_priority_change_policy),
            sla_warning_threshold_percent=settings.sla_warning_threshold_percent,
            page_limit_default=settings.ticket_page_limit_default,
            page_limit_max=settings.ticket_page_limit_max,
            max_attachment_bytes=settings.max_attachment_bytes,
        )
        app.state.inbox_service = InboxService(inbox_repository, max_page_size=settings.inbox_page_limit_max)
    except Exception:
        logger.exception("Ticket services could not be initialised; endpoints will answer 503")

    logger.info("%s started (%s)", settings.app_name, settings.environment)
    try:
        yield
    finally:
        if fanout is not None:
            await fanout.drain()
        await connections.close_all()
        await engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.actor_registry = build_actor_registry(settings)
    app.state.permission_checker = RolePermissionChecker()
    app.add_middleware(ActorMiddleware)
    register_exception_handlers(app)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(inbox.router)
    app.include_router(realtime.router)
    return app


app = create_app()
