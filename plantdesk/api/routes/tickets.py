from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field

from plantdesk.core.errors import TicketValidationError
from plantdesk.dependencies.auth import TicketReader, TicketWriter
from plantdesk.dependencies.services import TicketServiceDep
from plantdesk.storage.uploads import content_length_exceeds_limit, get_upload_file_size
from plantdesk.tickets.models import (
    Attachment,
    Comment,
    Ticket,
    TicketAggregate,
    TicketLevel,
    TicketPriority,
    TimelineEvent,
    TimelineEventType,
)
from plantdesk.tickets.service import TicketService
from plantdesk.tickets.sla import SLAState
from plantdesk.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class SLAStatusModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    response: SLAState
    resolution: SLAState


class TicketModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    plant_id: str
    title: str
    description: str
    is_general: bool
    level: TicketLevel
    status: TicketStatus
    priority: TicketPriority
    tags: list[str]
    created_by: str
    creator_tier: TicketLevel
    created_at: datetime
    last_activity_at: datetime
    sla_response_deadline: datetime
    sla_resolution_deadline: datetime
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    forwarded_by: str | None = None
    forwarded_at: datetime | None = None
    forward_note: str | None = None
    version: int
    sla: SLAStatusModel | None = None


class CommentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author_id: str
    body: str
    is_internal: bool
    created_at: datetime


class TimelineEventModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence: int
    event_type: TimelineEventType
    actor_id: str
    message: str | None = None
    metadata: dict[str, object] = Field(default_factory=dict)
    created_at: datetime


class AttachmentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    uploaded_by: str
    file_name: str
    url: str
    size_bytes: int
    content_type: str | None = None
    created_at: datetime


class TicketDetailModel(BaseModel):
    ticket: TicketModel
    comments: list[CommentModel]
    events: list[TimelineEventModel]


class TicketCreateRequest(BaseModel):
    plant_id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(default="")
    is_general: bool = Field(default=False)
    priority: TicketPriority = Field(default=TicketPriority.MEDIUM)
    tags: list[str] = Field(default_factory=list)
    tenant_id: str | None = Field(default=None, max_length=64, description="Only honoured for superadmins")


class TicketUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    priority: TicketPriority | None = None
    tags: list[str] | None = None


class CommentCreateRequest(BaseModel):
    body: str = Field(min_length=1)
    is_internal: bool = Field(default=False)


class StatusChangeRequest(BaseModel):
    status: TicketStatus


class ForwardRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


def _ticket_to_model(ticket: Ticket, service: TicketService) -> TicketModel:
    model = TicketModel.model_validate(ticket)
    model.sla = SLAStatusModel.model_validate(service.sla_status(ticket))
    return model


def _aggregate_to_model(aggregate: TicketAggregate, service: TicketService) -> TicketDetailModel:
    return TicketDetailModel(
        ticket=_ticket_to_model(aggregate.ticket, service),
        comments=[_comment_to_model(comment) for comment in aggregate.comments],
        events=[_event_to_model(event) for event in aggregate.events],
    )


def _comment_to_model(comment: Comment) -> CommentModel:
    return CommentModel.model_validate(comment)


def _event_to_model(event: TimelineEvent) -> TimelineEventModel:
    return TimelineEventModel.model_validate(event)


def _attachment_to_model(attachment: Attachment) -> AttachmentModel:
    return AttachmentModel.model_validate(attachment)


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED, summary="Open a ticket")
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep, actor: TicketWriter) -> TicketModel:
    ticket = await service.create_ticket(
        actor,
        plant_id=payload.plant_id,
        title=payload.title,
        description=payload.description,
        is_general=payload.is_general,
        priority=payload.priority,
        tags=payload.tags,
        tenant_id=payload.tenant_id,
    )
    return _ticket_to_model(ticket, service)


@router.get("", response_model=list[TicketModel], summary="List tickets visible to the caller")
async def list_tickets(
    service: TicketServiceDep,
    actor: TicketReader,
    q: str | None = Query(default=None, description="Search in title and description"),
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    level: TicketLevel | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> list[TicketModel]:
    tickets = await service.list_tickets(
        actor, query=q, status=status_filter, level=level, limit=limit, offset=offset
    )
    return [_ticket_to_model(ticket, service) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketDetailModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: TicketReader) -> TicketDetailModel:
    aggregate = await service.get_ticket(actor, ticket_id)
    return _aggregate_to_model(aggregate, service)


@router.patch("/{ticket_id}", response_model=TicketModel)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    actor: TicketWriter,
) -> TicketModel:
    ticket = await service.update_ticket(
        actor,
        ticket_id,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        tags=payload.tags,
    )
    return _ticket_to_model(ticket, service)


@router.post("/{ticket_id}/comments", response_model=CommentModel, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    actor: TicketWriter,
) -> CommentModel:
    comment = await service.add_comment(actor, ticket_id, payload.body, is_internal=payload.is_internal)
    return _comment_to_model(comment)


@router.post(
    "/{ticket_id}/attachments",
    response_model=AttachmentModel,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an attachment",
)
async def upload_attachment(
    ticket_id: str,
    request: Request,
    service: TicketServiceDep,
    actor: TicketWriter,
    file: UploadFile = File(...),
    file_name: str | None = Form(default=None, max_length=255),
) -> AttachmentModel:
    max_bytes = request.app.state.settings.max_attachment_bytes
    if content_length_exceeds_limit(request.headers.get("content-length"), max_size_bytes=max_bytes):
        raise TicketValidationError(f"Attachment exceeds {max_bytes} bytes")
    if await get_upload_file_size(file) > max_bytes:
        raise TicketValidationError(f"Attachment exceeds {max_bytes} bytes")
    content = await file.read()
    attachment = await service.attach_file(
        actor,
        ticket_id,
        file_name=file_name or file.filename or "",
        content=content,
        content_type=file.content_type,
    )
    return _attachment_to_model(attachment)


@router.get("/{ticket_id}/attachments", response_model=list[AttachmentModel])
async def list_attachments(ticket_id: str, service: TicketServiceDep, actor: TicketReader) -> list[AttachmentModel]:
    attachments = await service.list_attachments(actor, ticket_id)
    return [_attachment_to_model(attachment) for attachment in attachments]


@router.post("/{ticket_id}/status", response_model=TicketModel)
async def set_status(
    ticket_id: str,
    payload: StatusChangeRequest,
    service: TicketServiceDep,
    actor: TicketWriter,
) -> TicketModel:
    ticket = await service.set_status(actor, ticket_id, payload.status)
    return _ticket_to_model(ticket, service)


@router.post("/{ticket_id}/forward", response_model=TicketModel, summary="Escalate to the next tier")
async def forward_ticket(
    ticket_id: str,
    service: TicketServiceDep,
    actor: TicketReader,
    payload: ForwardRequest | None = None,
) -> TicketModel:
    ticket = await service.forward(actor, ticket_id, note=payload.note if payload else None)
    return _ticket_to_model(ticket, service)
