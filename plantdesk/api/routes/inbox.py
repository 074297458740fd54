from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from plantdesk.dependencies.auth import CurrentActor
from plantdesk.dependencies.services import InboxServiceDep
from plantdesk.notifications.models import InboxEntry, NotificationLevel

router = APIRouter(prefix="/inbox", tags=["notifications"])


class InboxEntryModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    event_id: str
    event_type: str
    title: str
    message: str
    level: NotificationLevel
    read: bool
    read_at: datetime | None = None
    created_at: datetime


class InboxPageModel(BaseModel):
    items: list[InboxEntryModel] = Field(default_factory=list)
    unread_count: int


class InboxCountModel(BaseModel):
    unread_count: int


class InboxBulkResultModel(BaseModel):
    affected: int
    unread_count: int


def _entry_to_model(entry: InboxEntry) -> InboxEntryModel:
    return InboxEntryModel.model_validate(entry)


@router.get("", response_model=InboxPageModel, summary="List the caller's notifications")
async def list_inbox(
    service: InboxServiceDep,
    actor: CurrentActor,
    limit: int = Query(default=20, ge=1),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = Query(default=False),
) -> InboxPageModel:
    page = await service.list_inbox(actor.user_id, limit=limit, offset=offset, unread_only=unread_only)
    return InboxPageModel(items=[_entry_to_model(entry) for entry in page.items], unread_count=page.unread_count)


@router.get("/unread-count", response_model=InboxCountModel)
async def unread_count(service: InboxServiceDep, actor: CurrentActor) -> InboxCountModel:
    return InboxCountModel(unread_count=await service.unread_count(actor.user_id))


@router.post("/read-all", response_model=InboxBulkResultModel)
async def mark_all_read(service: InboxServiceDep, actor: CurrentActor) -> InboxBulkResultModel:
    updated = await service.mark_all_read(actor.user_id)
    return InboxBulkResultModel(affected=updated, unread_count=await service.unread_count(actor.user_id))


@router.post("/clear", response_model=InboxBulkResultModel)
async def clear_inbox(service: InboxServiceDep, actor: CurrentActor) -> InboxBulkResultModel:
    deleted = await service.clear(actor.user_id)
    return InboxBulkResultModel(affected=deleted, unread_count=0)


@router.post("/{entry_id}/read", response_model=InboxEntryModel)
async def mark_read(entry_id: str, service: InboxServiceDep, actor: CurrentActor) -> InboxEntryModel:
    entry = await service.mark_read(actor.user_id, entry_id)
    return _entry_to_model(entry)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: str, service: InboxServiceDep, actor: CurrentActor) -> Response:
    await service.delete(actor.user_id, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
