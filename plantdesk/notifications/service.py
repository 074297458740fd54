from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from plantdesk.core.errors import InboxEntryNotFoundError, TicketValidationError

from .models import InboxEntry, InboxPage
from .repository import InboxRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboxService:
    """Read side of the notification inbox. Unread counts always come from the store."""

    def __init__(
        self,
        repository: InboxRepository,
        *,
        max_page_size: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._max_page_size = max_page_size
        self._clock = clock

    async def list_inbox(
        self,
        user_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
    ) -> InboxPage:
        if limit < 1 or offset < 0:
            raise TicketValidationError("limit must be positive and offset non-negative")
        items = await self._repository.list_entries(
            user_id,
            limit=min(limit, self._max_page_size),
            offset=offset,
            unread_only=unread_only,
        )
        unread = await self._repository.count_unread(user_id)
        return InboxPage(items=items, unread_count=unread)

    async def unread_count(self, user_id: str) -> int:
        return await self._repository.count_unread(user_id)

    async def mark_read(self, user_id: str, entry_id: str) -> InboxEntry:
        entry = await self._repository.mark_read(user_id, entry_id, self._clock())
        if entry is None:
            raise InboxEntryNotFoundError(entry_id)
        return entry

    async def mark_all_read(self, user_id: str) -> int:
        return await self._repository.mark_all_read(user_id, self._clock())

    async def clear(self, user_id: str) -> int:
        return await self._repository.clear(user_id)

    async def delete(self, user_id: str, entry_id: str) -> None:
        if not await self._repository.delete_entry(user_id, entry_id):
            raise InboxEntryNotFoundError(entry_id)
