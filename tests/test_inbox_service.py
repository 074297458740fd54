from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from plantdesk.core.errors import InboxEntryNotFoundError, TicketValidationError
from plantdesk.notifications.models import NotificationEvent, NotificationLevel, build_entries

BASE = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


async def _seed(inbox_repository, recipient: str, count: int):
    entries = []
    for index in range(count):
        event = NotificationEvent(
            event_id=f"evt-{index}",
            ticket_id="ticket-1",
            event_type="commented",
            title=f"Comment {index}",
            message="...",
            level=NotificationLevel.INFO,
            created_at=BASE + timedelta(minutes=index),
        )
        entries.extend(await inbox_repository.add_entries(build_entries(event, [recipient])))
    return entries


@pytest.mark.asyncio
async def test_list_inbox_returns_newest_first_with_store_count(inbox_service, inbox_repository):
    await _seed(inbox_repository, "u-1", 5)

    page = await inbox_service.list_inbox("u-1", limit=2, offset=0)
    rest = await inbox_service.list_inbox("u-1", limit=10, offset=2)

    assert [entry.title for entry in page.items] == ["Comment 4", "Comment 3"]
    assert page.unread_count == 5
    assert len(rest.items) == 3


@pytest.mark.asyncio
async def test_page_size_is_capped(inbox_service, inbox_repository):
    await _seed(inbox_repository, "u-1", 3)

    with pytest.raises(TicketValidationError):
        await inbox_service.list_inbox("u-1", limit=0)
    page = await inbox_service.list_inbox("u-1", limit=500)

    assert len(page.items) == 3


@pytest.mark.asyncio
async def test_mark_read_is_one_way_and_idempotent(inbox_service, inbox_repository):
    entries = await _seed(inbox_repository, "u-1", 2)

    first = await inbox_service.mark_read("u-1", entries[0].id)
    again = await inbox_service.mark_read("u-1", entries[0].id)
    unread_page = await inbox_service.list_inbox("u-1", unread_only=True)

    assert first.read is True
    assert again.read_at == first.read_at
    assert [entry.id for entry in unread_page.items] == [entries[1].id]
    assert unread_page.unread_count == 1


@pytest.mark.asyncio
async def test_entries_of_other_users_are_not_found(inbox_service, inbox_repository):
    entries = await _seed(inbox_repository, "u-1", 1)

    with pytest.raises(InboxEntryNotFoundError):
        await inbox_service.mark_read("u-2", entries[0].id)
    with pytest.raises(InboxEntryNotFoundError):
        await inbox_service.delete("u-2", entries[0].id)


@pytest.mark.asyncio
async def test_mark_all_read_clear_and_delete(inbox_service, inbox_repository):
    entries = await _seed(inbox_repository, "u-1", 3)
    await _seed(inbox_repository, "u-2", 1)

    assert await inbox_service.mark_all_read("u-1") == 3
    assert await inbox_service.mark_all_read("u-1") == 0
    assert await inbox_service.unread_count("u-1") == 0

    await inbox_service.delete("u-1", entries[0].id)
    assert len((await inbox_service.list_inbox("u-1")).items) == 2

    assert await inbox_service.clear("u-1") == 2
    assert (await inbox_service.list_inbox("u-1")).items == []
    assert await inbox_service.unread_count("u-2") == 1
