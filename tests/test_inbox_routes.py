from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from plantdesk.core.errors import InboxEntryNotFoundError, TicketValidationError
from plantdesk.dependencies import services as service_deps
from plantdesk.main import create_app
from plantdesk.notifications.models import InboxEntry, InboxPage, NotificationLevel

TECH = {"Authorization": "Bearer tech-token"}


def _entry(*, read: bool = False) -> InboxEntry:
    now = datetime.now(timezone.utc)
    return InboxEntry(
        id="entry-1",
        recipient_id="tech-1",
        ticket_id="ticket-1",
        event_id="event-1",
        event_type="status_changed",
        title="Ticket resolved",
        message="Pump leaking: in_progress -> resolved",
        level=NotificationLevel.SUCCESS,
        read=read,
        created_at=now,
        read_at=now if read else None,
    )


@pytest.fixture
def inbox_client():
    app = create_app()
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[service_deps.get_inbox_service] = override_service
    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def test_list_inbox_returns_items_and_unread_count(inbox_client):
    client, service = inbox_client
    service.list_inbox = AsyncMock(return_value=InboxPage(items=[_entry()], unread_count=1))

    response = client.get("/inbox", params={"limit": 5, "unread_only": True}, headers=TECH)

    assert response.status_code == 200
    body = response.json()
    assert body["unread_count"] == 1
    assert body["items"][0]["event_type"] == "status_changed"
    assert body["items"][0]["level"] == "success"
    service.list_inbox.assert_awaited_with("tech-1", limit=5, offset=0, unread_only=True)


def test_list_inbox_maps_validation_errors(inbox_client):
    client, service = inbox_client
    service.list_inbox = AsyncMock(side_effect=TicketValidationError("limit too large"))

    response = client.get("/inbox", params={"limit": 1000}, headers=TECH)

    assert response.status_code == 422


def test_mark_read_returns_entry(inbox_client):
    client, service = inbox_client
    service.mark_read = AsyncMock(return_value=_entry(read=True))

    response = client.post("/inbox/entry-1/read", headers=TECH)

    assert response.status_code == 200
    assert response.json()["read"] is True
    service.mark_read.assert_awaited_with("tech-1", "entry-1")


def test_mark_read_of_foreign_entry_is_not_found(inbox_client):
    client, service = inbox_client
    service.mark_read = AsyncMock(side_effect=InboxEntryNotFoundError("entry-9"))

    response = client.post("/inbox/entry-9/read", headers=TECH)

    assert response.status_code == 404


def test_bulk_operations_report_affected_rows(inbox_client):
    client, service = inbox_client
    service.mark_all_read = AsyncMock(return_value=3)
    service.clear = AsyncMock(return_value=4)
    service.unread_count = AsyncMock(return_value=0)

    read_all = client.post("/inbox/read-all", headers=TECH)
    cleared = client.post("/inbox/clear", headers=TECH)
    count = client.get("/inbox/unread-count", headers=TECH)

    assert read_all.json() == {"affected": 3, "unread_count": 0}
    assert cleared.json() == {"affected": 4, "unread_count": 0}
    assert count.json() == {"unread_count": 0}


def test_delete_entry_returns_no_content(inbox_client):
    client, service = inbox_client

    response = client.delete("/inbox/entry-1", headers=TECH)

    assert response.status_code == 204
    service.delete.assert_awaited_with("tech-1", "entry-1")


def test_inbox_requires_authentication(inbox_client):
    client, service = inbox_client

    response = client.get("/inbox")

    assert response.status_code == 401
    service.list_inbox.assert_not_awaited()
