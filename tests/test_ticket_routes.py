from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from plantdesk.core.config import Settings
from plantdesk.core.errors import (
    InvalidTransitionError,
    TicketAlreadyInStateError,
    TicketForbiddenError,
    TicketNotFoundError,
)
from plantdesk.dependencies import services as service_deps
from plantdesk.main import create_app
from plantdesk.storage.uploads import MULTIPART_OVERHEAD_BYTES
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
from plantdesk.tickets.sla import SLAState, TicketSLAStatus
from plantdesk.tickets.state import TicketStatus

TECH = {"Authorization": "Bearer tech-token"}
MANAGER = {"Authorization": "Bearer manager-token"}


def _make_ticket(*, status: TicketStatus = TicketStatus.OPEN, level: TicketLevel = TicketLevel.PLANT) -> Ticket:
    now = datetime.now(timezone.utc)
    return Ticket(
        id=str(uuid4()),
        tenant_id="acme",
        plant_id="plant-1",
        title="Pump leaking",
        description="Oil under pump 3",
        is_general=False,
        level=level,
        status=status,
        priority=TicketPriority.HIGH,
        tags=["pump"],
        created_by="tech-1",
        creator_tier=TicketLevel.PLANT,
        created_at=now,
        last_activity_at=now,
        sla_response_deadline=now + timedelta(hours=4),
        sla_resolution_deadline=now + timedelta(hours=24),
    )


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    service.sla_status = MagicMock(
        return_value=TicketSLAStatus(response=SLAState.ON_TRACK, resolution=SLAState.ON_TRACK)
    )

    async def override_service():
        return service

    app.dependency_overrides[service_deps.get_ticket_service] = override_service
    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_endpoint_returns_created(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket()
    service.create_ticket = AsyncMock(return_value=ticket)

    response = client.post(
        "/tickets",
        json={"plant_id": "plant-1", "title": "Pump leaking", "priority": "high", "tags": ["pump"]},
        headers=TECH,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == ticket.id
    assert body["sla"] == {"response": "on_track", "resolution": "on_track"}
    actor = service.create_ticket.await_args.args[0]
    assert actor.user_id == "tech-1"
    assert service.create_ticket.await_args.kwargs["priority"] is TicketPriority.HIGH


def test_create_ticket_requires_authentication(ticket_client):
    client, service = ticket_client

    response = client.post("/tickets", json={"plant_id": "plant-1", "title": "Pump leaking"})

    assert response.status_code == 401
    service.create_ticket.assert_not_awaited()


def test_list_tickets_endpoint_passes_filters(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket(status=TicketStatus.RESOLVED)
    service.list_tickets = AsyncMock(return_value=[ticket])

    response = client.get(
        "/tickets",
        params={"status": "resolved", "level": "plant", "q": "pump", "limit": 10, "offset": 5},
        headers=MANAGER,
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body) == 1
    assert body[0]["status"] == TicketStatus.RESOLVED.value
    kwargs = service.list_tickets.await_args.kwargs
    assert kwargs == {
        "query": "pump",
        "status": TicketStatus.RESOLVED,
        "level": TicketLevel.PLANT,
        "limit": 10,
        "offset": 5,
    }


def test_get_ticket_returns_timeline(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket()
    event = TimelineEvent(
        id=str(uuid4()),
        ticket_id=ticket.id,
        sequence=1,
        event_type=TimelineEventType.CREATED,
        actor_id="tech-1",
        message="Ticket created",
        created_at=ticket.created_at,
        metadata={"level": "plant"},
    )
    comment = Comment(str(uuid4()), ticket.id, "manager-1", "On my way", False, ticket.created_at)
    service.get_ticket = AsyncMock(return_value=TicketAggregate(ticket=ticket, comments=[comment], events=[event]))

    response = client.get(f"/tickets/{ticket.id}", headers=TECH)

    assert response.status_code == 200
    body = response.json()
    assert body["ticket"]["id"] == ticket.id
    assert body["comments"][0]["body"] == "On my way"
    assert body["events"][0]["event_type"] == "created"
    assert body["events"][0]["metadata"] == {"level": "plant"}


def test_get_missing_ticket_returns_not_found(ticket_client):
    client, service = ticket_client
    service.get_ticket = AsyncMock(side_effect=TicketNotFoundError("missing"))

    response = client.get("/tickets/missing", headers=TECH)

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_change_status_returns_conflict_on_invalid_transition(ticket_client):
    client, service = ticket_client
    service.set_status = AsyncMock(side_effect=InvalidTransitionError("nope"))

    response = client.post(f"/tickets/{uuid4()}/status", json={"status": "closed"}, headers=MANAGER)

    assert response.status_code == 409
    assert response.json() == {"detail": "nope", "code": "invalid_transition"}


def test_change_status_reports_already_in_state(ticket_client):
    client, service = ticket_client
    service.set_status = AsyncMock(side_effect=TicketAlreadyInStateError("Ticket is already closed"))

    response = client.post(f"/tickets/{uuid4()}/status", json={"status": "closed"}, headers=MANAGER)

    assert response.status_code == 409
    assert response.json()["code"] == "already_in_state"


def test_forward_accepts_optional_note(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket(level=TicketLevel.COMPANY)
    service.forward = AsyncMock(return_value=ticket)

    with_note = client.post(f"/tickets/{ticket.id}/forward", json={"note": "Needs vendor"}, headers=MANAGER)
    without_note = client.post(f"/tickets/{ticket.id}/forward", headers=MANAGER)

    assert with_note.status_code == 200
    assert with_note.json()["level"] == "company"
    assert without_note.status_code == 200
    notes = [call.kwargs["note"] for call in service.forward.await_args_list]
    assert notes == ["Needs vendor", None]


def test_forward_forbidden_maps_to_403(ticket_client):
    client, service = ticket_client
    service.forward = AsyncMock(side_effect=TicketForbiddenError("Missing permission"))

    response = client.post(f"/tickets/{uuid4()}/forward", headers=TECH)

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_add_comment_rejects_empty_body(ticket_client):
    client, service = ticket_client

    response = client.post(f"/tickets/{uuid4()}/comments", json={"body": ""}, headers=TECH)

    assert response.status_code == 422
    service.add_comment.assert_not_awaited()


def test_upload_attachment_reads_file(ticket_client):
    client, service = ticket_client
    ticket_id = str(uuid4())
    attachment = Attachment(
        id=str(uuid4()),
        ticket_id=ticket_id,
        uploaded_by="tech-1",
        file_name="photo.jpg",
        url="/attachments/abc/photo.jpg",
        size_bytes=4,
        content_type="image/jpeg",
        created_at=datetime.now(timezone.utc),
    )
    service.attach_file = AsyncMock(return_value=attachment)

    response = client.post(
        f"/tickets/{ticket_id}/attachments",
        files={"file": ("photo.jpg", b"data", "image/jpeg")},
        headers=TECH,
    )

    assert response.status_code == 201
    assert response.json()["url"] == "/attachments/abc/photo.jpg"
    kwargs = service.attach_file.await_args.kwargs
    assert kwargs["content"] == b"data"
    assert kwargs["file_name"] == "photo.jpg"
    assert kwargs["content_type"] == "image/jpeg"


def test_ticket_routes_answer_503_without_service():
    client = TestClient(create_app())

    response = client.get("/tickets", headers=TECH)

    assert response.status_code == 503


def test_create_ticket_rejects_overlong_plant_id(ticket_client):
    client, service = ticket_client

    response = client.post("/tickets", json={"plant_id": "p" * 65, "title": "Pump leaking"}, headers=TECH)

    assert response.status_code == 422
    service.create_ticket.assert_not_awaited()


def test_oversized_upload_is_rejected_before_reaching_the_service():
    app = create_app(Settings(max_attachment_bytes=16))
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[service_deps.get_ticket_service] = override_service
    client = TestClient(app)

    small_limit = client.post(
        f"/tickets/{uuid4()}/attachments",
        files={"file": ("photo.jpg", b"x" * 100, "image/jpeg")},
        headers=TECH,
    )
    large_body = client.post(
        f"/tickets/{uuid4()}/attachments",
        files={"file": ("photo.jpg", b"x" * (MULTIPART_OVERHEAD_BYTES + 1024), "image/jpeg")},
        headers=TECH,
    )

    assert small_limit.status_code == 422
    assert large_body.status_code == 422
    assert large_body.json()["code"] == "validation_error"
    service.attach_file.assert_not_awaited()
