from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from plantdesk.notifications.service import InboxService
from plantdesk.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not available")
    return service


async def get_inbox_service(request: Request) -> InboxService:
    service = getattr(request.app.state, "inbox_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Inbox service is not available")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
InboxServiceDep = Annotated[InboxService, Depends(get_inbox_service)]
