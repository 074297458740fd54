"""Notification fanout: durable inbox first, realtime push best effort."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from plantdesk.core.errors import DeliveryDegradedError
from plantdesk.metrics import MetricsRegistry, metrics_registry
from plantdesk.metrics.definitions import INBOX_ENTRIES_WRITTEN, REALTIME_PUSHES

from .connections import ConnectionManager
from .models import InboxEntry, NotificationEvent, build_entries
from .repository import InboxRepository

logger = logging.getLogger(__name__)


class NotificationFanout:
    """Deliver notification events to a notify-set.

    Ticket mutations persist their inbox entries inside the mutation
    transaction and then call :meth:`publish`; :meth:`notify` covers callers
    that hold no transaction of their own. Pushes run as background tasks so
    the triggering write never waits on a slow socket.
    """

    def __init__(
        self,
        inbox: InboxRepository,
        connections: ConnectionManager | None = None,
        *,
        push_timeout: float = 5.0,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._inbox = inbox
        self._connections = connections
        self._push_timeout = push_timeout
        self._metrics = metrics or metrics_registry
        self._pending: set[asyncio.Task[None]] = set()

    @staticmethod
    def build_entries(event: NotificationEvent, recipients: Sequence[str]) -> list[InboxEntry]:
        return build_entries(event, recipients)

    async def notify(self, event: NotificationEvent, recipients: Sequence[str]) -> list[InboxEntry]:
        """Persist one inbox entry per recipient (idempotently) and push the new ones."""

        entries = build_entries(event, recipients)
        stored = await self._inbox.add_entries(entries)
        self.record_stored(stored)
        self.publish(stored)
        return stored

    def record_stored(self, entries: Sequence[InboxEntry]) -> None:
        counter = self._metrics.counter(INBOX_ENTRIES_WRITTEN, label_names=("event_type",))
        for entry in entries:
            counter.inc(labels={"event_type": entry.event_type})

    def publish(self, entries: Sequence[InboxEntry]) -> None:
        """Schedule a realtime push per entry without awaiting delivery."""

        if self._connections is None:
            return
        for entry in entries:
            task = asyncio.create_task(self._push(entry), name=f"notify:{entry.id}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight pushes; used on shutdown and in tests."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _push(self, entry: InboxEntry) -> None:
        if self._connections is None:
            return
        outcome = "delivered"
        try:
            delivered = await self._connections.send_to_user(
                entry.recipient_id, entry.to_payload(), timeout=self._push_timeout
            )
            if delivered == 0:
                outcome = "offline"
                logger.debug("Recipient %s offline; notification %s stays queued", entry.recipient_id, entry.id)
        except DeliveryDegradedError as exc:
            outcome = "timeout" if exc.timed_out else "degraded"
            logger.warning("DeliveryDegraded: notification %s to %s: %s", entry.id, entry.recipient_id, exc)
        finally:
            self._metrics.counter(REALTIME_PUSHES, label_names=("outcome",)).inc(labels={"outcome": outcome})
