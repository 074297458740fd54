from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from plantdesk.metrics.definitions import INBOX_ENTRIES_WRITTEN, REALTIME_PUSHES
from plantdesk.notifications.fanout import NotificationFanout
from plantdesk.notifications.models import NotificationEvent, NotificationLevel, notification_id


def _event(event_id: str = "evt-1") -> NotificationEvent:
    return NotificationEvent(
        event_id=event_id,
        ticket_id="ticket-1",
        event_type="status_changed",
        title="Ticket resolved",
        message="Pump leaking: in_progress -> resolved",
        level=NotificationLevel.SUCCESS,
        created_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
    )


def test_entry_ids_are_stable_per_event_and_recipient():
    entries = NotificationFanout.build_entries(_event(), ["u-1", "u-2", "u-1"])

    assert [entry.recipient_id for entry in entries] == ["u-1", "u-2"]
    assert entries[0].id == notification_id("evt-1", "u-1")
    assert entries[0].id != notification_id("evt-2", "u-1")
    assert all(not entry.read for entry in entries)


@pytest.mark.asyncio
async def test_repeated_delivery_keeps_one_row_per_recipient(fanout, inbox_repository):
    first = await fanout.notify(_event(), ["u-1", "u-2"])
    second = await fanout.notify(_event(), ["u-1", "u-2"])
    await fanout.drain()

    assert len(first) == 2
    assert second == []
    assert len(await inbox_repository.list_entries("u-1", limit=10)) == 1
    assert len(await inbox_repository.list_entries("u-2", limit=10)) == 1
    assert await inbox_repository.count_unread("u-1") == 1


@pytest.mark.asyncio
async def test_connected_recipient_gets_push_offline_one_stays_queued(
    fanout, connections, socket_factory, inbox_repository, metrics
):
    socket = socket_factory()
    await connections.connect(socket, "u-1")

    await fanout.notify(_event(), ["u-1", "u-2"])
    await fanout.drain()

    assert [message["event_id"] for message in socket.messages] == ["evt-1"]
    assert socket.messages[0]["type"] == "notification"
    assert await inbox_repository.count_unread("u-2") == 1
    pushes = metrics.counter(REALTIME_PUSHES, label_names=("outcome",))
    assert pushes.value({"outcome": "delivered"}) == 1
    assert pushes.value({"outcome": "offline"}) == 1
    written = metrics.counter(INBOX_ENTRIES_WRITTEN, label_names=("event_type",))
    assert written.value({"event_type": "status_changed"}) == 2


@pytest.mark.asyncio
async def test_push_failure_is_logged_and_inbox_keeps_entry(
    fanout, connections, socket_factory, inbox_repository, caplog
):
    await connections.connect(socket_factory(fail=True), "u-1")
    healthy = socket_factory()
    await connections.connect(healthy, "u-2")

    with caplog.at_level(logging.WARNING, logger="plantdesk.notifications.fanout"):
        stored = await fanout.notify(_event(), ["u-1", "u-2"])
        await fanout.drain()

    assert len(stored) == 2
    assert "DeliveryDegraded" in caplog.text
    assert len(healthy.messages) == 1
    assert await inbox_repository.count_unread("u-1") == 1


@pytest.mark.asyncio
async def test_slow_session_times_out_without_blocking_notify(
    inbox_repository, connections, socket_factory, metrics, caplog
):
    fanout = NotificationFanout(inbox_repository, connections, push_timeout=0.01, metrics=metrics)
    await connections.connect(socket_factory(delay=1.0), "u-1")

    with caplog.at_level(logging.WARNING, logger="plantdesk.notifications.fanout"):
        stored = await fanout.notify(_event(), ["u-1"])
        assert fanout.pending == 1
        await fanout.drain()

    assert len(stored) == 1
    assert "timed out" in caplog.text
    assert metrics.counter(REALTIME_PUSHES, label_names=("outcome",)).value({"outcome": "timeout"}) == 1


@pytest.mark.asyncio
async def test_fanout_without_realtime_only_fills_the_inbox(inbox_repository, metrics):
    fanout = NotificationFanout(inbox_repository, metrics=metrics)

    stored = await fanout.notify(_event(), ["u-1"])

    assert len(stored) == 1
    assert fanout.pending == 0
    assert await inbox_repository.count_unread("u-1") == 1
    assert metrics.counter(REALTIME_PUSHES, label_names=("outcome",)).value({"outcome": "offline"}) == 0
