from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: tuple[str, ...] = ()


TICKETS_CREATED = "tickets_created_total"
TICKET_MUTATIONS = "ticket_mutations_total"
TICKET_REJECTIONS = "ticket_operation_rejections_total"
TICKET_OPERATION_SECONDS = "ticket_operation_duration_seconds"
INBOX_ENTRIES_WRITTEN = "notification_inbox_entries_total"
REALTIME_PUSHES = "notification_realtime_pushes_total"

DEFAULT_METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition(TICKETS_CREATED, "counter", "Tickets created.", ("level", "priority")),
    MetricDefinition(TICKET_MUTATIONS, "counter", "Committed ticket mutations.", ("operation",)),
    MetricDefinition(
        TICKET_REJECTIONS,
        "counter",
        "Ticket operations rejected with a typed engine error.",
        ("operation", "code"),
    ),
    MetricDefinition(
        TICKET_OPERATION_SECONDS,
        "distribution",
        "Wall-clock duration of ticket engine operations.",
        ("operation",),
    ),
    MetricDefinition(INBOX_ENTRIES_WRITTEN, "counter", "Inbox entries persisted.", ("event_type",)),
    MetricDefinition(
        REALTIME_PUSHES,
        "counter",
        "Realtime push attempts by outcome (delivered, offline, degraded, timeout).",
        ("outcome",),
    ),
)
