"""SLA deadline computation and clock evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping

from plantdesk.core.errors import TicketValidationError

from .models import Ticket, TicketPriority
from .state import TicketStatus

# Loosest priority first; allowed windows must shrink along this order.
_PRIORITY_ORDER: tuple[TicketPriority, ...] = (
    TicketPriority.LOW,
    TicketPriority.MEDIUM,
    TicketPriority.HIGH,
    TicketPriority.CRITICAL,
)


class SLAState(str, Enum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    MET = "met"


class PriorityChangePolicy(str, Enum):
    """What happens to running deadlines when a ticket's priority changes."""

    PRESERVE = "preserve"
    RECOMPUTE = "recompute"


@dataclass(frozen=True, slots=True)
class SLAWindow:
    response: timedelta
    resolution: timedelta


@dataclass(frozen=True, slots=True)
class SLADeadlines:
    response_deadline: datetime
    resolution_deadline: datetime


@dataclass(frozen=True, slots=True)
class TicketSLAStatus:
    response: SLAState
    resolution: SLAState


class SLAPolicy:
    """Priority to response/resolution window table.

    Windows must be positive and strictly shorter for every step up in priority.
    """

    DEFAULT_HOURS: Mapping[TicketPriority, tuple[float, float]] = {
        TicketPriority.LOW: (24, 96),
        TicketPriority.MEDIUM: (12, 72),
        TicketPriority.HIGH: (4, 24),
        TicketPriority.CRITICAL: (1, 8),
    }

    def __init__(self, windows: Mapping[TicketPriority, SLAWindow] | None = None) -> None:
        if windows is None:
            windows = {
                priority: SLAWindow(response=timedelta(hours=response), resolution=timedelta(hours=resolution))
                for priority, (response, resolution) in self.DEFAULT_HOURS.items()
            }
        self._windows = dict(windows)
        self._validate()

    @classmethod
    def from_hours(cls, table: Mapping[str, Mapping[str, float]]) -> SLAPolicy:
        """Build a policy from ``{"high": {"response_hours": 4, "resolution_hours": 24}, ...}``."""

        windows: dict[TicketPriority, SLAWindow] = {}
        for raw_priority, hours in table.items():
            try:
                priority = TicketPriority(raw_priority.lower())
                windows[priority] = SLAWindow(
                    response=timedelta(hours=float(hours["response_hours"])),
                    resolution=timedelta(hours=float(hours["resolution_hours"])),
                )
            except (KeyError, ValueError, TypeError) as exc:
                raise TicketValidationError(f"Invalid SLA window for priority {raw_priority!r}: {exc}") from exc
        return cls(windows)

    def _validate(self) -> None:
        missing = [priority.value for priority in _PRIORITY_ORDER if priority not in self._windows]
        if missing:
            raise TicketValidationError(f"SLA table is missing priorities: {', '.join(missing)}")
        previous: SLAWindow | None = None
        for priority in _PRIORITY_ORDER:
            window = self._windows[priority]
            if window.response <= timedelta(0) or window.resolution <= timedelta(0):
                raise TicketValidationError(f"SLA windows for {priority.value} must be positive")
            if previous is not None and (
                window.response >= previous.response or window.resolution >= previous.resolution
            ):
                raise TicketValidationError(
                    f"SLA windows for {priority.value} must be shorter than for lower priorities"
                )
            previous = window

    def window_for(self, priority: TicketPriority) -> SLAWindow:
        return self._windows[priority]

    def compute_deadlines(self, priority: TicketPriority, created_at: datetime) -> SLADeadlines:
        window = self.window_for(priority)
        return SLADeadlines(
            response_deadline=created_at + window.response,
            resolution_deadline=created_at + window.resolution,
        )


def evaluate_clock(
    started_at: datetime,
    deadline: datetime,
    now: datetime,
    *,
    met_at: datetime | None = None,
    warning_threshold_percent: float = 15.0,
) -> SLAState:
    """Classify one SLA clock at ``now``.

    A clock stopped by ``met_at`` reports ``met`` when it stopped in time and
    ``breached`` otherwise; running clocks turn ``at_risk`` once the remaining
    share of the window drops to the warning threshold.
    """

    if met_at is not None:
        return SLAState.MET if met_at <= deadline else SLAState.BREACHED

    remaining = (deadline - now).total_seconds()
    if remaining <= 0:
        return SLAState.BREACHED
    total = (deadline - started_at).total_seconds()
    percentage = (remaining / total) * 100 if total > 0 else 0.0
    if percentage <= warning_threshold_percent:
        return SLAState.AT_RISK
    return SLAState.ON_TRACK


def evaluate_ticket(ticket: Ticket, now: datetime, *, warning_threshold_percent: float = 15.0) -> TicketSLAStatus:
    # A reopened ticket keeps its first resolved_at but its resolution clock runs again.
    resolved_at = ticket.resolved_at if ticket.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED) else None
    return TicketSLAStatus(
        response=evaluate_clock(
            ticket.created_at,
            ticket.sla_response_deadline,
            now,
            met_at=ticket.first_response_at,
            warning_threshold_percent=warning_threshold_percent,
        ),
        resolution=evaluate_clock(
            ticket.created_at,
            ticket.sla_resolution_deadline,
            now,
            met_at=resolved_at,
            warning_threshold_percent=warning_threshold_percent,
        ),
    )
