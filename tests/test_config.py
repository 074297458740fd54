import pytest
from pydantic import ValidationError

from plantdesk.core.config import Settings
from plantdesk.core.errors import TicketValidationError
from plantdesk.core.logging import parse_otlp_headers
from plantdesk.db.session import to_async_dsn
from plantdesk.tickets.models import TicketPriority
from plantdesk.tickets.sla import SLAPolicy


def test_default_sla_windows_build_a_valid_policy():
    policy = SLAPolicy.from_hours(Settings().sla_windows)

    assert policy.window_for(TicketPriority.CRITICAL).response.total_seconds() == 3600


def test_sla_windows_must_shrink_with_priority():
    windows = dict(Settings().sla_windows)
    windows["critical"] = {"response_hours": 48, "resolution_hours": 200}

    with pytest.raises(TicketValidationError):
        SLAPolicy.from_hours(windows)


def test_priority_change_policy_is_validated():
    assert Settings(sla_priority_change_policy=" Recompute ").sla_priority_change_policy == "recompute"
    with pytest.raises(ValidationError):
        Settings(sla_priority_change_policy="reset")


@pytest.mark.parametrize(
    ("dsn", "expected"),
    [
        ("postgresql://u:p@db/plantdesk", "postgresql+asyncpg://u:p@db/plantdesk"),
        ("postgres://u:p@db/plantdesk", "postgresql+asyncpg://u:p@db/plantdesk"),
        ("postgresql+asyncpg://u:p@db/plantdesk", "postgresql+asyncpg://u:p@db/plantdesk"),
        ("sqlite+aiosqlite:///./plantdesk.db", "sqlite+aiosqlite:///./plantdesk.db"),
    ],
)
def test_to_async_dsn(dsn, expected):
    assert to_async_dsn(dsn) == expected


def test_parse_otlp_headers_skips_malformed_pairs():
    assert parse_otlp_headers("api-key=abc, tenant = acme,broken,=x") == {"api-key": "abc", "tenant": "acme"}
    assert parse_otlp_headers(None) == {}
