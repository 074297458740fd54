"""Logging and tracing set-up for the ticket service."""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from plantdesk.core.config import Settings

_TRACER_INITIALISED = False
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Split ``key=value,key2=value2`` into a header mapping, skipping malformed pairs."""

    if not raw:
        return {}
    headers: dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the root handler and return the service logger."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    loggers = {name: {"level": "WARNING"} for name in _QUIET_LOGGERS}
    if settings.sql_echo:
        loggers["sqlalchemy.engine"] = {"level": "INFO"}
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "loggers": loggers,
            "root": {"handlers": ["console"], "level": level},
        }
    )

    logger = logging.getLogger("plantdesk")
    logger.setLevel(level)
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Register an OTLP-exporting tracer provider when tracing is switched on."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource(
            attributes={
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_otlp_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and release the provider."""

    global _TRACER_INITIALISED

    if provider is None:
        return
    provider.shutdown()
    _TRACER_INITIALISED = False


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer; spans are no-ops until :func:`init_tracer` installs a provider."""

    return trace.get_tracer(name)
