"""OpenTelemetry tracing for sync runs.

Spans always go through the OpenTelemetry API. Without the SDK installed
(``pip install boardsync[otel]``) the API's default provider is a no-op and
the spans cost next to nothing. ``configure_telemetry`` installs an SDK
provider once per process when the CLI is asked to export spans.
"""

from __future__ import annotations

import importlib
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, NamedTuple

from opentelemetry import trace

from .logging import get_logger

TRACER_NAME = "boardsync"
ATTRIBUTE_PREFIX = "boardsync."
_state = {"configured": False}


class _Sdk(NamedTuple):
    tracer_provider: Any
    resource: Any
    batch_processor: Any
    console_exporter: Any
    otlp_exporter: Any


def _load_sdk() -> _Sdk | None:
    """Import the optional SDK pieces; ``None`` when they are not installed."""
    try:
        sdk_trace = importlib.import_module("opentelemetry.sdk.trace")
        sdk_export = importlib.import_module("opentelemetry.sdk.trace.export")
        sdk_resources = importlib.import_module("opentelemetry.sdk.resources")
        otlp = importlib.import_module("opentelemetry.exporter.otlp.proto.http.trace_exporter")
    except ImportError:
        return None
    return _Sdk(
        tracer_provider=sdk_trace.TracerProvider,
        resource=sdk_resources.Resource,
        batch_processor=sdk_export.BatchSpanProcessor,
        console_exporter=sdk_export.ConsoleSpanExporter,
        otlp_exporter=otlp.OTLPSpanExporter,
    )


def configure_telemetry(
    *,
    service_name: str,
    exporter: str = "console",
    endpoint: str | None = None,
) -> bool:
    """Install an SDK tracer provider; False when the SDK is missing."""
    if _state["configured"]:
        return True
    sdk = _load_sdk()
    if sdk is None:
        get_logger().warning(
            "BOARDSYNC_OTEL_EXPORTER is set but the OpenTelemetry SDK is not installed"
        )
        return False

    if exporter.lower() == "otlp":
        span_exporter = sdk.otlp_exporter(endpoint=endpoint) if endpoint else sdk.otlp_exporter()
    else:
        span_exporter = sdk.console_exporter()
    provider = sdk.tracer_provider(resource=sdk.resource.create({"service.name": service_name}))
    provider.add_span_processor(sdk.batch_processor(span_exporter))
    trace.set_tracer_provider(provider)
    _state["configured"] = True
    get_logger().debug(f"Tracing enabled ({exporter}) for {service_name}")
    return True


@contextmanager
def span(name: str, **attributes: Any) -> Iterator[Any]:
    """Open a span named ``name`` with ``boardsync.``-prefixed attributes."""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as current:
        for key, value in attributes.items():
            current.set_attribute(f"{ATTRIBUTE_PREFIX}{key}", value)
        yield current


__all__ = ["configure_telemetry", "span"]
