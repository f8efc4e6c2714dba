"""Tracing for calls and turns.

Every span callbridge opens goes through ``call_span``: one ``callbridge.call``
span per phone call, with ``callbridge.turn``, ``callbridge.completion`` and
``callbridge.tts`` nested under it. Attribute keywords are written the Python
way (``session_id=...``) and recorded with dotted OpenTelemetry names
(``session.id``).

``OTEL_EXPORTER`` picks where spans go:
  - ``console`` (default): printed to stdout as they end.
  - ``otlp``: batched to ``OTEL_EXPORTER_OTLP_ENDPOINT``. Needs the ``otlp`` extra.
  - ``none``: spans are recorded but never exported.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)

logger = logging.getLogger(__name__)

SPAN_PREFIX = "callbridge"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

_initialized = False


def _span_processor(kind: str) -> SpanProcessor | None:
    if kind == "none":
        logger.info("[Telemetry] Span export disabled.")
        return None
    if kind == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
        logger.info("[Telemetry] OTLP exporter → %s", endpoint)
        return BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))

    logger.info("[Telemetry] Console exporter active.")
    return SimpleSpanProcessor(ConsoleSpanExporter())


def init_telemetry() -> None:
    """Install the global TracerProvider once per process."""
    global _initialized
    if _initialized:
        return

    provider = TracerProvider(resource=Resource.create({"service.name": SPAN_PREFIX}))
    processor = _span_processor(os.environ.get("OTEL_EXPORTER", "console").lower())
    if processor is not None:
        provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    _initialized = True


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(SPAN_PREFIX)


def span_attributes(**attributes: Any) -> dict[str, Any]:
    """Map keyword attributes onto dotted span attribute names.

    ``session_id`` becomes ``session.id``. ``None`` values are dropped, since
    OpenTelemetry rejects them.
    """
    return {key.replace("_", "."): value for key, value in attributes.items() if value is not None}


@contextmanager
def call_span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Open the ``callbridge.<name>`` span as the current span."""
    with get_tracer().start_as_current_span(f"{SPAN_PREFIX}.{name}", attributes=span_attributes(**attributes)) as span:
        yield span
