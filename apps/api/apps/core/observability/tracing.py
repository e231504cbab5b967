"""
OpenTelemetry span helpers.

Only the API package is required; without an SDK configured the spans
are non-recording and cost almost nothing.
"""
from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

tracer = trace.get_tracer('cura')

_SPAN_KINDS = {
    'server': SpanKind.SERVER,
    'client': SpanKind.CLIENT,
    'internal': SpanKind.INTERNAL,
}


def _attribute_value(value):
    if isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


@contextmanager
def trace_span(
    name: str,
    kind: Optional[str] = None,
    attributes: Optional[Dict[str, Any]] = None
):
    """
    Open a span around a block.

    Usage:
        with trace_span('settlement.collect_commission', attributes={'entity_id': entity_id}):
            ...
    """
    with tracer.start_as_current_span(name, kind=_SPAN_KINDS.get(kind, SpanKind.INTERNAL)) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, _attribute_value(value))
        try:
            yield span
        except Exception as e:
            span.set_attribute('error.type', e.__class__.__name__)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise

