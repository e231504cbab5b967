"""
Observability for the Cura API.

Structured logging with PII redaction, prometheus metrics, OpenTelemetry
spans, request correlation and health endpoints.
"""
from .metrics import metrics
from .events import log_domain_event
from .logging import get_sanitized_logger
from .tracing import trace_span

__all__ = ['metrics', 'log_domain_event', 'get_sanitized_logger', 'trace_span']
