"""
Request correlation middleware.

Generates or propagates X-Request-ID, remembers who is acting, and
records per-request metrics.
"""
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from django.utils.deprecation import MiddlewareMixin

_local = threading.local()


@dataclass
class RequestContext:
    request_id: Optional[str] = None
    trace_id: Optional[str] = None
    user_id: Optional[str] = None
    actor_role: Optional[str] = None


def get_request_context() -> RequestContext:
    context = getattr(_local, 'context', None)
    if context is None:
        context = RequestContext()
        _local.context = context
    return context


def get_request_id():
    return get_request_context().request_id


def get_trace_id():
    return get_request_context().trace_id


def clear_request_context():
    """Drop the current thread's context (used between requests and in tests)."""
    _local.context = RequestContext()


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    - Propagates X-Request-ID / X-Trace-ID, generating a request id if absent
    - Stores the context thread-locally for the logging filter
    - Echoes the ids on the response and counts the request
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    TRACE_ID_HEADER = 'HTTP_X_TRACE_ID'

    def process_request(self, request):
        request.request_id = request.META.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.trace_id = request.META.get(self.TRACE_ID_HEADER)
        request.start_time = time.time()

        context = RequestContext(request_id=request.request_id, trace_id=request.trace_id)
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            context.user_id = str(user.pk)
            context.actor_role = ','.join(user.groups.values_list('name', flat=True)) or None
        _local.context = context

    def process_response(self, request, response):
        # Imported lazily to keep logging config importable before metrics
        from .metrics import metrics
        from .logging import get_sanitized_logger

        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        if getattr(request, 'trace_id', None):
            response['X-Trace-ID'] = request.trace_id

        if hasattr(request, 'start_time'):
            duration = time.time() - request.start_time
            route = getattr(getattr(request, 'resolver_match', None), 'route', None) or 'unmatched'
            metrics.http_requests_total.labels(
                route=route, method=request.method, status=str(response.status_code)
            ).inc()
            metrics.http_request_duration_seconds.labels(route=route, method=request.method).observe(duration)
            get_sanitized_logger(__name__).info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration * 1000, 2),
                }
            )

        clear_request_context()
        return response

    def process_exception(self, request, exception):
        from .logging import get_sanitized_logger

        get_sanitized_logger(__name__).error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
            }
        )
