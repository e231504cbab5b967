"""
DRF glue shared by the domain apps.

- ``domain_exception_handler`` maps DomainError subclasses to HTTP responses
- ``ActorMixin`` derives the audit Actor from the authenticated user
"""
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .actors import actor_from_user
from .exceptions import (
    DomainError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from .observability import get_sanitized_logger, metrics

logger = get_sanitized_logger(__name__)


def status_for(exc: DomainError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, PermissionDeniedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, InvalidStateError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def domain_exception_handler(exc, context):
    """
    REST_FRAMEWORK['EXCEPTION_HANDLER'] entry point.

    Domain errors become ``{error, error_type, details}`` bodies; anything
    else falls through to DRF's default handler.
    """
    if not isinstance(exc, DomainError):
        return exception_handler(exc, context)

    view = context.get('view')
    location = view.__class__.__name__ if view is not None else 'api'
    metrics.exceptions_total.labels(
        exception_type=exc.__class__.__name__,
        location=location,
    ).inc()
    logger.warning(
        'Domain error returned to client',
        extra={
            'event': 'domain_error',
            'error_type': exc.error_type,
            'view': location,
        }
    )
    return Response(exc.to_dict(), status=status_for(exc))


class ActorMixin:
    """Adds ``get_actor()`` to a DRF view."""

    def get_actor(self):
        return actor_from_user(self.request.user)
