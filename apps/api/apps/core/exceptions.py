"""
Domain error taxonomy shared by every engine.

Each error carries a stable ``error_type`` code which the API layer
returns to clients next to the human readable message.
"""
from typing import Any, Dict, Iterable, Optional


class DomainError(Exception):
    """Base class for all business rule violations."""

    error_type = 'domain_error'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'error_type': self.error_type,
            'details': self.details,
        }


class ValidationError(DomainError):
    """Malformed or missing required input. Never retried automatically."""

    error_type = 'validation_error'


class InvalidStateError(DomainError):
    """Operation is not legal in the aggregate's current lifecycle state."""

    error_type = 'invalid_state'


class InvalidTransitionError(InvalidStateError):
    """Requested status change is not in the transition table."""

    error_type = 'invalid_transition'

    def __init__(self, from_status: str, to_status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot transition from '{from_status}' to '{to_status}'",
            details={'from_status': from_status, 'to_status': to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class QualityGateError(DomainError):
    """Approval attempted while required checks are still failing."""

    error_type = 'quality_gate'

    def __init__(self, failed_checks: Iterable[str]):
        self.failed_checks = list(failed_checks)
        super().__init__(
            'Approval blocked by quality gate: ' + ', '.join(self.failed_checks),
            details={'failed_checks': self.failed_checks},
        )


class PermissionDeniedError(DomainError):
    """Actor role is not allowed to perform the requested step."""

    error_type = 'permission_denied'


class NotFoundError(DomainError):
    """Referenced aggregate or line item does not exist."""

    error_type = 'not_found'

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f'{entity_type} {entity_id} not found',
            details={'entity_type': entity_type, 'entity_id': str(entity_id)},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
