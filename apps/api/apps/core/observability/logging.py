"""
Structured logging with PII protection.

Patient and customer identity, contact details and free-text clinical
notes never reach the log stream.
"""
import json
import logging
from datetime import datetime, timezone

from .correlation import get_request_context


# Keys whose values are always redacted, at any nesting depth
SENSITIVE_FIELDS = {
    'password',
    'token',
    'secret',
    'api_key',
    'authorization',
    'patient_name',
    'customer_name',
    'customer_phone',
    'phone',
    'email',
    'address',
    'notes',
    'issue_notes',
    'instructions',
    'rejection_reason',
    'reason',
    'doctor_name',
    'hospital_clinic',
}

# Attributes every LogRecord carries; never copied into the payload
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message', 'asctime',
}

REDACTED = '[REDACTED]'


class CorrelationFilter(logging.Filter):
    """Inject request id, trace id and actor into every record."""

    def filter(self, record):
        context = get_request_context()
        record.request_id = context.request_id or '-'
        record.trace_id = context.trace_id or '-'
        record.user_id = context.user_id or '-'
        record.actor_role = context.actor_role or '-'
        return True


class SanitizedJSONFormatter(logging.Formatter):
    """One JSON object per line, sensitive keys redacted."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', '-'),
            'trace_id': getattr(record, 'trace_id', '-'),
            'user_id': getattr(record, 'user_id', '-'),
            'actor_role': getattr(record, 'actor_role', '-'),
        }

        for key, value in record.__dict__.items():
            if key in log_data or key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if key.lower() in SENSITIVE_FIELDS:
                log_data[key] = REDACTED
            else:
                log_data[key] = sanitize_value(value)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def sanitize_value(value):
    """Redact sensitive keys inside nested dicts and lists."""
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    return value


def sanitize_dict(data):
    """
    Return a copy of ``data`` with sensitive keys redacted.

    Non-dict input is returned unchanged.
    """
    if not isinstance(data, dict):
        return data
    return {
        key: REDACTED if str(key).lower() in SENSITIVE_FIELDS else sanitize_value(value)
        for key, value in data.items()
    }


def get_sanitized_logger(name):
    """
    Get a logger with the correlation filter attached.

    Usage:
        logger = get_sanitized_logger(__name__)
        logger.info('Order suspended', extra={'order_id': order.order_id})
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())
    return logger
