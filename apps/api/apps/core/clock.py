"""Server-assigned timestamps for audit logs."""
from datetime import datetime
from typing import Optional

from django.utils import timezone


def utc_now() -> datetime:
    return timezone.now()


def not_before(timestamp: datetime, floor: Optional[datetime]) -> datetime:
    """
    Clamp ``timestamp`` so that it never precedes ``floor``.

    Audit entries for one aggregate must be non-decreasing even if the
    wall clock steps backwards between two calls.
    """
    if floor is not None and timestamp < floor:
        return floor
    return timestamp
