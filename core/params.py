"""
Query-string parsing helpers shared by the API views.
"""
from datetime import datetime, time
from typing import Iterable, Optional

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import InventoryValidationError


def int_param(request, name: str, default: int, minimum: int = 1, maximum: Optional[int] = None) -> int:
    raw = request.query_params.get(name)
    if raw in (None, ''):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InventoryValidationError(f"{name} must be an integer", errors={name: ['Must be an integer.']})
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise InventoryValidationError(f"{name} must be {bounds}", errors={name: [f'Must be {bounds}.']})
    return value


def bool_param(request, name: str) -> Optional[bool]:
    raw = request.query_params.get(name, '').lower()
    if raw in ('true', '1', 'yes'):
        return True
    if raw in ('false', '0', 'no'):
        return False
    return None


def datetime_param(request, name: str, end_of_day: bool = False):
    """Accept an ISO datetime or a bare date (start of day, or end of day for upper bounds)."""
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        day = parse_date(raw)
        value = parse_datetime(raw) if day is None else None
    except ValueError:
        day = value = None
    if day is not None:
        value = datetime.combine(day, time.max if end_of_day else time.min)
    if value is None:
        raise InventoryValidationError(
            f"{name} must be an ISO date or datetime",
            errors={name: ['Must be an ISO date or datetime.']},
        )
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


def ordering_param(request, allowed: Iterable[str], default: str) -> str:
    ordering = request.query_params.get('ordering') or default
    if ordering.lstrip('-') not in allowed:
        raise InventoryValidationError(
            f"Invalid ordering: {ordering}",
            errors={'ordering': [f"Must be one of {', '.join(allowed)} (optionally prefixed with '-')."]},
        )
    return ordering
