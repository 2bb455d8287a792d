"""Form and query-string values turned into Python types, or a ValidationError."""
from datetime import date, datetime

from errors import ValidationError


def parse_date(value):
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError('Invalid date format. Use YYYY-MM-DD.')


def parse_int(value, label=None):
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{label or "Value"} must be a whole number, not {value!r}.')
