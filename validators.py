# Request payload parsing helpers
from datetime import date, datetime

from flask import request

from errors import NotFoundError, ValidationError


def get_or_404(model, id_, label=None):
    obj = model.query.get(id_) if id_ is not None else None
    if obj is None:
        raise NotFoundError(f"{label or model.__name__} not found")
    return obj


def parse_date(value, field, required=True):
    if value in (None, ''):
        if required:
            raise ValidationError(f"Missing field: {field}")
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)")


def parse_float(value, field, required=False, minimum=None):
    if value in (None, ''):
        if required:
            raise ValidationError(f"Missing field: {field}")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return number


def parse_int(value, field, required=False, minimum=None):
    number = parse_float(value, field, required=required, minimum=minimum)
    if number is None:
        return None
    if not number.is_integer():
        raise ValidationError(f"{field} must be a whole number")
    return int(number)


def parse_choice(value, field, choices, default=None):
    if value in (None, ''):
        if default is not None:
            return default
        raise ValidationError(f"Missing field: {field}")
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_id_list(value, field):
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return [parse_int(v, field) for v in value]


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def json_body():
    """The request's JSON object, or {} when there is no body"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data
