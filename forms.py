"""
Dynamic form answers: validation against a form's fields, storage in
``Order.donnees_formulaire`` and read-back for display.

Answers are keyed by field id (as a string). Keys that match no field, such
as menu item option groups, are stored as given.
"""

import json
import logging
import re

from errors import ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_RE = re.compile(r'^\+?[1-9]\d{1,14}$')


def _blank(value):
    return value is None or (isinstance(value, str) and value.strip() == '')


def _check_field(field, value):
    """Error message for one answer, or None when it is acceptable"""
    if _blank(value):
        return f"{field.label} is required" if field.required else None

    if field.type == 'number':
        try:
            number = float(value)
        except (TypeError, ValueError):
            return f"{field.label} must be a number"
        if number < 0:
            return f"{field.label} must be zero or more"
        return None

    if not isinstance(value, str):
        return f"{field.label} must be text"
    if field.type == 'email' and not EMAIL_RE.match(value):
        return 'Invalid email address'
    if field.type == 'tel' and not PHONE_RE.match(value):
        return 'Invalid phone number'
    return None


def validate_answers(fields, answers):
    """Check answers against the form fields and return them unchanged.

    Answers are stored exactly as submitted so the production display reads
    back the same keys and values. All problems are reported at once in
    ``ValidationError.details``.
    """
    if answers is None:
        answers = {}
    if not isinstance(answers, dict):
        raise ValidationError('Form answers must be an object')

    errors = {}
    for field in fields:
        error = _check_field(field, answers.get(field.key))
        if error:
            errors[field.key] = error

    if errors:
        raise ValidationError('Form validation failed', details=errors)
    return dict(answers)


def serialize_answers(answers) -> str:
    return json.dumps(answers or {}, ensure_ascii=False)


def deserialize_answers(raw) -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning('Unreadable form data: %r', raw[:80] if isinstance(raw, str) else raw)
        return {}
    return data if isinstance(data, dict) else {}


def _find_group(option_groups, key):
    for group in option_groups or []:
        if str(group.get('id')) == str(key) or group.get('name') == key:
            return group
    return None


def _find_option(group, option_id):
    for option in group.get('options', []):
        if str(option.get('id')) == str(option_id):
            return option
    return None


def describe_options(menu_item, answers):
    """Turn stored answers into display lines.

    Option group ids or names become the group name and option ids become
    option names. Anything unknown is shown as stored.
    """
    groups = menu_item.option_groups if menu_item is not None else []
    lines = []
    for key, value in answers.items():
        group = _find_group(groups, key)
        values = value if isinstance(value, list) else [value]
        if group is None:
            lines.append({'group': key, 'options': [str(v) for v in values], 'priceAdjustment': 0})
            continue
        names = []
        adjustment = 0.0
        for option_id in values:
            option = _find_option(group, option_id)
            if option is None:
                names.append(str(option_id))
            else:
                names.append(option.get('name', str(option_id)))
                adjustment += float(option.get('priceAdjustment') or 0)
        lines.append({'group': group.get('name', key), 'options': names, 'priceAdjustment': round(adjustment, 2)})
    return lines


def options_price_adjustment(menu_item, answers):
    return round(sum(line['priceAdjustment'] for line in describe_options(menu_item, answers)), 2)


def validate_option_selection(menu_item, selected):
    """Required groups need a choice; single-choice groups take one option"""
    if selected is None:
        selected = {}
    if not isinstance(selected, dict):
        raise ValidationError('selectedOptions must be an object')
    errors = {}
    for group in menu_item.option_groups or []:
        key = str(group.get('id'))
        value = selected.get(key, selected.get(group.get('name')))
        values = value if isinstance(value, list) else ([] if _blank(value) else [value])
        if group.get('isRequired') and not values:
            errors[key] = f"{group.get('name', key)} is required"
        elif group.get('selectionType', 'single') == 'single' and len(values) > 1:
            errors[key] = f"Choose only one option for {group.get('name', key)}"
        elif any(_find_option(group, v) is None for v in values):
            errors[key] = f"Unknown option for {group.get('name', key)}"
    if errors:
        raise ValidationError('Invalid option selection', details=errors)
    return selected
