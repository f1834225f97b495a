from jsonschema import Draft7Validator, FormatChecker

from .errors import ValidationFailed
from .models import Role

UUID_PATTERN = r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$'
EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'
SLUG_PATTERN = r'^[a-zA-Z0-9_-]+$'
ROLES = [r.value for r in Role]

EMAIL = {'type': 'string', 'pattern': EMAIL_PATTERN, 'maxLength': 255}
UUID = {'type': 'string', 'pattern': UUID_PATTERN}

LOGIN_SCHEMA = {
    'type': 'object',
    'properties': {
        'email': EMAIL,
        'password': {'type': 'string', 'minLength': 1},
    },
    'required': ['email', 'password'],
}

CREATE_USER_SCHEMA = {
    'type': 'object',
    'properties': {
        'email': EMAIL,
        'password': {
            'type': 'string',
            'minLength': 8,
            'pattern': r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)',
        },
        'role': {'type': 'string', 'enum': ROLES},
    },
    'required': ['email', 'password'],
}

UPDATE_USER_SCHEMA = {
    'type': 'object',
    'properties': {
        'email': EMAIL,
        'role': {'type': 'string', 'enum': ROLES},
    },
    'additionalProperties': False,
}

UPLOAD_SCHEMA = {
    'type': 'object',
    'properties': {
        'projectSlug': {'type': 'string', 'minLength': 1, 'maxLength': 50, 'pattern': SLUG_PATTERN},
    },
    'required': ['projectSlug'],
}

CREATE_ASSIGNMENT_SCHEMA = {
    'type': 'object',
    'properties': {'fileId': UUID, 'userId': UUID},
    'required': ['fileId', 'userId'],
}

BULK_ASSIGNMENT_SCHEMA = {
    'type': 'object',
    'properties': {
        'fileId': UUID,
        'userIds': {'type': 'array', 'items': UUID, 'minItems': 1},
    },
    'required': ['fileId', 'userIds'],
}

PAGINATION_SCHEMA = {
    'type': 'object',
    'properties': {
        'page': {'type': 'integer', 'minimum': 1},
        'limit': {'type': 'integer', 'minimum': 1, 'maximum': 100},
    },
}


def validate(schema, data):
    """Validate ``data`` and raise ValidationFailed listing every problem."""
    validator = Draft7Validator(schema, format_checker=FormatChecker())
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        details = [{'field': '.'.join(str(p) for p in e.path) or None, 'message': e.message}
                   for e in errors]
        raise ValidationFailed('Validation failed', details=details)
    return data


def pagination(args):
    """Coerce ``page``/``limit`` query args and validate them."""
    raw = {}
    for name, default in (('page', 1), ('limit', 20)):
        value = args.get(name)
        if value is None or value == '':
            raw[name] = default
            continue
        try:
            raw[name] = int(value)
        except ValueError:
            raise ValidationFailed('Validation failed',
                                   details=[{'field': name, 'message': 'must be an integer'}])
    validate(PAGINATION_SCHEMA, raw)
    return raw['page'], raw['limit']


def json_body(req):
    data = req.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return data
