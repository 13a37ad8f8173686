# Request input validation
import re

from flask import request

from photoshare.errors import ValidationError

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
USERNAME_RE = re.compile(r'^[A-Za-z0-9_.]{3,30}$')
MIN_PASSWORD_LENGTH = 6

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


def validate_email(email):
    return bool(email) and EMAIL_RE.match(email) is not None


def validate_password(password):
    return bool(password) and len(password) >= MIN_PASSWORD_LENGTH


def validate_username(username):
    return bool(username) and USERNAME_RE.match(username) is not None


def get_json_body():
    """Return the JSON body as a dict, or an empty dict when there is none."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def get_form_data():
    """Form fields from either a multipart/urlencoded body or a JSON body."""
    if request.is_json:
        return get_json_body()
    return request.form.to_dict()


def require_fields(data, *fields, message='Please enter all fields'):
    """Return the values of *fields* in order, raising if any is missing or blank."""
    values = []
    for field in fields:
        value = optional_field(data, field)
        if value is None or not value.strip():
            raise ValidationError(message)
        values.append(value)
    return values


def optional_field(data, field):
    """Return the string value of *field*, or None when it is absent."""
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f'{field} must be a string')
    return value


def _positive_int(name, raw, default):
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be a positive integer')
    if value < 1:
        raise ValidationError(f'{name} must be a positive integer')
    return value


def parse_pagination(default_limit=DEFAULT_PAGE_SIZE):
    """Read ``page`` and ``limit`` from the query string."""
    page = _positive_int('page', request.args.get('page'), 1)
    limit = _positive_int('limit', request.args.get('limit'), default_limit)
    return page, min(limit, MAX_PAGE_SIZE)


def get_image_upload(field, required=True):
    """Return the uploaded image for *field*, or None if optional and absent."""
    upload = request.files.get(field)
    if upload is None or not upload.filename:
        if required:
            raise ValidationError('Please upload an image')
        return None
    if not (upload.mimetype or '').startswith('image'):
        raise ValidationError('Not an image! Please upload only images.')
    return upload
