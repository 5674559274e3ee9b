from werkzeug.datastructures import ImmutableMultiDict

from prode.errors import ValidationError


def json_formdata(data):
    """Wrap a decoded JSON body for WTForms; the body must be an object.

    Nulls count as missing; nested values are passed as text so field
    coercion reports them as invalid.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    cleaned = {}
    for key, value in data.items():
        if value is None:
            continue
        if not isinstance(value, (str, int, float)):
            value = str(value)
        cleaned[key] = value
    return ImmutableMultiDict(cleaned)


def validate_or_raise(form):
    """Run form validation, raising ValidationError with per-field details"""
    if not form.validate():
        details = [
            {"field": name, "message": message}
            for name, messages in form.errors.items()
            for message in messages
        ]
        raise ValidationError("Invalid input", details=details)
    return form
