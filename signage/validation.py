"""Form validation against the JSON schemas in schema.yaml."""

from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from jsonschema import Draft7Validator, FormatChecker

from .errors import ValidationError

SCHEMA_PATH = Path(__file__).parent / "schema.yaml"

REQUIRED_MESSAGE = "This field is required"
INVALID_DATE_MESSAGE = "Must be a valid date"


@lru_cache(maxsize=1)
def load_schemas() -> Dict[str, Any]:
    """Load every form schema from schema.yaml."""
    with open(SCHEMA_PATH) as f:
        return yaml.safe_load(f)


def get_schema(kind: str) -> Dict[str, Any]:
    """Return the schema for a form kind with shared definitions attached."""
    schemas = load_schemas()
    if kind not in schemas or kind == "definitions":
        raise KeyError(f"No form schema named '{kind}'")
    return {**schemas[kind], "definitions": schemas["definitions"]}


def field_spec(schema: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Property schema with any local $ref merged in."""
    prop = dict(schema["properties"][name])
    ref = prop.pop("$ref", None)
    if ref:
        target = ref.rsplit("/", 1)[-1]
        prop = {**schema["definitions"][target], **prop}
    return prop


def _coerce_value(raw: Any, spec: Dict[str, Any]) -> Any:
    kind = spec.get("type")
    if kind == "array":
        if isinstance(raw, str):
            raw = raw.split(",")
        return [str(v).strip() for v in raw if str(v).strip()]
    if not isinstance(raw, str):
        return raw
    if kind == "integer":
        try:
            return int(raw)
        except ValueError:
            try:
                as_float = float(raw)
            except ValueError:
                return raw
            return int(as_float) if as_float.is_integer() else raw
    if kind == "number":
        try:
            return float(raw)
        except ValueError:
            return raw
    if kind == "boolean":
        return raw.lower() in ("true", "on", "1", "yes")
    return raw


def coerce_form(form: Mapping[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert raw form input to the types the schema expects.

    Blank strings count as missing. Multi-valued inputs (checkbox groups) are
    read with getlist() when the form supports it.
    """
    data: Dict[str, Any] = {}
    for name in schema["properties"]:
        spec = field_spec(schema, name)
        if spec.get("type") == "array" and hasattr(form, "getlist"):
            raw = form.getlist(name)
            if len(raw) == 1 and "," in raw[0]:
                raw = raw[0]
        else:
            raw = form.get(name)
        if raw is None:
            continue
        if isinstance(raw, str):
            raw = raw.strip()
            if raw == "":
                continue
        data[name] = _coerce_value(raw, spec)
    return data


def _message(error, spec: Dict[str, Any]) -> str:
    if "x-message" in spec and error.validator not in ("required", "maxLength"):
        return spec["x-message"]
    validator = error.validator
    value = error.validator_value
    if validator == "minLength" and value == 1:
        return REQUIRED_MESSAGE
    if validator == "minLength":
        return f"Must be at least {value} characters"
    if validator == "maxLength":
        return f"Text must be under {value} characters"
    if validator == "type":
        if value == "integer":
            return "Must be a whole number"
        if value == "number":
            return "Must be a number"
        return f"Must be a {value}"
    if validator == "minimum":
        return f"Must be at least {value}"
    if validator == "maximum":
        return f"Must be at most {value}"
    if validator == "enum":
        return "Must be one of: " + ", ".join(str(v) for v in value)
    return error.message


def _convert(name: str, value: Any, spec: Dict[str, Any]) -> Any:
    if value is None:
        return None
    if spec.get("format") == "date":
        return date.fromisoformat(value)
    if spec.get("x-datetime"):
        return datetime.fromisoformat(value.replace(" ", "T"))
    return value


def validate_data(kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate already-typed data against a form schema.

    Returns a dict with every schema property present (missing optional
    fields are None or the schema default), dates converted to date/datetime.
    Raises ValidationError with one message per offending field.
    """
    schema = get_schema(kind)
    validator = Draft7Validator(schema, format_checker=FormatChecker())

    errors: Dict[str, str] = {}
    for error in validator.iter_errors(data):
        if error.validator == "required":
            for name in error.validator_value:
                if name not in error.instance:
                    errors.setdefault(name, REQUIRED_MESSAGE)
            continue
        field = str(error.path[0]) if error.path else "__all__"
        spec = field_spec(schema, field) if field in schema["properties"] else {}
        errors.setdefault(field, _message(error, spec))

    cleaned: Dict[str, Any] = {}
    for name in schema["properties"]:
        if name in errors:
            continue
        spec = field_spec(schema, name)
        value = data.get(name, spec.get("default"))
        try:
            cleaned[name] = _convert(name, value, spec)
        except ValueError:
            # The pattern admits impossible dates such as 2024-02-30
            errors[name] = spec.get("x-message", INVALID_DATE_MESSAGE)

    if errors:
        raise ValidationError(errors)
    return cleaned


def validate_form(kind: str, form: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce raw form input and validate it. See validate_data()."""
    return validate_data(kind, coerce_form(form, get_schema(kind)))
