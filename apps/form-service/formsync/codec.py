import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

from formsync.errors import CoercionError
from formsync.models import BooleanLabels, CodedOption, FieldDefinition, FormConfig

logger = logging.getLogger(__name__)

DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")

DEFAULT_SELECT_OPTIONS = ["Option 1", "Option 2"]
DEFAULT_RANGE = (0, 100)
DEFAULT_BOOLEAN_LABELS = {"trueLabel": "1 - Yes", "falseLabel": "0 - No"}
DEFAULT_CODED_OPTIONS = [{"code": 0, "label": "No"}, {"code": 1, "label": "Yes"}]

RECORD_KEYS = ("userId", "timestamp")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_int(field: FieldDefinition, value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise CoercionError(field.id, value, "expected an integer code")


def _date_part(field: FieldDefinition, value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        match = DATE_PREFIX_RE.match(value.strip())
        if match:
            return match.group(1)
    raise CoercionError(field.id, value, "expected a YYYY-MM-DD date")


def to_storage(field: FieldDefinition, raw_value: Any) -> Any:
    """Map a renderer value to the form stored on the backend."""
    if field.type == "boolean":
        if _is_blank(raw_value):
            return None
        code = _as_int(field, raw_value)
        if code not in (0, 1):
            raise CoercionError(field.id, raw_value, "boolean values must be 0 or 1")
        return code

    if field.type == "codedValue":
        if _is_blank(raw_value):
            return None
        code = _as_int(field, raw_value)
        codes = [option.code for option in field.coded_options or []]
        if code not in codes:
            raise CoercionError(field.id, raw_value, f"code is not one of {codes}")
        return code

    if field.type == "date":
        if _is_blank(raw_value):
            return ""
        return _date_part(field, raw_value)

    return raw_value


def to_display(field: FieldDefinition, stored_value: Any) -> Any:
    """Map a stored value back to what the field's renderer binds to."""
    if stored_value is None:
        return neutral_value(field)

    if field.type in ("boolean", "codedValue"):
        if isinstance(stored_value, str) and not stored_value.strip():
            return None
        if isinstance(stored_value, bool):
            return str(int(stored_value))
        if isinstance(stored_value, float) and stored_value.is_integer():
            return str(int(stored_value))
        return str(stored_value)

    if field.type == "date":
        if isinstance(stored_value, (date, datetime)):
            return _date_part(field, stored_value)
        return str(stored_value).split("T")[0]

    return stored_value


def neutral_value(field: FieldDefinition) -> Any:
    if field.type in ("text", "select", "date"):
        return ""
    if field.type == "checkbox":
        return False
    # unset: renderers must not preselect the first option
    return None


def condition_met(dependency: FieldDefinition, current_value: Any, expected: Any) -> bool:
    """Strict equality of the dependency's coerced value with the condition value."""
    try:
        coerced = to_storage(dependency, current_value)
    except CoercionError:
        return False
    if isinstance(coerced, bool) or isinstance(expected, bool):
        return isinstance(coerced, bool) and isinstance(expected, bool) and coerced == expected
    if coerced is None or expected is None:
        return coerced is expected
    if type(coerced) is not type(expected) and not all(isinstance(v, (int, float)) for v in (coerced, expected)):
        return False
    return coerced == expected


def with_defaults(field: FieldDefinition) -> FieldDefinition:
    """Fill in the parameters a newly declared field needs for its renderer."""
    updates: Dict[str, Any] = {}
    if field.type == "select" and not field.options:
        updates["options"] = list(DEFAULT_SELECT_OPTIONS)
    elif field.type == "range":
        if field.min is None:
            updates["min"] = DEFAULT_RANGE[0]
        if field.max is None:
            updates["max"] = DEFAULT_RANGE[1]
    elif field.type == "boolean" and field.boolean_labels is None:
        updates["boolean_labels"] = BooleanLabels.model_validate(DEFAULT_BOOLEAN_LABELS)
    elif field.type == "codedValue" and not field.coded_options:
        updates["coded_options"] = [CodedOption.model_validate(item) for item in DEFAULT_CODED_OPTIONS]

    if not updates:
        return field
    logger.debug("Applied defaults to field %s: %s", field.id, sorted(updates))
    return field.model_copy(update=updates)


def coerce_submission(config: FormConfig, form_values: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce every submitted value to storage form; keys keep their submitted order."""
    coerced: Dict[str, Any] = {}
    for key, raw in form_values.items():
        if key in RECORD_KEYS:
            continue
        field = config.field_by_id(key)
        if field is None:
            raise CoercionError(key, raw, "not a field of this form")
        coerced[key] = to_storage(field, raw)
    return coerced


def display_values(config: FormConfig, record_values: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Prefill mapping for every configured field; absent values become the neutral empty value."""
    record_values = record_values or {}
    return {field.id: to_display(field, record_values.get(field.id)) for field in config.fields}

