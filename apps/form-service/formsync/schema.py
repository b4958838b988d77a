"""Structural rules for form configurations and conditional field visibility."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Set

from formsync.codec import RECORD_KEYS, condition_met
from formsync.errors import ISSUE_TYPES, SchemaValidationError
from formsync.models import FieldDefinition, FormConfig, ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)


def _issue(code: str, field_id: Optional[str], message: str) -> ValidationIssue:
    return ValidationIssue(code=code, field_id=field_id, message=message)


def _dependency_cycles(fields: Dict[str, FieldDefinition]) -> List[List[str]]:
    """Return each distinct dependsOn cycle once, as the list of field ids on it."""
    cycles: List[List[str]] = []
    reported: Set[str] = set()

    for start in fields:
        path: List[str] = []
        seen: Set[str] = set()
        current: Optional[str] = start
        while current is not None and current in fields:
            if current in seen:
                cycle = path[path.index(current):]
                if not reported.intersection(cycle):
                    cycles.append(cycle)
                    reported.update(cycle)
                break
            seen.add(current)
            path.append(current)
            condition = fields[current].condition
            current = condition.depends_on if condition else None

    return cycles


def validate(config: FormConfig) -> ValidationResult:
    errors: List[ValidationIssue] = []
    groups = set(config.groups)
    by_id: Dict[str, FieldDefinition] = {}

    for field in config.fields:
        if field.id in RECORD_KEYS:
            errors.append(
                _issue("reserved_field_id", field.id, f"Field id '{field.id}' is reserved for the submission record")
            )
        if field.id in by_id:
            errors.append(_issue("duplicate_field_id", field.id, f"Field id '{field.id}' is declared more than once"))
        else:
            by_id[field.id] = field

        if field.group not in groups:
            errors.append(
                _issue("unknown_group", field.id, f"Field '{field.id}' references unknown group {field.group!r}")
            )

    for field in by_id.values():
        if field.condition and field.condition.depends_on not in by_id:
            errors.append(
                _issue(
                    "dangling_dependency",
                    field.id,
                    f"Field '{field.id}' depends on missing field '{field.condition.depends_on}'",
                )
            )

    for cycle in _dependency_cycles(by_id):
        chain = " -> ".join(cycle + [cycle[0]])
        errors.append(_issue("dependency_cycle", cycle[0], f"Conditional dependencies form a cycle: {chain}"))

    return ValidationResult(ok=not errors, errors=errors)


def ensure_valid(config: FormConfig) -> FormConfig:
    """Raise the first validation issue as its typed exception; return the config otherwise."""
    result = validate(config)
    if not result.ok:
        issue = result.errors[0]
        logger.warning("Rejected form config: %s (%d issues)", issue.message, len(result.errors))
        error_cls = ISSUE_TYPES.get(issue.code, SchemaValidationError)
        raise error_cls(issue.message, field_id=issue.field_id)
    return config


def is_visible(config: FormConfig, field: FieldDefinition, current_values: Mapping[str, Any]) -> bool:
    if field.group not in config.groups:
        return False
    if field.condition is None:
        return True
    dependency = config.field_by_id(field.condition.depends_on)
    if dependency is None:
        return False
    return condition_met(dependency, current_values.get(dependency.id), field.condition.value)


def get_visible_fields(config: FormConfig, current_values: Mapping[str, Any]) -> List[FieldDefinition]:
    """Visible fields ordered by group display order, then declaration order within a group."""
    visible: List[FieldDefinition] = []
    for group in dict.fromkeys(config.groups):
        for field in config.fields:
            if field.group == group and is_visible(config, field, current_values):
                visible.append(field)
    return visible
