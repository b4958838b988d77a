from typing import Any, Optional


class FormSyncError(Exception):
    """Base class for errors raised by the form engine."""


class SchemaValidationError(FormSyncError):
    code = "invalid_schema"

    def __init__(self, message: str, field_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field_id = field_id


class DuplicateFieldId(SchemaValidationError):
    code = "duplicate_field_id"


class UnknownGroup(SchemaValidationError):
    code = "unknown_group"


class DependencyCycle(SchemaValidationError):
    code = "dependency_cycle"


class DanglingDependency(SchemaValidationError):
    code = "dangling_dependency"


class ReservedFieldId(SchemaValidationError):
    code = "reserved_field_id"


ISSUE_TYPES = {
    cls.code: cls for cls in (DuplicateFieldId, UnknownGroup, DependencyCycle, DanglingDependency, ReservedFieldId)
}


class CoercionError(FormSyncError):
    def __init__(self, field_id: str, value: Any, reason: str):
        super().__init__(f"{field_id}: {reason} (got {value!r})")
        self.field_id = field_id
        self.value = value
        self.reason = reason


class TransportError(FormSyncError):
    pass


class TransportTimeout(TransportError):
    pass


class TransportFailure(TransportError):
    pass
