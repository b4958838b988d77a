from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

FieldType = Literal["text", "number", "date", "select", "range", "checkbox", "boolean", "codedValue"]


class CodedOption(BaseModel):
    code: int
    label: str


class BooleanLabels(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    true_label: str = Field(alias="trueLabel")
    false_label: str = Field(alias="falseLabel")


class FieldCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    depends_on: str = Field(alias="dependsOn")
    value: Any = None


class FieldDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: FieldType = "text"
    label: str
    required: bool = False
    group: Optional[str] = None
    options: Optional[List[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    boolean_labels: Optional[BooleanLabels] = Field(default=None, alias="booleanLabels")
    coded_options: Optional[List[CodedOption]] = Field(default=None, alias="codedOptions")
    condition: Optional[FieldCondition] = None

    @field_validator("coded_options")
    @classmethod
    def _unique_codes(cls, value: Optional[List[CodedOption]]) -> Optional[List[CodedOption]]:
        if value is None:
            return value
        codes = [option.code for option in value]
        if len(codes) != len(set(codes)):
            raise ValueError("coded option codes must be unique within a field")
        return value


class FormConfig(BaseModel):
    groups: List[str] = Field(default_factory=list)
    fields: List[FieldDefinition] = Field(default_factory=list)
    title: Optional[str] = None

    def field_by_id(self, field_id: str) -> Optional[FieldDefinition]:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None


class SubmissionRecord(BaseModel):
    """One appended row: field values keyed by field id plus the subject id and timestamp."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str = Field(alias="userId")
    timestamp: str

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_user_id(cls, value: Any) -> Any:
        # sheet backends hand numeric-looking ids back as numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def values(self) -> dict:
        return dict(self.model_extra or {})

    def to_payload(self) -> dict:
        payload = {"userId": self.user_id, "timestamp": self.timestamp}
        payload.update(self.values)
        return payload


class ValidationIssue(BaseModel):
    code: str
    field_id: Optional[str] = None
    message: str


class ValidationResult(BaseModel):
    ok: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)


class SubmitResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    duplicate_prevented: Optional[bool] = Field(default=None, alias="duplicatePrevented")
    source: Literal["endpoint", "fallback", "ledger"] = "fallback"


class WriteResult(BaseModel):
    success: bool = True
    result: Any = None
    error: Optional[str] = None
