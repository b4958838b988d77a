"""Editing operations over a FormConfig; each returns a new, validated config."""

import random
import string
import time
from typing import List, Optional

from formsync.codec import with_defaults
from formsync.models import FieldDefinition, FormConfig
from formsync.schema import ensure_valid

MAX_RECENT_IDS = 10


def add_group(config: FormConfig, name: str) -> FormConfig:
    name = (name or "").strip()
    if not name or name in config.groups:
        return config
    return ensure_valid(config.model_copy(update={"groups": config.groups + [name]}))


def remove_group(config: FormConfig, name: str) -> FormConfig:
    groups = [group for group in config.groups if group != name]
    fields = [field for field in config.fields if field.group != name]
    return ensure_valid(config.model_copy(update={"groups": groups, "fields": fields}))


def add_field(config: FormConfig, field: FieldDefinition) -> FormConfig:
    return ensure_valid(config.model_copy(update={"fields": config.fields + [with_defaults(field)]}))


def update_field(config: FormConfig, field: FieldDefinition) -> FormConfig:
    if config.field_by_id(field.id) is None:
        raise KeyError(field.id)
    fields = [field if existing.id == field.id else existing for existing in config.fields]
    return ensure_valid(config.model_copy(update={"fields": fields}))


def remove_field(config: FormConfig, field_id: str) -> FormConfig:
    fields = [field for field in config.fields if field.id != field_id]
    return ensure_valid(config.model_copy(update={"fields": fields}))


def move_field(config: FormConfig, source_index: int, destination_index: int) -> FormConfig:
    fields = list(config.fields)
    if not 0 <= source_index < len(fields):
        raise IndexError(source_index)
    moved = fields.pop(source_index)
    fields.insert(max(0, min(destination_index, len(fields))), moved)
    return config.model_copy(update={"fields": fields})


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    if number == 0:
        return "0"
    out = []
    while number:
        number, remainder = divmod(number, 36)
        out.append(digits[remainder])
    return "".join(reversed(out))


def generate_user_id() -> str:
    """Millisecond timestamp in base36 plus an 8 character random suffix."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{_base36(int(time.time() * 1000))}-{suffix}"


class RecentUserIds:
    """Most-recently-used user ids, newest first, without duplicates."""

    def __init__(self, limit: int = MAX_RECENT_IDS, initial: Optional[List[str]] = None) -> None:
        self.limit = limit
        self._ids: List[str] = list(dict.fromkeys(initial or []))[:limit]

    def remember(self, user_id: str) -> bool:
        """Record a user id; True when the list changed."""
        if not user_id or user_id in self._ids:
            return False
        self._ids = [user_id] + self._ids[: self.limit - 1]
        return True

    def as_list(self) -> List[str]:
        return list(self._ids)
