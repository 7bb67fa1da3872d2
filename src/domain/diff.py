"""
Field-level diffing for the history ledger.

Values are normalised to plain JSON-compatible data before comparison so
history entries are deterministic and can be stored as JSON as-is. Changes
are emitted in Registration field declaration order, never in the order the
caller happened to build the partial mapping.
"""

from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .models import FieldChange, Registration

# Fields maintained by the store itself; never part of a diff
_BOOKKEEPING_FIELDS = frozenset({"id", "created_at", "updated_at"})

_REGISTRATION_FIELDS = tuple(f.name for f in fields(Registration))


def to_plain(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes to plain JSON-compatible data."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def compute_changes(current: Registration, partial: Mapping[str, Any]) -> list[FieldChange]:
    """
    Diff a partial update against the current registration.

    Args:
        current: Registration as currently stored
        partial: Mapping of Registration attribute names to proposed values

    Returns:
        One FieldChange per top-level field whose value actually differs

    Raises:
        ValueError: If ``partial`` names an attribute Registration does not have
    """
    unknown = set(partial) - set(_REGISTRATION_FIELDS)
    if unknown:
        raise ValueError(f"unknown registration fields: {sorted(unknown)}")

    changes = []
    for name in _REGISTRATION_FIELDS:
        if name not in partial or name in _BOOKKEEPING_FIELDS:
            continue
        old_value = to_plain(getattr(current, name))
        new_value = to_plain(partial[name])
        if old_value != new_value:
            changes.append(FieldChange(field=name, old_value=old_value, new_value=new_value))
    return changes
