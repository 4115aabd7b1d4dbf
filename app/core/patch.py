"""Lenient partial updates: keep only correctly typed fields, merge them field by field.

A ``LenientPatch`` subclass declares one optional field per mutable setting.
Input fields that are missing, null, or of the wrong JSON type are dropped
before validation instead of failing the request, so they leave the stored
value untouched. ``merge_patch`` then overwrites exactly the fields that
survived, recursing into nested patches.

JSON has a single number type, so an integral float such as ``3.0`` is
accepted for an integer field and stored as ``3``.
"""

import copy
import types
import typing
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, model_validator

_REJECT = object()


def _candidate_types(annotation: Any) -> list[Any]:
    if typing.get_origin(annotation) in (Union, types.UnionType):
        return [a for a in typing.get_args(annotation) if a is not type(None)]
    return [annotation]


def _coerce(annotation: Any, value: Any) -> Any:
    """Strict JSON-type check: bools are not numbers, numbers are not strings.

    Returns the value to keep, or ``_REJECT``.
    """
    for kind in _candidate_types(annotation):
        if isinstance(kind, type) and issubclass(kind, LenientPatch):
            if isinstance(value, (dict, kind)):
                return value
        elif kind is bool:
            if isinstance(value, bool):
                return value
        elif kind is int:
            if isinstance(value, int) and not isinstance(value, bool):
                return value
            if isinstance(value, float) and value.is_integer():
                return int(value)
        elif kind is float:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
        elif kind is str:
            if isinstance(value, str):
                return value
    return _REJECT


class LenientPatch(BaseModel):
    """Base for partial-update bodies that ignore absent or mistyped fields."""

    model_config = ConfigDict(extra="ignore")

    # Numeric fields that must be > 0 to be applied.
    positive_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _drop_unusable_fields(cls, data: Any) -> dict:
        if not isinstance(data, dict):
            return {}
        kept = {}
        for name, field in cls.model_fields.items():
            if name not in data:
                continue
            value = _coerce(field.annotation, data[name])
            if value is _REJECT:
                continue
            if name in cls.positive_fields and value <= 0:
                continue
            kept[name] = value
        return kept


def merge_patch(current: dict | None, patch: LenientPatch) -> dict:
    """Return a copy of ``current`` with every field set on ``patch`` applied."""
    merged = copy.deepcopy(current) if current else {}
    for name in patch.model_fields_set:
        value = getattr(patch, name)
        if isinstance(value, LenientPatch):
            existing = merged.get(name)
            merged[name] = merge_patch(existing if isinstance(existing, dict) else None, value)
        else:
            merged[name] = value
    return merged
