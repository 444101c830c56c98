"""
Output validation.

Checks what guest code returned against the contract of its execution mode
and converts it into OutputRecords. The guest value itself is never
modified; records are built from plain copies, and ``data`` and
``errorInfo`` may only hold JSON values (objects with string keys, lists,
strings, numbers, booleans, None). Dates and times become ISO strings.

AllItems: a list of objects, each with a ``data`` object.
PerItem:  one object (not a list) with a ``data`` object.
Both:     top-level keys must be in OUTPUT_KEYS.
"""

from collections.abc import Mapping
from datetime import date, datetime, time
from typing import Any

import pydantic

from scriptstep.engines.errors import ValidationError
from scriptstep.engines.mode import ExecutionRequest
from scriptstep.models import OUTPUT_KEYS, BinaryAttachment, ExecutionMode, OutputRecord

_ARRAY_TYPES = (list, tuple)
_MISSING = object()
_SCALARS = (str, int, float, bool)
_MAX_DEPTH = 100


def _type_name(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, _ARRAY_TYPES):
        return "list"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _to_plain(value: Any, path: str, where: str, _seen: frozenset[int] = frozenset()) -> Any:
    """Copy ``value`` as plain JSON data; ValidationError names the first bad path."""
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if not isinstance(value, (dict, list, tuple)):
        raise ValidationError(
            f"'{path}' of {where} holds a {type(value).__name__}, which is not JSON data"
        )
    if id(value) in _seen:
        raise ValidationError(f"'{path}' of {where} contains itself")
    if len(_seen) >= _MAX_DEPTH:
        raise ValidationError(f"'{path}' of {where} is nested more than {_MAX_DEPTH} levels deep")
    seen = _seen | {id(value)}
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValidationError(
                    f"'{path}' of {where} has a {type(k).__name__} key; object keys must be strings"
                )
            out[k] = _to_plain(v, f"{path}.{k}", where, seen)
        return out
    return [_to_plain(v, f"{path}[{i}]", where, seen) for i, v in enumerate(value)]


def _optional_int(value: Any, key: str, where: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{key}' of {where} must be an integer or None, got {_type_name(value)}")
    return value


def _attachments(value: Any, where: str) -> dict[str, BinaryAttachment]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"'attachments' of {where} must be an object, got {_type_name(value)}")
    out: dict[str, BinaryAttachment] = {}
    for name, att in value.items():
        if not isinstance(att, Mapping):
            raise ValidationError(f"Attachment '{name}' of {where} must be an object")
        try:
            out[str(name)] = BinaryAttachment.model_validate(dict(att))
        except pydantic.ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Attachment '{name}' of {where} is invalid: {errors}") from e
    return out


def normalize_record(value: Any, where: str, default_lineage: int | None) -> OutputRecord:
    """Check one returned object and build its OutputRecord."""
    if not isinstance(value, Mapping):
        raise ValidationError(f"{where.capitalize()} must be an object, got {_type_name(value)}")
    for key in value:
        if key not in OUTPUT_KEYS:
            raise ValidationError(
                f"{where.capitalize()} has an unknown top-level key '{key}'. "
                f"Allowed keys: {', '.join(sorted(OUTPUT_KEYS))}. "
                "Put your fields under 'data'."
            )
    data = value.get("data", _MISSING)
    if data is _MISSING:
        raise ValidationError(f"{where.capitalize()} is missing the required key 'data'")
    if not isinstance(data, Mapping):
        raise ValidationError(f"'data' of {where} must be an object, got {_type_name(data)}")

    lineage = value.get("lineage", _MISSING)
    return OutputRecord(
        data=_to_plain(data, "data", where),
        attachments=_attachments(value.get("attachments"), where),
        lineage=default_lineage if lineage is _MISSING else _optional_int(lineage, "lineage", where),
        error_info=_to_plain(value.get("errorInfo"), "errorInfo", where),
        legacy_index=_optional_int(value.get("legacyIndex"), "legacyIndex", where),
    )


def validate_all_items(raw: Any, input_count: int) -> list[OutputRecord]:
    if not isinstance(raw, _ARRAY_TYPES):
        raise ValidationError(
            "Code doesn't return items properly: in AllItems mode it must return "
            f"a list of objects, got {_type_name(raw)}"
        )

    def default_lineage(pos: int) -> int | None:
        if len(raw) == input_count:
            return pos
        if input_count == 1:
            return 0
        return None

    return [
        normalize_record(value, f"item {pos} of the returned list", default_lineage(pos))
        for pos, value in enumerate(raw)
    ]


def validate_per_item(raw: Any, item_index: int) -> OutputRecord:
    if isinstance(raw, _ARRAY_TYPES):
        raise ValidationError(
            f"Code for item {item_index} returned a list, but in PerItem mode it must "
            "return a single object. Return one object, or switch the mode to AllItems "
            "to return several records.",
            item_index=item_index,
        )
    try:
        return normalize_record(raw, f"the object returned for item {item_index}", item_index)
    except ValidationError as e:
        e.item_index = item_index
        raise


def validate_output(raw: Any, request: ExecutionRequest) -> list[OutputRecord]:
    """Validate the raw value of one invocation; PerItem yields exactly one record."""
    if request.mode == ExecutionMode.PER_ITEM:
        return [validate_per_item(raw, request.indexes[0])]
    return validate_all_items(raw, len(request.records))
