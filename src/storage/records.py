"""Conversion between dataclass entities and plain YAML-safe records.

Records only contain str, int, float, bool, None, lists and dicts so they can
be written with yaml.safe_dump. Enums are stored by value and datetimes as
ISO-8601 strings; the reverse direction is driven by the dataclass type hints.
"""

import dataclasses
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Type, TypeVar, Union, get_args, get_origin, get_type_hints

T = TypeVar('T')


def to_record(value: Any) -> Any:
    """Convert an entity (or any nested value) to a plain record."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_record(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, (list, tuple)):
        return [to_record(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_record(item) for key, item in value.items()}
    return value


def from_record(cls: Type[T], record: Dict[str, Any]) -> T:
    """Rebuild a dataclass entity from a record produced by to_record.

    Unknown keys are ignored so state files written by newer versions with
    extra fields can still be loaded.
    """
    hints = get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name in record:
            kwargs[f.name] = _coerce(hints[f.name], record[f.name])
    return cls(**kwargs)


def _coerce(hint: Any, value: Any) -> Any:
    if value is None or hint is Any:
        return value

    origin = get_origin(hint)
    if origin is Union:
        options = [arg for arg in get_args(hint) if arg is not type(None)]
        return _coerce(options[0], value) if len(options) == 1 else value
    if origin in (list, List):
        (item_hint,) = get_args(hint) or (Any,)
        return [_coerce(item_hint, item) for item in value]
    if origin in (dict, Dict):
        args = get_args(hint)
        value_hint = args[1] if args else Any
        return {key: _coerce(value_hint, item) for key, item in value.items()}

    if isinstance(hint, type):
        if issubclass(hint, Enum):
            return hint(value)
        if issubclass(hint, datetime):
            return value if isinstance(value, datetime) else datetime.fromisoformat(value)
        if dataclasses.is_dataclass(hint):
            return from_record(hint, value)
    return value
