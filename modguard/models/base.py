"""Helpers shared by the dataclass models: dict round-tripping and coercion."""

from __future__ import annotations

from dataclasses import asdict, fields, is_dataclass
from enum import Enum
from typing import Any, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Enum)


def from_dict(cls: type[T], data: dict[str, Any]) -> T:
    """Build *cls* from a stored dict, ignoring keys the model does not know."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{k: v for k, v in data.items() if k in names})


def to_dict(obj: Any) -> dict[str, Any]:
    return asdict(obj)


def coerce_enum(enum_cls: type[E], value: Any) -> Optional[E]:
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


def coerce_obj(cls: type[T], value: Any) -> Optional[T]:
    if value is None or isinstance(value, cls):
        return value
    return from_dict(cls, value)


def coerce_list(cls: type[T], items: Any) -> list[T]:
    result: list[T] = []
    for item in items or []:
        if is_dataclass(item):
            result.append(item)
        else:
            result.append(from_dict(cls, item))
    return result
