"""Result variants returned by loaders and the charge processor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeAlias, TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(slots=True, frozen=True)
class NotFound:
    """The record the unit of work depends on does not exist."""

    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Invalid:
    """The unit of work cannot be billed with the data as it stands."""

    message: str
    details: dict[str, Any] = field(default_factory=dict)


Result: TypeAlias = Ok[T] | NotFound | Invalid
