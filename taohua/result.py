"""Tagged result type returned by every service operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar, Union

from taohua.errors import ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise ValueError(f"unwrap() on Err({self.kind.value}): {self.detail}")


Result = Union[Ok[T], Err]


def err_from(kind: ErrorKind, detail: str = "", context: Optional[dict[str, Any]] = None) -> Err:
    return Err(kind=kind, detail=detail, context=dict(context or {}))
