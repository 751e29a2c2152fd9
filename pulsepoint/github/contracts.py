"""Typed fetch contracts shared by the GitHub client and the activity services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

if TYPE_CHECKING:
    from pulsepoint.github.errors import ClassifiedError

T = TypeVar("T")


class FetchState(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Outcome of one upstream call or one service operation.

    A failed result carries the raw upstream details (`status_code`, `headers`,
    `error`) and, once it has been through the classifier, a `failure`.
    Services only ever hand classified failures to their callers.
    """

    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    headers: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    failure: Optional["ClassifiedError"] = None

    @property
    def is_ok(self) -> bool:
        """True for OK and EMPTY results."""
        return self.state != FetchState.FAILED

    @property
    def is_failed(self) -> bool:
        return self.state == FetchState.FAILED

    @classmethod
    def ok(cls, data: Any, *, status_code: Optional[int] = None) -> "FetchResult[Any]":
        state = FetchState.EMPTY if isinstance(data, (list, dict)) and not data else FetchState.OK
        return cls(state=state, data=data, status_code=status_code)

    @classmethod
    def failed(cls, failure: "ClassifiedError") -> "FetchResult[Any]":
        return cls(
            state=FetchState.FAILED,
            status_code=failure.status_code,
            error=failure.message,
            failure=failure,
        )
