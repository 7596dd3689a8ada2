"""
Tagged outcomes for evidence-source calls.

Every source call returns one of SourceSuccess, SourceError or
SourceNotFound; callers branch with isinstance or match.
"""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class SourceSuccess(Generic[T]):
    value: T


@dataclass(slots=True, frozen=True)
class SourceError:
    message: str
    status_code: int | None = None
    retryable: bool = False


@dataclass(slots=True, frozen=True)
class SourceNotFound:
    resource: str


SourceResult = SourceSuccess[T] | SourceError | SourceNotFound


@dataclass(slots=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    has_next: bool

    @classmethod
    def from_response(cls, data: dict, parse) -> "Page":
        raw_items = data.get("items") or []
        items = [parse(item) for item in raw_items if item]
        return cls(
            items=items,
            total=data.get("total", len(items)) or 0,
            has_next=bool(data.get("next")),
        )


@dataclass(slots=True)
class FetchOutcome(Generic[T]):
    """Whatever a fetch collected, plus the errors that cut it short."""

    value: T
    errors: list[str] = field(default_factory=list)
    pages: int = 0
