"""Shared schema plumbing — camelCase wire names, date parsing, page envelope."""

from __future__ import annotations

from datetime import date
from math import ceil
from typing import Annotated, Any, Generic, Sequence, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def parse_local_date(value: Any) -> Any:
    """Accept Java LocalDate arrays ([2025, 1, 31]) alongside ISO strings."""
    if isinstance(value, (list, tuple)) and len(value) >= 3:
        return date(int(value[0]), int(value[1]), int(value[2]))
    return value


LocalDate = Annotated[date, BeforeValidator(parse_local_date)]


class CamelModel(BaseModel):
    """Base for wire models: camelCase aliases, snake_case names also accepted."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Page(CamelModel, Generic[T]):
    """Spring-style paginated envelope consumed by the admin UI."""

    content: list[T] = []
    total_pages: int = 0
    total_elements: int = 0
    first: bool = True
    last: bool = True
    size: int = 20
    number: int = 0
    number_of_elements: int = 0
    empty: bool = True

    @classmethod
    def build(cls, items: Sequence[Any], total: int, page: int, size: int) -> "Page":
        total_pages = ceil(total / size) if size else 0
        return cls(
            content=list(items),
            total_pages=total_pages,
            total_elements=total,
            first=page == 0,
            last=page >= total_pages - 1,
            size=size,
            number=page,
            number_of_elements=len(items),
            empty=len(items) == 0,
        )
