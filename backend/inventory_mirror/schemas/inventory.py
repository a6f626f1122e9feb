"""Pydantic schemas for inventory queries and pages."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SortField(str, Enum):
    """Columns the catalog can be globally ordered by."""

    PRICE = "price_cents"
    YEAR = "year"
    MILEAGE = "mileage"
    MAKE = "make"
    RANK = "rank_score"
    CREATED = "created_at"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PageMode(str, Enum):
    """Addressing mode of a page request."""

    CURSOR = "cursor"
    OFFSET = "offset"


# UI sort names (including legacy spellings) -> (field, direction)
SORT_ALIASES: dict[str, tuple[SortField, SortDirection]] = {
    "price_asc": (SortField.PRICE, SortDirection.ASC),
    "price_low": (SortField.PRICE, SortDirection.ASC),
    "price_desc": (SortField.PRICE, SortDirection.DESC),
    "price_high": (SortField.PRICE, SortDirection.DESC),
    "year_asc": (SortField.YEAR, SortDirection.ASC),
    "year_old": (SortField.YEAR, SortDirection.ASC),
    "year_desc": (SortField.YEAR, SortDirection.DESC),
    "year_new": (SortField.YEAR, SortDirection.DESC),
    "mileage_asc": (SortField.MILEAGE, SortDirection.ASC),
    "mileage_low": (SortField.MILEAGE, SortDirection.ASC),
    "mileage_desc": (SortField.MILEAGE, SortDirection.DESC),
    "mileage_high": (SortField.MILEAGE, SortDirection.DESC),
    "make_asc": (SortField.MAKE, SortDirection.ASC),
    "make_az": (SortField.MAKE, SortDirection.ASC),
    "make_desc": (SortField.MAKE, SortDirection.DESC),
    "make_za": (SortField.MAKE, SortDirection.DESC),
    "rank_desc": (SortField.RANK, SortDirection.DESC),
    "rank_asc": (SortField.RANK, SortDirection.ASC),
    "recently_added": (SortField.CREATED, SortDirection.DESC),
    "oldest_added": (SortField.CREATED, SortDirection.ASC),
}

# Attribute filters (field -> accepted values, OR-ed within a field)
FILTER_FIELDS: frozenset[str] = frozenset(
    {"make", "model", "year", "fuel", "transmission", "color", "body_type", "condition"}
)
INTEGER_FILTER_FIELDS: frozenset[str] = frozenset({"year"})

# Numeric range filters
RANGE_FIELDS: frozenset[str] = frozenset({"price_cents", "year", "mileage"})


def parse_sort(alias: str) -> tuple[SortField, SortDirection]:
    """Resolve a UI sort name such as ``price_asc`` into field and direction."""
    try:
        return SORT_ALIASES[alias.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown sort option: {alias}") from None


class RangeFilter(BaseModel):
    """Inclusive numeric bounds; either side may be open."""

    min: int | None = None
    max: int | None = None


class QueryRequest(BaseModel):
    """
    A single page request against the mirrored catalog.

    Exactly one addressing mode applies: cursor requests carry an optional
    `(cursor_value, cursor_id)` position and never a page number, offset
    requests carry a page number and never a cursor.
    """

    filters: dict[str, list[Any]] = Field(default_factory=dict)
    ranges: dict[str, RangeFilter] = Field(default_factory=dict)
    sort_field: SortField = SortField.PRICE
    sort_direction: SortDirection = SortDirection.ASC
    page_mode: PageMode = PageMode.OFFSET
    cursor_value: Any = None
    cursor_id: str | None = None
    page: int | None = Field(default=None, ge=1)
    page_size: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def _check_addressing(self) -> "QueryRequest":
        unknown = set(self.filters) - FILTER_FIELDS
        if unknown:
            raise ValueError(f"Unknown filter field(s): {', '.join(sorted(unknown))}")
        unknown = set(self.ranges) - RANGE_FIELDS
        if unknown:
            raise ValueError(f"Unknown range field(s): {', '.join(sorted(unknown))}")
        for name in INTEGER_FILTER_FIELDS & set(self.filters):
            self.filters[name] = [int(value) for value in self.filters[name]]

        if self.page_mode is PageMode.CURSOR:
            if self.page is not None:
                raise ValueError("cursor requests must not carry a page number")
            if self.cursor_value is not None and self.cursor_id is None:
                raise ValueError("cursor_value requires cursor_id")
        else:
            if self.cursor_id is not None or self.cursor_value is not None:
                raise ValueError("offset requests must not carry a cursor")
            if self.page is None:
                self.page = 1
        return self


class InventoryItemOut(BaseModel):
    """Inventory record response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    make: str
    model: str | None = None
    year: int
    fuel: str | None = None
    transmission: str | None = None
    color: str | None = None
    body_type: str | None = None
    condition: str | None = None

    vin: str | None = None
    lot_number: str | None = None

    price_cents: int | None = None
    mileage: int | None = None
    rank_score: float | None = None
    images: list[str] | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None


class PageResult(BaseModel):
    """One page of the globally ordered catalog."""

    items: list[InventoryItemOut]
    total: int
    has_next: bool
    has_prev: bool
    page_size: int
    sort_field: SortField
    sort_direction: SortDirection
    next_cursor: str | None = None
    page: int | None = None
    total_pages: int | None = None
