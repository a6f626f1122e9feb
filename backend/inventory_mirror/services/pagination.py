"""Globally ordered pagination over the mirrored inventory."""

import base64
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import unquote

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_mirror.config import get_settings
from inventory_mirror.models import InventoryRecord
from inventory_mirror.schemas.inventory import (
    InventoryItemOut,
    PageMode,
    PageResult,
    QueryRequest,
    SortDirection,
    SortField,
)

logger = logging.getLogger(__name__)
settings = get_settings()

_INT_FIELDS = {SortField.PRICE, SortField.YEAR, SortField.MILEAGE}


@dataclass(frozen=True)
class Cursor:
    """Position of the last row of a page: its sort value and id."""

    sort_value: Any
    id: str


def _format_value(value: Any, sort_field: SortField) -> str:
    if value is None:
        return ""
    if sort_field is SortField.CREATED:
        return value.isoformat()
    if sort_field is SortField.RANK:
        return repr(float(value))
    if sort_field in _INT_FIELDS:
        return str(int(value))
    return str(value)


def _parse_value(text: str, sort_field: SortField) -> Any:
    if sort_field is SortField.MAKE:
        # make is never null, so an empty string is a real value
        return text
    if text == "":
        return None
    if sort_field is SortField.CREATED:
        return datetime.fromisoformat(text)
    if sort_field is SortField.RANK:
        return float(text)
    return int(text)


def _escape(text: str) -> str:
    return text.replace("%", "%25").replace("|", "%7C")


def encode_cursor(cursor: Cursor, sort_field: SortField) -> str:
    """
    Serialize a cursor as base64 of ``"<sortValue>|<id>"``.

    ``%`` and ``|`` inside either field are percent-escaped so the separator
    is unambiguous for any id.
    """
    value = _escape(_format_value(cursor.sort_value, sort_field))
    cursor_str = f"{value}|{_escape(cursor.id)}"
    return base64.urlsafe_b64encode(cursor_str.encode()).decode()


def decode_cursor(token: str | None, sort_field: SortField) -> Cursor | None:
    """
    Decode a transport cursor for the given sort field.

    Malformed tokens decode to None, i.e. "start from the first page".
    """
    if not token:
        return None
    try:
        cursor_str = base64.urlsafe_b64decode(token.encode()).decode()
        parts = cursor_str.split("|")
        if len(parts) != 2 or not parts[1]:
            raise ValueError("expected '<value>|<id>'")
        value_str, cursor_id = (unquote(part, errors="strict") for part in parts)
        return Cursor(_parse_value(value_str, sort_field), cursor_id)
    except ValueError as e:
        # binascii.Error and UnicodeDecodeError are ValueErrors too
        logger.warning(f"Invalid cursor {token!r}: {e}")
        return None


class PaginationEngine:
    """
    Read-only paging of inventory under any filter and sort.

    The global order is always ``sort_field <dir> NULLS LAST, id ASC``.
    Cursor mode uses a keyset predicate on that order; offset mode uses
    OFFSET/LIMIT on the same order. Filters are applied before ordering and
    `total` always counts the filtered set.
    """

    def __init__(self, db: AsyncSession, max_page_size: int = settings.max_page_size):
        self.db = db
        self.max_page_size = max_page_size

    def _sort_column(self, request: QueryRequest):
        return getattr(InventoryRecord, request.sort_field.value)

    def _order_by(self, request: QueryRequest) -> list:
        column = self._sort_column(request)
        primary = column.desc() if request.sort_direction is SortDirection.DESC else column.asc()
        return [primary.nulls_last(), InventoryRecord.id.asc()]

    def _filter_clauses(self, request: QueryRequest) -> list:
        clauses = []
        for field_name, values in request.filters.items():
            if not values:
                continue
            clauses.append(getattr(InventoryRecord, field_name).in_(values))

        for field_name, bounds in request.ranges.items():
            column = getattr(InventoryRecord, field_name)
            if bounds.min is not None:
                clauses.append(column >= bounds.min)
            if bounds.max is not None:
                clauses.append(column <= bounds.max)
        return clauses

    def _after_cursor(self, request: QueryRequest, cursor: Cursor):
        """Rows strictly after `cursor` in the global order."""
        column = self._sort_column(request)
        if cursor.sort_value is None:
            # Inside the trailing NULL block only the id orders rows
            return and_(column.is_(None), InventoryRecord.id > cursor.id)

        if request.sort_direction is SortDirection.DESC:
            beyond = column < cursor.sort_value
        else:
            beyond = column > cursor.sort_value
        return or_(
            beyond,
            and_(column == cursor.sort_value, InventoryRecord.id > cursor.id),
            column.is_(None),
        )

    def _page_size(self, request: QueryRequest) -> int:
        return max(1, min(request.page_size, self.max_page_size))

    def _cursor_for(self, row: InventoryRecord, request: QueryRequest) -> str:
        value = getattr(row, request.sort_field.value)
        return encode_cursor(Cursor(value, row.id), request.sort_field)

    async def count(self, request: QueryRequest) -> int:
        query = select(func.count()).select_from(InventoryRecord)
        clauses = self._filter_clauses(request)
        if clauses:
            query = query.where(*clauses)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def page(self, request: QueryRequest) -> PageResult:
        """Answer one page request in either addressing mode."""
        if request.page_mode is PageMode.CURSOR:
            return await self._cursor_page(request)
        return await self._offset_page(request)

    async def _cursor_page(self, request: QueryRequest) -> PageResult:
        page_size = self._page_size(request)
        cursor = (
            Cursor(request.cursor_value, request.cursor_id)
            if request.cursor_id is not None
            else None
        )

        query = select(InventoryRecord).where(*self._filter_clauses(request))
        if cursor is not None:
            query = query.where(self._after_cursor(request, cursor))
        query = query.order_by(*self._order_by(request)).limit(page_size + 1)

        result = await self.db.execute(query)
        rows = list(result.scalars().all())

        # Fetched one extra row to know whether another page exists
        has_next = len(rows) > page_size
        rows = rows[:page_size]

        return PageResult(
            items=[InventoryItemOut.model_validate(row) for row in rows],
            total=await self.count(request),
            has_next=has_next,
            has_prev=cursor is not None,
            page_size=page_size,
            sort_field=request.sort_field,
            sort_direction=request.sort_direction,
            next_cursor=self._cursor_for(rows[-1], request) if has_next and rows else None,
        )

    async def _offset_page(self, request: QueryRequest) -> PageResult:
        page_size = self._page_size(request)
        total = await self.count(request)
        total_pages = math.ceil(total / page_size) if total else 0
        page = max(1, min(request.page or 1, max(total_pages, 1)))

        query = (
            select(InventoryRecord)
            .where(*self._filter_clauses(request))
            .order_by(*self._order_by(request))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(query)
        rows = list(result.scalars().all())

        has_next = page < total_pages
        return PageResult(
            items=[InventoryItemOut.model_validate(row) for row in rows],
            total=total,
            has_next=has_next,
            has_prev=page > 1,
            page_size=page_size,
            sort_field=request.sort_field,
            sort_direction=request.sort_direction,
            next_cursor=self._cursor_for(rows[-1], request) if has_next and rows else None,
            page=page,
            total_pages=total_pages,
        )

    async def get_item(self, item_id: str) -> InventoryRecord | None:
        return await self.db.get(InventoryRecord, item_id)

    async def list_makes(self) -> list[str]:
        query = (
            select(InventoryRecord.make)
            .where(InventoryRecord.make != "")
            .distinct()
            .order_by(InventoryRecord.make)
        )
        result = await self.db.execute(query)
        return [row[0] for row in result.all()]
