"""API routes for browsing the mirrored inventory."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_mirror.config import get_settings
from inventory_mirror.database import get_db
from inventory_mirror.rate_limit import QUERY_RATE_LIMIT, limiter
from inventory_mirror.schemas.inventory import (
    InventoryItemOut,
    PageMode,
    PageResult,
    QueryRequest,
    RangeFilter,
    SortDirection,
    SortField,
    parse_sort,
)
from inventory_mirror.services.pagination import PaginationEngine, decode_cursor

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("", response_model=PageResult)
@limiter.limit(QUERY_RATE_LIMIT)
async def list_inventory(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    make: list[str] | None = Query(None, description="Filter by make (repeatable)"),
    model: list[str] | None = Query(None, description="Filter by model (repeatable)"),
    year: list[int] | None = Query(None, description="Filter by model year (repeatable)"),
    fuel: list[str] | None = Query(None),
    transmission: list[str] | None = Query(None),
    color: list[str] | None = Query(None),
    body_type: list[str] | None = Query(None),
    condition: list[str] | None = Query(None),
    price_min: int | None = Query(None, ge=0, description="Minimum price in cents"),
    price_max: int | None = Query(None, ge=0, description="Maximum price in cents"),
    year_min: int | None = Query(None),
    year_max: int | None = Query(None),
    mileage_max: int | None = Query(None, ge=0),
    sort: str | None = Query(None, description="Sort option, e.g. price_asc, year_new, recently_added"),
    sort_field: SortField = Query(SortField.PRICE),
    sort_dir: SortDirection = Query(SortDirection.ASC),
    mode: PageMode = Query(PageMode.OFFSET, description="cursor (load more) or offset (jump to page)"),
    cursor: str | None = Query(None, description="Opaque cursor from a previous page"),
    page: int | None = Query(None, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1),
) -> PageResult:
    """
    Page through inventory in a stable global order.

    Order is the chosen sort (nulls last) with `id` as tie-break, identical in
    both modes. A malformed cursor is treated as "first page".
    """
    if sort:
        try:
            sort_field, sort_dir = parse_sort(sort)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    filters = {
        name: values
        for name, values in {
            "make": make,
            "model": model,
            "year": year,
            "fuel": fuel,
            "transmission": transmission,
            "color": color,
            "body_type": body_type,
            "condition": condition,
        }.items()
        if values
    }
    ranges = {}
    if price_min is not None or price_max is not None:
        ranges["price_cents"] = RangeFilter(min=price_min, max=price_max)
    if year_min is not None or year_max is not None:
        ranges["year"] = RangeFilter(min=year_min, max=year_max)
    if mileage_max is not None:
        ranges["mileage"] = RangeFilter(max=mileage_max)

    decoded = decode_cursor(cursor, sort_field) if mode is PageMode.CURSOR else None

    try:
        query = QueryRequest(
            filters=filters,
            ranges=ranges,
            sort_field=sort_field,
            sort_direction=sort_dir,
            page_mode=mode,
            cursor_value=decoded.sort_value if decoded else None,
            cursor_id=decoded.id if decoded else None,
            page=page,
            page_size=page_size,
        )
    except ValidationError as e:
        detail = "; ".join(error["msg"] for error in e.errors(include_url=False))
        raise HTTPException(status_code=400, detail=detail) from e

    return await PaginationEngine(db).page(query)


@router.get("/makes", response_model=list[str])
async def list_makes(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[str]:
    """Get list of all makes present in the mirror."""
    return await PaginationEngine(db).list_makes()


@router.get("/{item_id}", response_model=InventoryItemOut)
async def get_item(
    item_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> InventoryItemOut:
    """Get a single inventory record by its upstream id."""
    record = await PaginationEngine(db).get_item(item_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return InventoryItemOut.model_validate(record)
