"""Daily delivery metrics."""

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, require_operator
from ventushub.core.timeutil import utcnow
from ventushub.db.session import get_db
from ventushub.schemas.delivery import MetricsResponse
from ventushub.services.metrics_aggregator import MetricsAggregator

router = APIRouter()

MAX_RANGE_DAYS = 366


@router.get("", response_model=list[MetricsResponse])
async def list_metrics(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    """Partitions between `start` and `end` inclusive (default: the last 7 days)."""
    end = end or utcnow().date()
    start = start or end - timedelta(days=6)
    if start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    if (end - start).days >= MAX_RANGE_DAYS:
        raise HTTPException(status_code=422, detail=f"Range is limited to {MAX_RANGE_DAYS} days")
    return [MetricsResponse.from_model(m) for m in await MetricsAggregator(db).list_range(start, end)]


@router.post("/{day}/recompute", response_model=MetricsResponse)
async def recompute(
    day: date,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    """Rebuild one day's partition from the delivery log."""
    return MetricsResponse.from_model(await MetricsAggregator(db).recompute(day))
