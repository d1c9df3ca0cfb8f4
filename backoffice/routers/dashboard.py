"""
Dashboard and analytics endpoints.

Endpoints:
    GET /api/dashboard/stats: Headline figures (any signed-in user, cached)
    GET /api/analytics/sales: Sales for a timeframe with growth (admin only)
    GET /api/analytics/customers: Customer counts and top spenders (admin only)
    GET /api/analytics/timeseries: Daily orders and revenue (admin only)
    GET /api/sales: Revenue, tax and discount report (admin only)
"""
from datetime import datetime, timezone
from typing import Literal, Optional
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import analytics, auth, cache, config, models, schemas
from ..database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])

Timeframe = Literal["week", "month", "quarter", "year"]


def _utc(moment: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are naive UTC
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@router.get("/dashboard/stats", response_model=schemas.DashboardStats)
def get_dashboard_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Dashboard figures. Served from Redis for ``DASHBOARD_CACHE_TTL`` seconds
    and dropped from the cache whenever an order or product changes.
    """
    cached = cache.get_cache(cache.DASHBOARD_STATS_KEY)
    if cached:
        logger.debug("Dashboard stats served from cache")
        return schemas.DashboardStats.model_validate(cached)

    stats = analytics.dashboard_stats(db)
    cache.set_cache(cache.DASHBOARD_STATS_KEY, stats.model_dump(mode="json"), ttl=config.DASHBOARD_CACHE_TTL)
    return stats


@router.get("/analytics/sales", response_model=schemas.SalesAnalytics)
def get_sales_analytics(
    timeframe: Timeframe = "month",
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Sales analytics for a timeframe, or for ``startDate``..``endDate`` when
    both are given.

    Raises:
        HTTPException: 400 if ``endDate`` is before ``startDate``
    """
    start_date, end_date = _utc(start_date), _utc(end_date)
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")
    return analytics.sales_analytics(db, timeframe, start_date=start_date, end_date=end_date)


@router.get("/analytics/customers", response_model=schemas.CustomerAnalytics)
def get_customer_analytics(
    timeframe: Timeframe = "month",
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return analytics.customer_analytics(db, timeframe)


@router.get("/analytics/timeseries", response_model=schemas.Timeseries)
def get_timeseries(
    days: int = 30,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Time-series for sales over the past N days (defaults to 30, clamped to 1..180).

    Returns list of {date, orders, revenue} for each day inclusive.
    """
    return analytics.timeseries(db, days)


@router.get("/sales", response_model=schemas.SalesReport)
def get_sales_report(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return analytics.sales_report(db, _utc(start_date), _utc(end_date))
