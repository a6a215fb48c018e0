import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..audit import log_api_usage
from ..auth import Identity, StoredIdentity, get_identity, require_stored_identity
from ..database import get_db
from ..errors import UnexpectedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
METRIC_PATTERN = r"^(sales|profit|entries)$"
# Per-category total backing each metric.
CATEGORY_TOTALS = {"sales": "total_sales", "profit": "total_profit", "entries": "count"}


def category_shares(breakdown, metric):
    """Per-category totals of ``metric`` with their percentage of the grand total."""
    key = CATEGORY_TOTALS[metric]
    grand_total = sum(float(item[key]) for item in breakdown)
    shares = [
        {
            "category": item["category"],
            "total": float(item[key]),
            "value": round(float(item[key]) / grand_total * 100, 2) if grand_total else 0.0,
        }
        for item in breakdown
    ]
    shares.sort(key=lambda share: share["total"], reverse=True)
    return shares


@router.get("/analytics", response_model=schemas.Envelope[schemas.AnalyticsOut])
def analytics(
    period: str = Query("30d", pattern=r"^(7d|30d|90d)$"),
    metric: str = Query("sales", pattern=METRIC_PATTERN),
    series_type: Optional[str] = Query(None, alias="type", pattern=METRIC_PATTERN),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    """Daily totals of ``metric`` over the trailing ``period``, today included.

    ``type`` is accepted as another name for ``metric`` and wins when both
    are given. Days without entries are reported as zero so the series is
    contiguous. The category breakdown covers the same window.
    """
    metric = series_type or metric
    days = PERIOD_DAYS[period]
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    start = today - timedelta(days=days - 1)

    daily = crud.get_daily_totals(db, identity.owner_id, start, metric=metric)
    series = []
    for offset in range(days):
        day = (start + timedelta(days=offset)).date()
        series.append({"date": day.isoformat(), "value": daily.get(day, 0.0)})

    _, breakdown = crud.get_stats(db, identity.owner_id, crud.EntryFilters(start_date=start))

    total = sum(point["value"] for point in series)
    log_api_usage("dashboard/analytics", identity.id, period=period, metric=metric)
    return {
        "success": True,
        "data": {
            "period": period,
            "metric": metric,
            "time_series": series,
            "summary": {"total": total, "average": total / days},
            "breakdown": {"by_category": category_shares(breakdown, metric)},
        },
    }


@router.get("/widgets", response_model=schemas.Envelope[schemas.WidgetConfig])
def get_widgets(identity: Identity = Depends(get_identity)):
    config = schemas.DashboardPreferences()
    if not identity.is_demo:
        stored = (identity.user.preferences or {}).get("dashboard") or {}
        config = schemas.DashboardPreferences.model_validate(stored)
    return {"success": True, "data": {"widgets": config.widgets, "layout": config.layout}}


@router.put("/widgets", response_model=schemas.Envelope[schemas.WidgetConfig])
def save_widgets(
    payload: schemas.WidgetConfig,
    identity: StoredIdentity = Depends(require_stored_identity),
    db: Session = Depends(get_db),
):
    try:
        crud.save_dashboard_config(db, identity.user, payload.widgets, payload.layout)
    except RuntimeError:
        logger.exception("Saving dashboard config failed for user %s", identity.id)
        raise UnexpectedError("Internal server error while saving dashboard.")

    log_api_usage("dashboard/widgets", identity.id, widgets=len(payload.widgets))
    return {"success": True, "data": payload}
