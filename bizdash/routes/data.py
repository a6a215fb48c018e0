import logging
import math
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..audit import log_api_usage
from ..auth import Identity, get_identity, require_stored_identity
from ..config import settings
from ..database import get_db
from ..errors import NotFoundError, PartialFailure, UnexpectedError, ValidationError
from ..export import EXPORT_FORMATS, entries_to_csv, export_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/data", tags=["data"])

SORT_PATTERN = r"^-?(date|sales|profit|category)$"


def entry_filters(
    category: Optional[str] = Query(None, max_length=50),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    min_sales: Optional[float] = Query(None, alias="minSales"),
    max_sales: Optional[float] = Query(None, alias="maxSales"),
    min_profit: Optional[float] = Query(None, alias="minProfit"),
    max_profit: Optional[float] = Query(None, alias="maxProfit"),
) -> crud.EntryFilters:
    return crud.EntryFilters(
        category=category or None,
        start_date=schemas.to_naive_utc(start_date) if start_date else None,
        end_date=schemas.to_naive_utc(end_date) if end_date else None,
        min_sales=min_sales,
        max_sales=max_sales,
        min_profit=min_profit,
        max_profit=max_profit,
    )


@router.get("", response_model=schemas.Envelope[schemas.EntryPage])
def list_entries(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("-date", pattern=SORT_PATTERN),
    filters: crud.EntryFilters = Depends(entry_filters),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    entries, total = crud.get_entries(
        db, identity.owner_id, filters, page=page, limit=limit, sort=sort
    )
    log_api_usage(
        "data/get",
        identity.id,
        page=page,
        limit=limit,
        category=filters.category,
        start_date=filters.start_date,
        end_date=filters.end_date,
    )
    return {
        "success": True,
        "data": {
            "entries": entries,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        },
    }


@router.post(
    "",
    response_model=schemas.Envelope[schemas.EntryOut],
    status_code=status.HTTP_201_CREATED,
)
def create_entry(
    payload: schemas.EntryCreate,
    identity=Depends(require_stored_identity),
    db: Session = Depends(get_db),
):
    try:
        entry = crud.create_entry(db, identity.owner_id, payload)
    except RuntimeError:
        logger.exception("Entry creation failed for user %s", identity.id)
        raise UnexpectedError("Internal server error during entry creation.")

    log_api_usage(
        "data/create",
        identity.id,
        category=entry.category,
        sales=entry.sales,
        profit=entry.profit,
    )
    return {"success": True, "data": entry}


@router.post(
    "/bulk",
    response_model=schemas.Envelope[schemas.BulkCreated],
    status_code=status.HTTP_201_CREATED,
    responses={207: {"model": schemas.Envelope[schemas.BulkReport]}},
)
def bulk_create_entries(
    rows: List[Any] = Body(...),
    identity=Depends(require_stored_identity),
    db: Session = Depends(get_db),
):
    if not 1 <= len(rows) <= crud.BULK_MAX_ROWS:
        raise ValidationError(
            f"Must provide an array of 1-{crud.BULK_MAX_ROWS} entries"
        )

    outcome = crud.bulk_create_entries(db, identity.owner_id, rows)
    log_api_usage(
        "data/bulk-create",
        identity.id,
        successful=outcome.successful,
        failed=outcome.failed,
    )

    if outcome.failed:
        logger.warning(
            "Bulk import for user %s: %d saved, %d failed",
            identity.id,
            outcome.successful,
            outcome.failed,
        )
        report = schemas.BulkReport(
            message=(
                f"Bulk import completed with {outcome.successful} successful "
                f"and {outcome.failed} failed entries"
            ),
            successful=outcome.successful,
            failed=outcome.failed,
            errors=outcome.errors,
        )
        raise PartialFailure(data=report.model_dump(by_alias=True))

    return {
        "success": True,
        "data": {"entries": outcome.created, "count": outcome.successful},
    }


@router.get("/stats", response_model=schemas.Envelope[schemas.StatsOut])
def entry_stats(
    filters: crud.EntryFilters = Depends(entry_filters),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    summary, breakdown = crud.get_stats(db, identity.owner_id, filters)
    log_api_usage(
        "data/stats",
        identity.id,
        category=filters.category,
        start_date=filters.start_date,
        end_date=filters.end_date,
    )
    return {
        "success": True,
        "data": {"summary": summary, "category_breakdown": breakdown},
    }


@router.get("/export")
def export_entries(
    export_format: str = Query("json", alias="format"),
    filters: crud.EntryFilters = Depends(entry_filters),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(
            f"Format must be one of: {', '.join(EXPORT_FORMATS)}"
        )

    entries, _ = crud.get_entries(
        db, identity.owner_id, filters, page=1, limit=settings.export_limit, sort="-date"
    )
    log_api_usage("data/export", identity.id, format=export_format, count=len(entries))

    headers = {
        "Content-Disposition": f'attachment; filename="{export_filename(export_format)}"'
    }
    if export_format == "csv":
        return Response(content=entries_to_csv(entries), media_type="text/csv", headers=headers)

    payload = schemas.Envelope[schemas.ExportOut](
        data=schemas.ExportOut(
            export_date=datetime.utcnow(),
            total_entries=len(entries),
            entries=[schemas.EntryOut.model_validate(entry) for entry in entries],
        )
    )
    return JSONResponse(content=jsonable_encoder(payload), headers=headers)


@router.get("/{entry_id}", response_model=schemas.Envelope[schemas.EntryOut])
def get_entry(
    entry_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    entry = crud.get_entry(db, identity.owner_id, entry_id)
    if entry is None:
        raise NotFoundError("Data entry not found")
    log_api_usage("data/get-single", identity.id, entry_id=entry_id)
    return {"success": True, "data": entry}


@router.put("/{entry_id}", response_model=schemas.Envelope[schemas.EntryOut])
def update_entry(
    entry_id: int,
    payload: schemas.EntryCreate,
    identity=Depends(require_stored_identity),
    db: Session = Depends(get_db),
):
    try:
        entry = crud.update_entry(db, identity.owner_id, entry_id, payload)
    except RuntimeError:
        logger.exception("Entry %s update failed", entry_id)
        raise UnexpectedError("Internal server error during entry update.")

    if entry is None:
        raise NotFoundError("Data entry not found")

    log_api_usage("data/update", identity.id, entry_id=entry_id, category=entry.category)
    return {"success": True, "data": entry}


@router.delete("/{entry_id}", response_model=schemas.MessageEnvelope)
def delete_entry(
    entry_id: int,
    identity=Depends(require_stored_identity),
    db: Session = Depends(get_db),
):
    try:
        deleted = crud.soft_delete_entry(db, identity.owner_id, entry_id)
    except RuntimeError:
        logger.exception("Entry %s deletion failed", entry_id)
        raise UnexpectedError("Internal server error during entry deletion.")

    if not deleted:
        raise NotFoundError("Data entry not found")

    log_api_usage("data/delete", identity.id, entry_id=entry_id)
    return {"success": True, "message": "Data entry deleted successfully"}
