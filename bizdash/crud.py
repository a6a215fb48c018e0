import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)

BULK_MAX_ROWS = 1000


def _commit(db: Session) -> None:
    """Commit the session, wrapping low-level errors for the API layer."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise RuntimeError("Database commit failed") from exc


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _margin(profit: float, sales: float) -> float:
    if not sales:
        return 0.0
    return profit / sales * 100


# User CRUD


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_active_user(db: Session, user_id: int) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.is_active.is_(True))
        .first()
    )


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def create_user(db: Session, name: str, email: str, password_hash: str) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=password_hash,
        role="user",
        preferences=schemas.Preferences().model_dump(by_alias=True),
    )
    db.add(user)
    _commit(db)
    db.refresh(user)
    return user


def record_failed_login(
    db: Session, user: models.User, max_attempts: int, lock_window: timedelta
) -> None:
    """Count a failed password check and lock the account at the threshold.

    An expired lock restarts the counter at one.
    """
    now = datetime.utcnow()
    if user.lock_until is not None and user.lock_until <= now:
        user.login_attempts = 1
        user.lock_until = None
    else:
        user.login_attempts = (user.login_attempts or 0) + 1
        if user.login_attempts >= max_attempts and not user.is_locked(now):
            user.lock_until = now + lock_window
    _commit(db)


def record_successful_login(db: Session, user: models.User) -> None:
    user.login_attempts = 0
    user.lock_until = None
    user.last_login = datetime.utcnow()
    _commit(db)


def update_password(db: Session, user: models.User, password_hash: str) -> None:
    user.password_hash = password_hash
    _commit(db)


def update_profile(
    db: Session,
    user: models.User,
    name: Optional[str] = None,
    preferences: Optional[Dict[str, Any]] = None,
) -> models.User:
    if name:
        user.name = name
    if preferences is not None:
        user.preferences = preferences
    _commit(db)
    db.refresh(user)
    return user


def save_dashboard_config(
    db: Session, user: models.User, widgets: List[Any], layout: Dict[str, Any]
) -> models.User:
    preferences = dict(user.preferences or {})
    dashboard = dict(preferences.get("dashboard") or {})
    dashboard.update({"widgets": widgets, "layout": layout})
    preferences["dashboard"] = dashboard
    # JSON columns only notice reassignment
    user.preferences = preferences
    _commit(db)
    db.refresh(user)
    return user


def list_users(
    db: Session,
    page: int = 1,
    limit: int = 20,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Tuple[List[models.User], int]:
    query = db.query(models.User)
    if role:
        query = query.filter(models.User.role == role)
    if is_active is not None:
        query = query.filter(models.User.is_active.is_(is_active))
    total = query.count()
    users = (
        query.order_by(models.User.created_at.desc(), models.User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return users, total


def admin_update_user(
    db: Session,
    user_id: int,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Optional[models.User]:
    user = db.get(models.User, user_id)
    if not user:
        return None
    if role:
        user.role = role
    if is_active is not None:
        user.is_active = is_active
    _commit(db)
    db.refresh(user)
    return user


def deactivate_user(db: Session, user_id: int) -> Optional[models.User]:
    user = db.get(models.User, user_id)
    if not user:
        return None
    user.is_active = False
    _commit(db)
    db.refresh(user)
    return user


# Data entry CRUD


@dataclass(frozen=True)
class EntryFilters:
    """Optional predicates shared by listing, statistics and export.

    Date and amount bounds are inclusive; ``None`` leaves a bound open.
    """

    category: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_sales: Optional[float] = None
    max_sales: Optional[float] = None
    min_profit: Optional[float] = None
    max_profit: Optional[float] = None


def _entry_conditions(owner_id: Optional[int], filters: Optional[EntryFilters]) -> list:
    # A demo identity has no owner id, which matches no stored rows.
    conditions = [
        models.DataEntry.user_id == owner_id,
        models.DataEntry.is_active.is_(True),
    ]
    if filters is None:
        return conditions

    if filters.category:
        pattern = f"%{_escape_like(filters.category.strip())}%"
        conditions.append(models.DataEntry.category.ilike(pattern, escape="\\"))

    bounds = (
        (models.DataEntry.date, filters.start_date, filters.end_date),
        (models.DataEntry.sales, filters.min_sales, filters.max_sales),
        (models.DataEntry.profit, filters.min_profit, filters.max_profit),
    )
    for column, low, high in bounds:
        if low is not None:
            conditions.append(column >= low)
        if high is not None:
            conditions.append(column <= high)
    return conditions


def _order_by(sort: str) -> list:
    descending = sort.startswith("-")
    field_name = sort.lstrip("-")
    if field_name not in schemas.SORT_FIELDS:
        raise ValueError(f"Invalid sort field: {sort}")
    column = getattr(models.DataEntry, field_name)
    if descending:
        return [column.desc(), models.DataEntry.id.desc()]
    return [column.asc(), models.DataEntry.id.asc()]


def get_entries(
    db: Session,
    owner_id: Optional[int],
    filters: Optional[EntryFilters] = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "-date",
) -> Tuple[List[models.DataEntry], int]:
    """Return one page of the owner's active entries and the matching total."""
    conditions = _entry_conditions(owner_id, filters)

    total = db.execute(
        select(func.count(models.DataEntry.id)).where(*conditions)
    ).scalar_one()

    stmt = (
        select(models.DataEntry)
        .where(*conditions)
        .order_by(*_order_by(sort))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all()), int(total)


def get_entry(db: Session, owner_id: Optional[int], entry_id: int) -> Optional[models.DataEntry]:
    stmt = select(models.DataEntry).where(
        models.DataEntry.id == entry_id, *_entry_conditions(owner_id, None)
    )
    return db.execute(stmt).scalar_one_or_none()


def _build_entry(
    owner_id: int,
    payload: schemas.EntryCreate,
    source: str = "manual",
    import_batch: Optional[str] = None,
) -> models.DataEntry:
    return models.DataEntry(
        user_id=owner_id,
        date=payload.date,
        sales=payload.sales,
        profit=payload.profit,
        category=payload.category,
        description=payload.description,
        tags=payload.tags,
        source=source,
        import_batch=import_batch,
    )


def create_entry(
    db: Session, owner_id: int, payload: schemas.EntryCreate, source: str = "manual"
) -> models.DataEntry:
    entry = _build_entry(owner_id, payload, source=source)
    db.add(entry)
    _commit(db)
    db.refresh(entry)
    return entry


def update_entry(
    db: Session, owner_id: int, entry_id: int, payload: schemas.EntryCreate
) -> Optional[models.DataEntry]:
    entry = get_entry(db, owner_id, entry_id)
    if entry is None:
        return None

    entry.date = payload.date
    entry.sales = payload.sales
    entry.profit = payload.profit
    entry.category = payload.category
    entry.description = payload.description
    entry.tags = payload.tags
    _commit(db)
    db.refresh(entry)
    return entry


def soft_delete_entry(db: Session, owner_id: int, entry_id: int) -> bool:
    entry = get_entry(db, owner_id, entry_id)
    if entry is None:
        return False
    entry.is_active = False
    _commit(db)
    return True


@dataclass
class BulkOutcome:
    created: List[models.DataEntry] = field(default_factory=list)
    errors: List[schemas.BulkRowError] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return len(self.created)

    @property
    def failed(self) -> int:
        return len(self.errors)


def bulk_create_entries(
    db: Session,
    owner_id: int,
    rows: Sequence[Any],
    import_batch: Optional[str] = None,
) -> BulkOutcome:
    """Insert a batch of raw payloads, each row succeeding or failing alone.

    Rows are validated independently; the valid ones are inserted in one
    transaction and, if the store rejects that batch, retried one by one so
    a single bad row never takes its siblings down with it.
    """
    batch = import_batch or f"batch-{int(time.time() * 1000)}"
    outcome = BulkOutcome()
    valid: List[Tuple[int, schemas.EntryCreate]] = []

    for index, raw in enumerate(rows):
        if not isinstance(raw, dict):
            outcome.errors.append(
                schemas.BulkRowError(index=index, error="Entry must be a JSON object")
            )
            continue
        try:
            valid.append((index, schemas.EntryCreate.model_validate(raw)))
        except ValidationError as exc:
            outcome.errors.append(
                schemas.BulkRowError(
                    index=index,
                    error="Validation failed",
                    details=schemas.format_errors(exc),
                )
            )

    if not valid:
        return outcome

    entries = [_build_entry(owner_id, payload, "import", batch) for _, payload in valid]
    db.add_all(entries)
    try:
        db.commit()
        outcome.created.extend(entries)
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Batch insert rejected, retrying %d rows individually", len(valid))
        for index, payload in valid:
            entry = _build_entry(owner_id, payload, "import", batch)
            db.add(entry)
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Bulk row %d could not be saved", index)
                outcome.errors.append(
                    schemas.BulkRowError(index=index, error="Could not save entry")
                )
                continue
            outcome.created.append(entry)

    outcome.errors.sort(key=lambda error: error.index)
    return outcome


def get_stats(
    db: Session, owner_id: Optional[int], filters: Optional[EntryFilters] = None
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Summary and per-category breakdown from a single grouped query.

    The summary is folded from the per-category groups, so both views
    always agree on the same set of matched entries.
    """
    entry = models.DataEntry
    stmt = (
        select(
            entry.category.label("category"),
            func.count(entry.id).label("count"),
            func.sum(entry.sales).label("total_sales"),
            func.sum(entry.profit).label("total_profit"),
            func.min(entry.sales).label("min_sales"),
            func.max(entry.sales).label("max_sales"),
            func.min(entry.profit).label("min_profit"),
            func.max(entry.profit).label("max_profit"),
        )
        .where(*_entry_conditions(owner_id, filters))
        .group_by(entry.category)
    )
    rows = db.execute(stmt).all()

    breakdown = []
    for row in rows:
        count = int(row.count)
        total_sales = float(row.total_sales or 0)
        total_profit = float(row.total_profit or 0)
        breakdown.append(
            {
                "category": row.category,
                "count": count,
                "total_sales": total_sales,
                "total_profit": total_profit,
                "avg_sales": total_sales / count,
                "avg_profit": total_profit / count,
                "min_sales": float(row.min_sales),
                "max_sales": float(row.max_sales),
                "min_profit": float(row.min_profit),
                "max_profit": float(row.max_profit),
                "profit_margin": _margin(total_profit, total_sales),
            }
        )
    breakdown.sort(key=lambda item: item["total_sales"], reverse=True)

    if not breakdown:
        return dict(schemas.StatsSummary().model_dump()), []

    total_entries = sum(item["count"] for item in breakdown)
    total_sales = math.fsum(item["total_sales"] for item in breakdown)
    total_profit = math.fsum(item["total_profit"] for item in breakdown)
    summary = {
        "total_entries": total_entries,
        "total_sales": total_sales,
        "total_profit": total_profit,
        "avg_sales": total_sales / total_entries,
        "avg_profit": total_profit / total_entries,
        "min_sales": min(item["min_sales"] for item in breakdown),
        "max_sales": max(item["max_sales"] for item in breakdown),
        "min_profit": min(item["min_profit"] for item in breakdown),
        "max_profit": max(item["max_profit"] for item in breakdown),
        "categories": sorted(item["category"] for item in breakdown),
        "profit_margin": _margin(total_profit, total_sales),
    }
    return summary, breakdown


def get_daily_totals(
    db: Session, owner_id: Optional[int], start: datetime, metric: str = "sales"
) -> Dict[date, float]:
    """Sum ``metric`` per calendar day for entries dated on or after ``start``."""
    entry = models.DataEntry
    stmt = select(entry.date, entry.sales, entry.profit).where(
        *_entry_conditions(owner_id, None), entry.date >= start
    )
    daily: Dict[date, float] = defaultdict(float)
    for row in db.execute(stmt):
        if metric == "entries":
            value = 1.0
        else:
            value = float(getattr(row, metric))
        daily[row.date.date()] += value
    return dict(daily)
