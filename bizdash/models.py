import math
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship, validates

from .database import Base

ROLES = ("user", "admin", "moderator")
ENTRY_SOURCES = ("manual", "import", "api")
MAX_TAGS = 10
MAX_TAG_LENGTH = 30


def normalize_category(value: str) -> str:
    return value.strip().lower()


def normalize_tags(tags) -> list:
    cleaned = [str(tag).strip().lower() for tag in tags or []]
    return [tag for tag in cleaned if tag][:MAX_TAGS]


class TimestampMixin:
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default="user")
    is_active = Column(Boolean, default=True, nullable=False)
    login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime)
    last_login = Column(DateTime)
    preferences = Column(JSON, default=dict, nullable=False)

    entries = relationship("DataEntry", back_populates="owner")

    @validates("email")
    def _normalize_email(self, key, value):
        return value.strip().lower()

    @validates("role")
    def _check_role(self, key, value):
        if value not in ROLES:
            raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
        return value

    def is_locked(self, now=None) -> bool:
        now = now or datetime.utcnow()
        return self.lock_until is not None and self.lock_until > now


class DataEntry(Base, TimestampMixin):
    __tablename__ = "data_entries"
    __table_args__ = (
        CheckConstraint("sales >= 0", name="ck_entry_sales_non_negative"),
        CheckConstraint("profit <= sales", name="ck_entry_profit_le_sales"),
        Index("ix_entry_user_date", "user_id", "date"),
        Index("ix_entry_user_category", "user_id", "category"),
        Index("ix_entry_user_active", "user_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(DateTime, nullable=False, index=True)
    sales = Column(Float, nullable=False)
    profit = Column(Float, nullable=False)
    category = Column(String(50), nullable=False, index=True)
    description = Column(Text)
    tags = Column(JSON, default=list, nullable=False)
    source = Column(String(10), nullable=False, default="manual")
    import_batch = Column(String(64))
    is_active = Column(Boolean, default=True, nullable=False)

    owner = relationship("User", back_populates="entries")

    @validates("sales", "profit")
    def _check_amount(self, key, value):
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"{key.capitalize()} must be a valid number")
        return value

    @validates("category")
    def _normalize_category(self, key, value):
        return normalize_category(value)

    @validates("tags")
    def _normalize_tags(self, key, value):
        return normalize_tags(value)

    @validates("source")
    def _check_source(self, key, value):
        if value not in ENTRY_SOURCES:
            raise ValueError(f"Source must be one of: {', '.join(ENTRY_SOURCES)}")
        return value

    @property
    def profit_margin(self) -> float:
        if not self.sales:
            return 0.0
        return round(self.profit / self.sales * 100, 2)
