import re
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    conlist,
    constr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .models import MAX_TAG_LENGTH, normalize_category, normalize_tags

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
SORT_FIELDS = ("date", "sales", "profit", "category")

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python code keeps snake_case names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ValidationResult(BaseModel):
    loc: str
    msg: str


def format_errors(exc: ValidationError) -> List[ValidationResult]:
    return [
        ValidationResult(loc=".".join(str(p) for p in error["loc"]), msg=error["msg"])
        for error in exc.errors()
    ]


def _check_password_strength(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(
            "Password must contain at least one lowercase letter, "
            "one uppercase letter, and one number"
        )
    return value


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ----- Envelopes -----


class Envelope(BaseModel, Generic[DataT]):
    success: bool = True
    data: Optional[DataT] = None


class MessageEnvelope(BaseModel):
    success: bool = True
    message: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


# ----- Auth / User Schemas -----


class RegisterRequest(CamelModel):
    name: constr(strip_whitespace=True, min_length=2, max_length=50)
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(CamelModel):
    email: EmailStr
    password: constr(min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()


class ChangePasswordRequest(CamelModel):
    current_password: constr(min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


class NotificationPreferences(CamelModel):
    email: bool = True
    push: bool = True


class DashboardPreferences(CamelModel):
    layout: Dict[str, Any] = Field(default_factory=dict)
    widgets: List[Any] = Field(default_factory=lambda: ["kpi", "chart", "table", "ai-chat"])


class Preferences(CamelModel):
    theme: Literal["light", "dark", "auto"] = "light"
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    dashboard: DashboardPreferences = Field(default_factory=DashboardPreferences)


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    role: str
    is_active: bool
    is_demo: bool = False
    last_login: Optional[datetime] = None
    created_at: datetime
    preferences: Dict[str, Any] = Field(default_factory=dict)


class IdentityOut(CamelModel):
    id: str
    name: str
    email: str
    role: str
    is_demo: bool
    preferences: Optional[Dict[str, Any]] = None


class AuthData(CamelModel):
    token: str
    user: Union[UserOut, IdentityOut]


class TokenOut(CamelModel):
    token: str


class ProfileUpdate(CamelModel):
    name: Optional[constr(strip_whitespace=True, min_length=2, max_length=50)] = None
    preferences: Optional[Preferences] = None


class AdminUserUpdate(CamelModel):
    role: Optional[Literal["user", "admin", "moderator"]] = None
    is_active: Optional[bool] = None


class UserPage(CamelModel):
    users: List[UserOut]
    pagination: Pagination


# ----- Data Entry Schemas -----


class EntryCreate(CamelModel):
    date: datetime
    sales: float = Field(..., ge=0, allow_inf_nan=False)
    profit: float = Field(..., allow_inf_nan=False)
    category: str
    description: Optional[str] = Field(None, max_length=500)
    tags: List[str] = Field(default_factory=list)

    @field_validator("date")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        value = normalize_category(value)
        if not 1 <= len(value) <= 50:
            raise ValueError("Category must be between 1 and 50 characters")
        return value

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("tags", mode="before")
    @classmethod
    def _default_tags(cls, value):
        return [] if value is None else value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: List[str]) -> List[str]:
        for tag in value:
            if len(tag.strip()) > MAX_TAG_LENGTH:
                raise ValueError(f"Tag cannot exceed {MAX_TAG_LENGTH} characters")
        return normalize_tags(value)

    @model_validator(mode="after")
    def _profit_within_sales(self):
        if self.profit > self.sales:
            raise ValueError("Profit cannot exceed sales amount")
        return self


class EntryOut(CamelModel):
    id: int
    user_id: int
    date: datetime
    sales: float
    profit: float
    category: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: str
    import_batch: Optional[str] = None
    is_active: bool
    profit_margin: float
    created_at: datetime
    updated_at: datetime


class EntryPage(CamelModel):
    entries: List[EntryOut]
    pagination: Pagination


class StatsSummary(CamelModel):
    total_entries: int = 0
    total_sales: float = 0.0
    total_profit: float = 0.0
    avg_sales: float = 0.0
    avg_profit: float = 0.0
    min_sales: float = 0.0
    max_sales: float = 0.0
    min_profit: float = 0.0
    max_profit: float = 0.0
    categories: List[str] = Field(default_factory=list)
    profit_margin: float = 0.0


class CategoryStats(CamelModel):
    category: str
    count: int
    total_sales: float
    total_profit: float
    avg_sales: float
    avg_profit: float
    min_sales: float
    max_sales: float
    min_profit: float
    max_profit: float
    profit_margin: float


class StatsOut(CamelModel):
    summary: StatsSummary
    category_breakdown: List[CategoryStats]


class BulkCreated(CamelModel):
    entries: List[EntryOut]
    count: int


class BulkRowError(CamelModel):
    index: int
    error: str
    details: List[ValidationResult] = Field(default_factory=list)


class BulkReport(CamelModel):
    message: str
    successful: int
    failed: int
    errors: List[BulkRowError]


class ExportOut(CamelModel):
    export_date: datetime
    total_entries: int
    entries: List[EntryOut]


# ----- Dashboard Schemas -----


class WidgetConfig(CamelModel):
    widgets: List[Any]
    layout: Dict[str, Any] = Field(default_factory=dict)


class AnalyticsPoint(CamelModel):
    date: str
    value: float


class AnalyticsSummary(CamelModel):
    total: float
    average: float


class CategoryShare(CamelModel):
    category: str
    total: float
    value: float


class AnalyticsBreakdown(CamelModel):
    by_category: List[CategoryShare] = Field(default_factory=list)


class AnalyticsOut(CamelModel):
    period: str
    metric: str
    time_series: List[AnalyticsPoint]
    summary: AnalyticsSummary
    breakdown: AnalyticsBreakdown = Field(default_factory=AnalyticsBreakdown)


# ----- Chat Schemas -----


class ChatMessageIn(CamelModel):
    role: Literal["user", "assistant", "system"]
    content: constr(strip_whitespace=True, min_length=1, max_length=2000)


class ChatRequest(CamelModel):
    prompt: Optional[constr(strip_whitespace=True, min_length=1, max_length=2000)] = None
    messages: Optional[conlist(ChatMessageIn, min_length=1, max_length=50)] = None

    @model_validator(mode="after")
    def _prompt_or_messages(self):
        if not self.prompt and not self.messages:
            raise ValueError("Either prompt or messages is required")
        return self

    def conversation(self) -> List[ChatMessageIn]:
        if self.messages:
            return list(self.messages)
        return [ChatMessageIn(role="user", content=self.prompt)]


class ChatReply(CamelModel):
    message: str
    model: str
    usage: Optional[Dict[str, Any]] = None


class ChatStatus(CamelModel):
    available: bool
    model: str
    features: Dict[str, bool]
