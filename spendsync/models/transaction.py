"""
Core Data Models for SpendSync

These models define the strict schemas for all data crossing a boundary:
records fetched from the store of record, payloads pushed by the realtime
feed, and user input before it is sent anywhere.

They are designed to:
1. Decode the wire shape once, at the boundary
2. Keep money as Decimal from the first byte
3. Be immutable, so a store mutation is always a whole-record replacement

Wire shape of a transaction row:
    {id, description, amount, transaction_type, category,
     created_by, created_at, updated_at, deleted_at}
"""

import calendar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """Direction of a transaction. Only expenses feed the spending rollups."""
    EXPENSE = "expense"
    INCOME = "income"


class ChangeEventType(str, Enum):
    """Row-level change kinds delivered by the realtime feed."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def _coerce_amount(value: Any) -> Any:
    # Floats go through str() so 0.1 stays 0.1
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# TRANSACTIONS
# =============================================================================

class CategoryRef(BaseModel):
    """
    Weak reference to a category with denormalized display fields.

    A bare category id (no join) decodes to a ref with only `id` set.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    type: Optional[str] = None

    @field_validator('id', mode='before')
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class TransactionRecord(BaseModel):
    """
    A transaction as held by the store of record.

    INVARIANT: A record with `deleted_at` set never contributes
    to any aggregate. It stays in the local log for undo/audit only.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque id assigned by the store of record"
    )
    description: str = Field(
        default="",
        description="Free-text label, grouped case-insensitively"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative amount"
    )
    kind: TransactionKind = Field(
        ...,
        alias="transaction_type",
        description="expense or income"
    )
    category: Optional[CategoryRef] = Field(
        default=None,
        description="None means uncategorized"
    )
    created_by: str = Field(
        ...,
        description="Author user id"
    )
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @model_validator(mode='before')
    @classmethod
    def merge_joined_category(cls, data: Any) -> Any:
        """Fold a `categories(...)` join into the `category` field."""
        if not isinstance(data, dict):
            return data
        joined = data.get("categories")
        if isinstance(joined, dict):
            data = {k: v for k, v in data.items() if k != "categories"}
            data["category"] = joined
        category = data.get("category")
        if isinstance(category, (str, int)):
            data = dict(data)
            data["category"] = {"id": category} if category != "" else None
        return data

    @field_validator('id', 'created_by', mode='before')
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator('amount', mode='before')
    @classmethod
    def amount_from_float(cls, v: Any) -> Any:
        return _coerce_amount(v)

    @field_validator('kind', mode='before')
    @classmethod
    def normalize_kind(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('created_at', 'updated_at', 'deleted_at')
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_expense(self) -> bool:
        return self.kind == TransactionKind.EXPENSE

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category else None

    @property
    def description_key(self) -> str:
        """Grouping key: trimmed, case-folded description."""
        return self.description.strip().lower()

    def mark_deleted(self, at: Optional[datetime] = None) -> 'TransactionRecord':
        """Return a soft-deleted copy of this record."""
        at = _as_utc(at) or datetime.now(timezone.utc)
        return self.model_copy(update={"deleted_at": at})

    def to_record_dict(self) -> dict:
        """Convert to the JSON wire shape."""
        return {
            "id": self.id,
            "description": self.description,
            "amount": str(self.amount),
            "transaction_type": self.kind.value,
            "category": self.category.id if self.category else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }


class TransactionInput(BaseModel):
    """
    Client-side input for creating a transaction.

    Constraints are deliberately loose here. Business rules live in
    TransactionValidator so they are reported as validation issues
    instead of raw schema errors.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    description: str = ""
    amount: Decimal
    kind: TransactionKind = Field(
        default=TransactionKind.EXPENSE,
        alias="transaction_type",
    )
    category: Optional[str] = Field(
        default=None,
        description="Category id"
    )

    @field_validator('amount', mode='before')
    @classmethod
    def amount_from_float(cls, v: Any) -> Any:
        return _coerce_amount(v)

    @field_validator('kind', mode='before')
    @classmethod
    def normalize_kind(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    def to_insert_payload(self, created_by: str) -> dict:
        return {
            "description": self.description,
            "amount": str(self.amount),
            "transaction_type": self.kind.value,
            "category": self.category or None,
            "created_by": created_by,
        }


class TransactionUpdateInput(BaseModel):
    """Partial update. Only fields explicitly set are sent."""
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    description: Optional[str] = None
    amount: Optional[Decimal] = None
    kind: Optional[TransactionKind] = Field(
        default=None,
        alias="transaction_type",
    )
    category: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def amount_from_float(cls, v: Any) -> Any:
        return _coerce_amount(v)

    @field_validator('kind', mode='before')
    @classmethod
    def normalize_kind(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    def to_update_payload(self, updated_at: Optional[datetime] = None) -> dict:
        payload: dict[str, Any] = {}
        if self.description is not None:
            payload["description"] = self.description
        if self.amount is not None:
            payload["amount"] = str(self.amount)
        if self.kind is not None:
            payload["transaction_type"] = self.kind.value
        # An explicit None clears the category
        if "category" in self.model_fields_set:
            payload["category"] = self.category or None
        payload["updated_at"] = (updated_at or datetime.now(timezone.utc)).isoformat()
        return payload


# =============================================================================
# FAMILY
# =============================================================================

class FamilyMember(BaseModel):
    """A membership row linking a user to a family."""
    model_config = ConfigDict(frozen=True)

    family_id: str
    user_id: str
    role: Optional[str] = "member"
    deleted_at: Optional[datetime] = None

    @field_validator('family_id', 'user_id', mode='before')
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


class FamilyScope(BaseModel):
    """
    Set of user ids whose transactions are jointly visible to a viewer.

    The viewer is always a member of their own scope.
    """
    model_config = ConfigDict(frozen=True)

    viewer_id: str
    member_ids: frozenset[str]
    family_ids: frozenset[str] = frozenset()

    @model_validator(mode='after')
    def include_viewer(self) -> 'FamilyScope':
        if self.viewer_id not in self.member_ids:
            raise ValueError("Family scope must include the viewer")
        return self

    @classmethod
    def solo(cls, viewer_id: str) -> 'FamilyScope':
        return cls(viewer_id=viewer_id, member_ids=frozenset({viewer_id}))

    @classmethod
    def build(cls, viewer_id: str, members: Iterable[FamilyMember]) -> 'FamilyScope':
        """
        Derive the scope from membership rows.

        The viewer's families are their active memberships; the scope
        is every active member of those families plus the viewer.
        """
        active = [m for m in members if m.is_active]
        family_ids = frozenset(m.family_id for m in active if m.user_id == viewer_id)
        member_ids = {m.user_id for m in active if m.family_id in family_ids}
        member_ids.add(viewer_id)
        return cls(
            viewer_id=viewer_id,
            member_ids=frozenset(member_ids),
            family_ids=family_ids,
        )

    def includes(self, user_id: str) -> bool:
        return user_id in self.member_ids


# =============================================================================
# PERIODS & AGGREGATES
# =============================================================================

class PeriodWindow(BaseModel):
    """
    A single calendar month in a given timezone.

    Both bounds are inclusive: [first instant, last microsecond].
    """
    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1970, le=9999)
    month: int = Field(..., ge=1, le=12)
    timezone: str = "UTC"

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @classmethod
    def current(
        cls,
        timezone: str = "UTC",
        now: Optional[datetime] = None,
    ) -> 'PeriodWindow':
        tz = ZoneInfo(timezone)
        local = (_as_utc(now) or datetime.now(tz)).astimezone(tz)
        return cls(year=local.year, month=local.month, timezone=timezone)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def start(self) -> datetime:
        return datetime(self.year, self.month, 1, tzinfo=self.tz)

    @property
    def end(self) -> datetime:
        last_day = calendar.monthrange(self.year, self.month)[1]
        return datetime(
            self.year, self.month, last_day, 23, 59, 59, 999999, tzinfo=self.tz
        )

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def contains(self, moment: datetime) -> bool:
        moment = _as_utc(moment)
        return self.start <= moment <= self.end


class AggregateBucket(BaseModel):
    """
    One row of a category or description breakdown.

    `percentage` is rounded per bucket, so a breakdown may sum to 99 or 101.
    """
    model_config = ConfigDict(frozen=True)

    label: str
    total: Decimal
    count: int = Field(ge=0)
    percentage: int = Field(ge=0)
    icon: Optional[str] = None
    color: Optional[str] = None


class FetchResult(BaseModel):
    """Envelope returned by the store of record for list queries."""

    success: bool = True
    data: list[TransactionRecord] = Field(default_factory=list)
    count: int = Field(default=0, ge=0)


# =============================================================================
# REALTIME
# =============================================================================

class ChangeEvent(BaseModel):
    """
    A row change pushed by the realtime feed.

    Accepts both payload layouts the feed produces:
        {"eventType": "INSERT", "new": {...}, "old": {...}, "table": ...}
        {"data": {"type": "INSERT", "record": {...}, "old_record": {...}}}

    Row contents stay as dicts here; `record()`/`member()` decode them
    into typed models so a malformed row fails at the boundary.
    """
    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeEventType = Field(..., alias="eventType")
    table: str = ""
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[datetime] = None

    @model_validator(mode='before')
    @classmethod
    def normalize_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        inner = data.get("data")
        if isinstance(inner, dict) and ("type" in inner or "eventType" in inner):
            return {
                "eventType": inner.get("eventType") or inner.get("type"),
                "table": inner.get("table", ""),
                "new": inner.get("record") or inner.get("new") or {},
                "old": inner.get("old_record") or inner.get("old") or {},
                "commit_timestamp": inner.get("commit_timestamp"),
            }
        data = dict(data)
        for key in ("new", "old"):
            if data.get(key) is None:
                data[key] = {}
        if "eventType" not in data and "type" in data:
            data["eventType"] = data.pop("type")
        return data

    @field_validator('event_type', mode='before')
    @classmethod
    def normalize_event_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def row(self) -> dict[str, Any]:
        """The row image the event is about (old image for deletes)."""
        if self.event_type == ChangeEventType.DELETE:
            return self.old or self.new
        return self.new or self.old

    @property
    def row_id(self) -> Optional[str]:
        value = self.row.get("id")
        return str(value) if value is not None else None

    def record(self) -> TransactionRecord:
        """Decode the row as a transaction. Raises pydantic.ValidationError."""
        return TransactionRecord.model_validate(self.row)

    def member(self) -> FamilyMember:
        """Decode the row as a family membership. Raises pydantic.ValidationError."""
        return FamilyMember.model_validate(self.row)
