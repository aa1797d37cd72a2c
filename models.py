from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Dict, Literal, Optional, Union
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Supabase returns timestamptz; naive values are treated as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class QuoteStatus(str, Enum):
    PENDING_ADMIN_APPROVAL = "pending_admin_approval"
    ADMIN_REVIEW = "admin_review"
    SPECIALIST_TIME_REVISION_REQUESTED = "specialist_time_revision_requested"
    SPECIALIST_TIME_APPROVED = "specialist_time_approved"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"


class JournalAction(str, Enum):
    REVISION_REQUESTED = "revision_requested"
    PARTNER_UPDATED = "partner_updated"
    APPROVED = "approved"


class Role(str, Enum):
    PARTNER = "partner"
    SPECIALIST = "specialist"
    ADMIN = "admin"
    CLIENT = "client"


class Actor(BaseModel):
    """The authenticated caller, as handed over by the auth layer."""
    user_id: str
    role: Role


class Quote(BaseModel):
    id: str
    status: QuoteStatus
    total_value: Decimal = Decimal("0")
    partner_id: str
    service_order_id: str
    created_at: datetime
    sent_to_admin_at: Optional[datetime] = None

    @field_validator("created_at", "sent_to_admin_at")
    @classmethod
    def utc_timestamps(cls, value):
        return _as_utc(value)


class QuoteItem(BaseModel):
    id: str
    quote_id: str
    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    estimated_days: int
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def utc_timestamps(cls, value):
        return _as_utc(value)


class Vehicle(BaseModel):
    id: str
    plate: Optional[str] = None
    model: Optional[str] = None
    brand: Optional[str] = None
    client_id: str


class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None


# ==================== JOURNAL EVENTS ====================

class RevisionSuggestion(BaseModel):
    suggested_days: int
    reason: str = ""


class _JournalEventBase(BaseModel):
    id: str
    quote_id: str
    created_at: datetime
    comments: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def utc_timestamps(cls, value):
        return _as_utc(value)


class RevisionRequestedEvent(_JournalEventBase):
    action: Literal["revision_requested"] = "revision_requested"
    specialist_id: Optional[str] = None
    revision_requests: Dict[str, RevisionSuggestion] = Field(default_factory=dict)

    @field_validator("revision_requests", mode="before")
    @classmethod
    def _null_map_is_empty(cls, value):
        return value or {}


class PartnerUpdatedEvent(_JournalEventBase):
    action: Literal["partner_updated"] = "partner_updated"


class TimesApprovedEvent(_JournalEventBase):
    action: Literal["approved"] = "approved"
    specialist_id: Optional[str] = None


JournalEvent = Annotated[
    Union[RevisionRequestedEvent, PartnerUpdatedEvent, TimesApprovedEvent],
    Field(discriminator="action"),
]
