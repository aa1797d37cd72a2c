from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional
from datetime import datetime
from decimal import Decimal

from errors import DropReason
from models import QuoteStatus, RevisionSuggestion

# Request schemas (what clients send to API)
class TimeReviewRequest(BaseModel):
    action: Literal["approved", "revision_requested"]
    comments: Optional[str] = None
    revision_requests: Dict[str, RevisionSuggestion] = Field(default_factory=dict)

class ItemTimeUpdate(BaseModel):
    item_id: str
    estimated_days: int

class UpdateTimesRequest(BaseModel):
    items: List[ItemTimeUpdate]
    comments: Optional[str] = None

# Response schemas (what API sends back to clients)
class DisplayItem(BaseModel):
    id: str
    description: Optional[str]
    estimated_days: int
    has_suggestion: bool
    suggested_days: Optional[int] = None
    suggestion_reason: Optional[str] = None

class PendingTimeRevision(BaseModel):
    quote_id: str
    quote_number: str
    client_name: str
    vehicle_plate: Optional[str]
    vehicle_model: Optional[str]
    requested_at: datetime
    specialist_name: str
    specialist_comments: str
    items_count: int
    revision_items_count: int

class QuoteInReview(BaseModel):
    quote_id: str
    quote_number: str
    client_name: str
    vehicle_plate: Optional[str]
    vehicle_model: Optional[str]
    submitted_at: datetime
    partner_comments: Optional[str] = None
    items_count: int
    total_value: Decimal
    waiting_days: int
    has_time_revision: bool
    revision_comments: Optional[str] = None

class PendingReview(BaseModel):
    quote_id: str
    quote_number: str
    client_name: str
    partner_name: str
    vehicle_plate: Optional[str]
    vehicle_model: Optional[str]
    updated_at: datetime
    partner_comments: Optional[str] = None
    last_revision_comments: Optional[str] = None
    items_count: int
    total_value: Decimal
    waiting_days: int
    revision_count: int

class ApprovalItem(BaseModel):
    id: str
    description: Optional[str]
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    estimated_days: int

class PendingTimeApproval(BaseModel):
    quote_id: str
    quote_number: str
    status: QuoteStatus
    created_at: datetime
    total_value: Decimal
    partner_name: str
    client_name: str
    vehicle_plate: Optional[str]
    vehicle_model: Optional[str]
    vehicle_brand: Optional[str]
    items: List[ApprovalItem]

class RevisionQuoteHeader(BaseModel):
    id: str
    quote_number: str
    client_name: str
    vehicle_plate: Optional[str]
    vehicle_model: Optional[str]
    created_at: datetime

class RevisionSummary(BaseModel):
    specialist_name: str
    requested_at: datetime
    comments: str
    revision_requests: Dict[str, RevisionSuggestion]

class RevisionDetails(BaseModel):
    quote: RevisionQuoteHeader
    revision: RevisionSummary
    items: List[DisplayItem]

class DroppedQuote(BaseModel):
    quote_id: str
    reason: DropReason
