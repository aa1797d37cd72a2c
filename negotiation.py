"""
Negotiation state derivation.

No negotiation phase is stored anywhere. It is recomputed on every read from the
quote status plus the latest journal events of each kind.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from models import PartnerUpdatedEvent, Quote, QuoteStatus, RevisionRequestedEvent

ONE_DAY = timedelta(days=1)

REVIEW_STATUSES = frozenset({QuoteStatus.ADMIN_REVIEW, QuoteStatus.PENDING_ADMIN_APPROVAL})
IN_NEGOTIATION_STATUSES = REVIEW_STATUSES | {QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED}

Clock = Callable[[], datetime]


class NegotiationPhase(str, Enum):
    AWAITING_PARTNER = "awaiting_partner"
    AWAITING_REVIEW = "awaiting_review"
    OUTSIDE_NEGOTIATION = "outside_negotiation"


class NegotiationView(BaseModel):
    phase: NegotiationPhase
    reference_timestamp: datetime
    needs_specialist_re_review: bool = False

    @property
    def partner_action_required(self) -> bool:
        return self.phase == NegotiationPhase.AWAITING_PARTNER

    @property
    def admin_action_required(self) -> bool:
        return self.phase == NegotiationPhase.AWAITING_REVIEW

    @property
    def specialist_action_required(self) -> bool:
        return self.needs_specialist_re_review


def derive_negotiation_view(
    quote: Quote,
    latest_revision: Optional[RevisionRequestedEvent] = None,
    latest_partner_update: Optional[PartnerUpdatedEvent] = None,
) -> NegotiationView:
    """Compute the phase and waiting reference of a quote. Missing events fall back, never raise."""
    if quote.status == QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED:
        # a revision status without its event is stale data; fall back to the quote itself
        reference = latest_revision.created_at if latest_revision else quote.created_at
        return NegotiationView(phase=NegotiationPhase.AWAITING_PARTNER, reference_timestamp=reference)

    if quote.status in REVIEW_STATUSES:
        if latest_partner_update is not None:
            reference = latest_partner_update.created_at
        else:
            reference = quote.sent_to_admin_at or quote.created_at
        return NegotiationView(
            phase=NegotiationPhase.AWAITING_REVIEW,
            reference_timestamp=reference,
            needs_specialist_re_review=(
                quote.status == QuoteStatus.ADMIN_REVIEW and latest_partner_update is not None
            ),
        )

    return NegotiationView(phase=NegotiationPhase.OUTSIDE_NEGOTIATION, reference_timestamp=quote.created_at)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def waiting_days(now: datetime, reference: datetime) -> int:
    # floor division: partial days round down, future references go negative
    return (now - reference) // ONE_DAY


def quote_number(quote_id: str) -> str:
    return quote_id[:8].upper()
