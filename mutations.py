"""
Write side of the negotiation: the two actions that move a quote around the
revision loop. Each appends exactly one journal event and only then changes the
quote status, so a status is never visible without the event behind it.
"""

import logging
import uuid

from errors import AccessDeniedError, InvalidStateError, NotFoundError
from models import (
    Actor,
    JournalEvent,
    PartnerUpdatedEvent,
    Quote,
    QuoteStatus,
    RevisionRequestedEvent,
    Role,
    TimesApprovedEvent,
)
from negotiation import Clock, utc_now
from schemas import TimeReviewRequest, UpdateTimesRequest
from store import RecordStore

logger = logging.getLogger(__name__)

# statuses a specialist may review estimated days from
REVIEWABLE_STATUSES = frozenset({QuoteStatus.APPROVED, QuoteStatus.ADMIN_REVIEW})


def _get_quote(store: RecordStore, quote_id: str) -> Quote:
    quote = store.get_quote(quote_id)
    if quote is None:
        raise NotFoundError("quote", quote_id)
    return quote


def _new_event_id() -> str:
    return str(uuid.uuid4())


def review_quote_times(
    store: RecordStore,
    actor: Actor,
    quote_id: str,
    request: TimeReviewRequest,
    clock: Clock = utc_now,
) -> JournalEvent:
    """Specialist approves the estimated days or asks the partner to revise some items."""
    if actor.role != Role.SPECIALIST:
        raise AccessDeniedError("Only specialists can review quote times", user_id=actor.user_id)

    quote = _get_quote(store, quote_id)

    vehicle = store.get_vehicle_by_service_order(quote.service_order_id)
    if vehicle is None:
        raise NotFoundError("vehicle", quote.service_order_id)
    if vehicle.client_id not in store.list_client_ids_for_specialist(actor.user_id):
        raise AccessDeniedError(user_id=actor.user_id, client_id=vehicle.client_id)

    if quote.status not in REVIEWABLE_STATUSES:
        raise InvalidStateError(
            "Quote is not awaiting time approval", quote_id=quote_id, status=quote.status.value
        )

    if request.action == "approved":
        event = TimesApprovedEvent(
            id=_new_event_id(),
            quote_id=quote_id,
            created_at=clock(),
            comments=request.comments,
            specialist_id=actor.user_id,
        )
        new_status = QuoteStatus.SPECIALIST_TIME_APPROVED
    else:
        _validate_suggestions(store, quote_id, request)
        event = RevisionRequestedEvent(
            id=_new_event_id(),
            quote_id=quote_id,
            created_at=clock(),
            comments=request.comments,
            specialist_id=actor.user_id,
            revision_requests=request.revision_requests,
        )
        new_status = QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED

    stored = store.append_journal_event(event)
    store.update_quote_status(quote_id, new_status)
    logger.info("Quote %s: %s by specialist %s", quote_id, event.action, actor.user_id)
    return stored


def _validate_suggestions(store: RecordStore, quote_id: str, request: TimeReviewRequest) -> None:
    if not request.revision_requests:
        raise InvalidStateError("A revision request needs at least one item suggestion", quote_id=quote_id)

    item_ids = {item.id for item in store.list_quote_items(quote_id)}
    unknown = sorted(set(request.revision_requests) - item_ids)
    if unknown:
        raise InvalidStateError("Suggestions reference items outside the quote", item_ids=unknown)

    for item_id, suggestion in request.revision_requests.items():
        if suggestion.suggested_days < 1:
            raise InvalidStateError("Suggested days must be positive", item_id=item_id)


def submit_revised_times(
    store: RecordStore,
    actor: Actor,
    quote_id: str,
    request: UpdateTimesRequest,
    clock: Clock = utc_now,
) -> PartnerUpdatedEvent:
    """Partner answers a revision request with new estimates and sends the quote back to review."""
    if actor.role != Role.PARTNER:
        raise AccessDeniedError("Only partners can update quote times", user_id=actor.user_id)

    quote = _get_quote(store, quote_id)
    if quote.partner_id != actor.user_id:
        raise AccessDeniedError(user_id=actor.user_id, quote_id=quote_id)
    if quote.status != QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED:
        raise InvalidStateError(
            "Quote is not awaiting a time revision", quote_id=quote_id, status=quote.status.value
        )

    items = {item.id: item for item in store.list_quote_items(quote_id)}
    for update in request.items:
        if update.item_id not in items:
            raise InvalidStateError("Item does not belong to this quote", item_id=update.item_id)
        if update.estimated_days < 1:
            raise InvalidStateError("Estimated days must be positive", item_id=update.item_id)

    event = PartnerUpdatedEvent(
        id=_new_event_id(),
        quote_id=quote_id,
        created_at=clock(),
        comments=request.comments,
    )
    stored = store.append_journal_event(event)

    # item estimates only change once the round is on record
    for update in request.items:
        if items[update.item_id].estimated_days != update.estimated_days:
            store.update_quote_item_days(update.item_id, update.estimated_days)
    store.update_quote_status(quote_id, QuoteStatus.ADMIN_REVIEW)
    logger.info("Quote %s resubmitted by partner %s (%d items)", quote_id, actor.user_id, len(request.items))
    return stored
