"""
Role read models: "what is waiting on me" for partners and specialists.

Every batch query follows the same shape. The scoped quote list is loaded first,
then each quote is resolved on its own worker thread (vehicle, client, journal).
A quote whose linkage is missing or whose lookups fail is dropped with a reason
instead of failing the whole list.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Generic, Iterable, List, Optional, Set, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError

from errors import AccessDeniedError, DropReason, InvalidStateError, NotFoundError, StoreFailureError
from journal import JournalReader
from models import Actor, JournalAction, Quote, QuoteStatus, Role, Vehicle
from negotiation import (
    IN_NEGOTIATION_STATUSES,
    Clock,
    derive_negotiation_view,
    quote_number,
    utc_now,
    waiting_days,
)
from schemas import (
    ApprovalItem,
    DroppedQuote,
    PendingReview,
    PendingTimeApproval,
    PendingTimeRevision,
    QuoteInReview,
    RevisionDetails,
    RevisionQuoteHeader,
    RevisionSummary,
)
from store import RecordStore
from suggestions import merge_suggestions

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 8

UNKNOWN_CLIENT = "Unknown client"
UNKNOWN_PARTNER = "Unknown partner"
UNKNOWN_SPECIALIST = "Unknown specialist"


class BatchResult(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    dropped: List[DroppedQuote] = Field(default_factory=list)


def ensure_access(actor: Actor, owner_role: Role, subject_id: str) -> None:
    """Admins may read any queue; everyone else only their own, and only for their role."""
    if actor.role == Role.ADMIN:
        return
    if actor.role != owner_role:
        raise AccessDeniedError(
            f"Role {actor.role.value} cannot access {owner_role.value} quotes",
            user_id=actor.user_id,
        )
    if actor.user_id != subject_id:
        raise AccessDeniedError(user_id=actor.user_id, subject_id=subject_id)


class _RoleQueryService(Generic[T]):
    def __init__(
        self,
        store: RecordStore,
        clock: Clock = utc_now,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self._store = store
        self._journal = JournalReader(store)
        self._clock = clock
        self._max_concurrency = max(1, max_concurrency)

    def _profile_name(self, profile_id: Optional[str], fallback: str) -> str:
        if not profile_id:
            return fallback
        profile = self._store.get_profile(profile_id)
        if profile is None or not profile.full_name:
            return fallback
        return profile.full_name

    def _vehicle_for(self, quote: Quote) -> Optional[Vehicle]:
        return self._store.get_vehicle_by_service_order(quote.service_order_id)

    async def _fan_out(
        self, quotes: Iterable[Quote], resolve: Callable[[Quote], Union[T, DropReason]]
    ) -> BatchResult[T]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def resolve_one(quote: Quote) -> Union[T, DropReason]:
            async with semaphore:
                try:
                    return await asyncio.to_thread(resolve, quote)
                except StoreFailureError as e:
                    logger.warning("Skipping quote %s: %s", quote.id, e.message)
                    return DropReason.STORE_FAILURE
                except ValidationError as e:
                    # a row that does not fit the record models, e.g. a suggestion without days
                    logger.warning("Skipping quote %s: malformed record (%d error(s))", quote.id, e.error_count())
                    return DropReason.MALFORMED_RECORD

        quotes = list(quotes)
        outcomes = await asyncio.gather(*(resolve_one(q) for q in quotes))

        result = BatchResult()
        for quote, outcome in zip(quotes, outcomes):
            if isinstance(outcome, DropReason):
                logger.debug("Dropped quote %s (%s)", quote.id, outcome.value)
                result.dropped.append(DroppedQuote(quote_id=quote.id, reason=outcome))
            else:
                result.items.append(outcome)

        if result.dropped:
            logger.info(
                "%s: %d quote(s) resolved, %d dropped",
                type(self).__name__, len(result.items), len(result.dropped),
            )
        return result


# ==================== PARTNER ====================

class PartnerPendingTimeRevisions(_RoleQueryService[PendingTimeRevision]):
    """Quotes where a specialist asked the partner to revise estimated days."""

    async def run(self, actor: Actor, partner_id: Optional[str] = None) -> BatchResult[PendingTimeRevision]:
        partner_id = partner_id or actor.user_id
        ensure_access(actor, Role.PARTNER, partner_id)

        quotes = await asyncio.to_thread(
            self._store.list_quotes, [QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED], partner_id
        )
        return await self._fan_out(quotes, self._resolve)

    def _resolve(self, quote: Quote) -> Union[PendingTimeRevision, DropReason]:
        vehicle = self._vehicle_for(quote)
        if vehicle is None:
            return DropReason.VEHICLE_UNRESOLVED

        client_name = self._profile_name(vehicle.client_id, UNKNOWN_CLIENT)

        revision = self._journal.latest_revision(quote.id)
        if revision is None:
            return DropReason.REVISION_EVENT_MISSING

        return PendingTimeRevision(
            quote_id=quote.id,
            quote_number=quote_number(quote.id),
            client_name=client_name,
            vehicle_plate=vehicle.plate,
            vehicle_model=vehicle.model,
            requested_at=revision.created_at,
            specialist_name=self._profile_name(revision.specialist_id, UNKNOWN_SPECIALIST),
            specialist_comments=revision.comments or "",
            items_count=self._store.count_quote_items(quote.id),
            revision_items_count=len(revision.revision_requests),
        )


class PartnerInReview(_RoleQueryService[QuoteInReview]):
    """Partner quotes still under negotiation, with how long each has been waiting."""

    async def run(self, actor: Actor, partner_id: Optional[str] = None) -> BatchResult[QuoteInReview]:
        partner_id = partner_id or actor.user_id
        ensure_access(actor, Role.PARTNER, partner_id)

        quotes = await asyncio.to_thread(self._store.list_quotes, IN_NEGOTIATION_STATUSES, partner_id)
        now = self._clock()
        return await self._fan_out(quotes, lambda quote: self._resolve(quote, now))

    def _resolve(self, quote: Quote, now: datetime) -> Union[QuoteInReview, DropReason]:
        vehicle = self._vehicle_for(quote)
        if vehicle is None:
            return DropReason.VEHICLE_UNRESOLVED

        client_name = self._profile_name(vehicle.client_id, UNKNOWN_CLIENT)
        journal = self._journal.snapshot(quote.id)
        view = derive_negotiation_view(quote, journal.latest_revision, journal.latest_partner_update)

        has_time_revision = quote.status == QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED
        revision_comments = None
        if has_time_revision and journal.latest_revision is not None:
            revision_comments = journal.latest_revision.comments

        partner_comments = None
        if journal.latest_partner_update is not None:
            partner_comments = journal.latest_partner_update.comments

        return QuoteInReview(
            quote_id=quote.id,
            quote_number=quote_number(quote.id),
            client_name=client_name,
            vehicle_plate=vehicle.plate,
            vehicle_model=vehicle.model,
            submitted_at=view.reference_timestamp,
            partner_comments=partner_comments,
            items_count=self._store.count_quote_items(quote.id),
            total_value=quote.total_value,
            waiting_days=waiting_days(now, view.reference_timestamp),
            has_time_revision=has_time_revision,
            revision_comments=revision_comments,
        )


# ==================== SPECIALIST ====================

class SpecialistPendingReview(_RoleQueryService[PendingReview]):
    """
    Quotes the partner resubmitted after a revision request, waiting for the
    specialist to look again. Only clients assigned to the specialist count, and
    an admin_review quote without a partner_updated event is not a re-review.
    Oldest waiting first.
    """

    async def run(self, actor: Actor, specialist_id: Optional[str] = None) -> BatchResult[PendingReview]:
        specialist_id = specialist_id or actor.user_id
        ensure_access(actor, Role.SPECIALIST, specialist_id)

        client_ids = set(await asyncio.to_thread(self._store.list_client_ids_for_specialist, specialist_id))
        if not client_ids:
            logger.debug("Specialist %s has no assigned clients", specialist_id)
            return BatchResult[PendingReview]()

        quotes = await asyncio.to_thread(self._store.list_quotes, [QuoteStatus.ADMIN_REVIEW])
        now = self._clock()
        result = await self._fan_out(quotes, lambda quote: self._resolve(quote, client_ids, now))
        result.items.sort(key=lambda review: review.waiting_days, reverse=True)
        return result

    def _resolve(self, quote: Quote, client_ids: Set[str], now: datetime) -> Union[PendingReview, DropReason]:
        vehicle = self._vehicle_for(quote)
        if vehicle is None:
            return DropReason.VEHICLE_UNRESOLVED
        if vehicle.client_id not in client_ids:
            return DropReason.NOT_ASSIGNED

        partner_update = self._journal.latest_partner_update(quote.id)
        view = derive_negotiation_view(quote, latest_partner_update=partner_update)
        if not view.needs_specialist_re_review:
            return DropReason.PARTNER_UPDATE_MISSING

        last_revision = self._journal.latest_revision(quote.id)

        return PendingReview(
            quote_id=quote.id,
            quote_number=quote_number(quote.id),
            client_name=self._profile_name(vehicle.client_id, UNKNOWN_CLIENT),
            partner_name=self._profile_name(quote.partner_id, UNKNOWN_PARTNER),
            vehicle_plate=vehicle.plate,
            vehicle_model=vehicle.model,
            updated_at=partner_update.created_at,
            partner_comments=partner_update.comments,
            last_revision_comments=last_revision.comments if last_revision else None,
            items_count=self._store.count_quote_items(quote.id),
            total_value=quote.total_value,
            waiting_days=waiting_days(now, view.reference_timestamp),
            revision_count=self._journal.event_count(quote.id, [JournalAction.REVISION_REQUESTED]),
        )


class SpecialistPendingTimeApproval(_RoleQueryService[PendingTimeApproval]):
    """Approved quotes of the specialist's clients whose estimated days nobody has reviewed yet. Newest first."""

    async def run(self, actor: Actor, specialist_id: Optional[str] = None) -> BatchResult[PendingTimeApproval]:
        specialist_id = specialist_id or actor.user_id
        ensure_access(actor, Role.SPECIALIST, specialist_id)

        client_ids = set(await asyncio.to_thread(self._store.list_client_ids_for_specialist, specialist_id))
        if not client_ids:
            logger.debug("Specialist %s has no assigned clients", specialist_id)
            return BatchResult[PendingTimeApproval]()

        quotes = await asyncio.to_thread(self._store.list_quotes, [QuoteStatus.APPROVED])
        quotes.sort(key=lambda quote: quote.created_at, reverse=True)
        return await self._fan_out(quotes, lambda quote: self._resolve(quote, client_ids))

    def _resolve(self, quote: Quote, client_ids: Set[str]) -> Union[PendingTimeApproval, DropReason]:
        vehicle = self._vehicle_for(quote)
        if vehicle is None:
            return DropReason.VEHICLE_UNRESOLVED
        if vehicle.client_id not in client_ids:
            return DropReason.NOT_ASSIGNED

        items = [
            ApprovalItem(
                id=item.id,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                estimated_days=item.estimated_days,
            )
            for item in self._store.list_quote_items(quote.id)
        ]

        return PendingTimeApproval(
            quote_id=quote.id,
            quote_number=quote_number(quote.id),
            status=quote.status,
            created_at=quote.created_at,
            total_value=quote.total_value,
            partner_name=self._profile_name(quote.partner_id, UNKNOWN_PARTNER),
            client_name=self._profile_name(vehicle.client_id, UNKNOWN_CLIENT),
            vehicle_plate=vehicle.plate,
            vehicle_model=vehicle.model,
            vehicle_brand=vehicle.brand,
            items=items,
        )


# ==================== SINGLE QUOTE ====================

class RevisionDetailsQuery:
    """The revision request a partner has to answer, merged into the quote's items."""

    def __init__(self, store: RecordStore):
        self._store = store
        self._journal = JournalReader(store)

    async def get(self, actor: Actor, quote_id: str) -> RevisionDetails:
        if actor.role not in (Role.PARTNER, Role.ADMIN):
            raise AccessDeniedError(user_id=actor.user_id, quote_id=quote_id)
        return await asyncio.to_thread(self._load, actor, quote_id)

    def _load(self, actor: Actor, quote_id: str) -> RevisionDetails:
        quote = self._store.get_quote(quote_id)
        if quote is None:
            raise NotFoundError("quote", quote_id)
        if actor.role == Role.PARTNER and quote.partner_id != actor.user_id:
            raise AccessDeniedError(user_id=actor.user_id, quote_id=quote_id)
        if quote.status != QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED:
            raise InvalidStateError(
                "Quote is not awaiting a time revision", quote_id=quote_id, status=quote.status.value
            )

        vehicle = self._store.get_vehicle_by_service_order(quote.service_order_id)
        if vehicle is None:
            raise NotFoundError("vehicle", quote.service_order_id)
        client = self._store.get_profile(vehicle.client_id)

        revision = self._journal.latest_revision(quote_id)
        if revision is None:
            raise NotFoundError("revision", quote_id)
        specialist = self._store.get_profile(revision.specialist_id) if revision.specialist_id else None

        items = self._store.list_quote_items(quote_id)

        return RevisionDetails(
            quote=RevisionQuoteHeader(
                id=quote.id,
                quote_number=quote_number(quote.id),
                client_name=(client.full_name if client else None) or UNKNOWN_CLIENT,
                vehicle_plate=vehicle.plate,
                vehicle_model=vehicle.model,
                created_at=quote.created_at,
            ),
            revision=RevisionSummary(
                specialist_name=(specialist.full_name if specialist else None) or UNKNOWN_SPECIALIST,
                requested_at=revision.created_at,
                comments=revision.comments or "",
                revision_requests=revision.revision_requests,
            ),
            items=merge_suggestions(items, revision),
        )
