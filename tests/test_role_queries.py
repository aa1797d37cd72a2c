from datetime import timedelta
from decimal import Decimal

import pytest

from errors import AccessDeniedError, DropReason, InvalidStateError, NotFoundError, StoreFailureError
from factories import (
    NOW,
    OTHER_CLIENT_ID,
    OTHER_PARTNER_ID,
    PARTNER_ID,
    add_items,
    add_partner_update,
    add_quote,
    add_revision,
    fixed_clock,
)
from models import Actor, QuoteItem, QuoteStatus, Role, Vehicle
from role_queries import (
    PartnerInReview,
    PartnerPendingTimeRevisions,
    RevisionDetailsQuery,
    SpecialistPendingReview,
    SpecialistPendingTimeApproval,
)
from store import parse_journal_event

REVISION = QuoteStatus.SPECIALIST_TIME_REVISION_REQUESTED


# ==================== PARTNER PENDING TIME REVISIONS ====================

@pytest.mark.asyncio
async def test_pending_revisions_lists_partner_quote_with_counts(store, partner):
    add_quote(store, "q4", REVISION)
    items = add_items(store, "q4", 3, 2, 5)
    add_revision(
        store, "q4", NOW - timedelta(days=2),
        suggestions={items[0].id: (5, "parts delay"), items[2].id: (7, "paint")},
        comments="Too optimistic",
    )

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert result.dropped == []
    [revision] = result.items
    assert revision.quote_id == "q4"
    assert revision.quote_number == "Q4"
    assert revision.client_name == "Ana Client"
    assert revision.vehicle_plate == "ABC1D23"
    assert revision.specialist_name == "Carla Specialist"
    assert revision.specialist_comments == "Too optimistic"
    assert revision.requested_at == NOW - timedelta(days=2)
    assert revision.items_count == 3
    assert revision.revision_items_count == 2


@pytest.mark.asyncio
async def test_pending_revisions_counts_only_latest_suggestion_map(store, partner):
    add_quote(store, "q1", REVISION)
    items = add_items(store, "q1", 3, 2, 5)
    add_revision(store, "q1", NOW - timedelta(days=5), suggestions={i.id: (9, "old") for i in items})
    add_revision(store, "q1", NOW - timedelta(days=1), suggestions={items[1].id: (4, "new")}, comments=None)

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert result.items[0].revision_items_count == 1
    assert result.items[0].specialist_comments == ""


@pytest.mark.asyncio
async def test_pending_revisions_drops_quote_without_revision_event(store, partner):
    add_quote(store, "q1", REVISION)
    add_quote(store, "q2", REVISION, created_at=NOW - timedelta(days=5))
    add_revision(store, "q2", NOW - timedelta(days=1))

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert [r.quote_id for r in result.items] == ["q2"]
    assert [(d.quote_id, d.reason) for d in result.dropped] == [("q1", DropReason.REVISION_EVENT_MISSING)]


@pytest.mark.asyncio
async def test_pending_revisions_drops_orphaned_quote(store, partner):
    add_quote(store, "q1", REVISION, with_vehicle=False)
    add_revision(store, "q1", NOW)

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert result.items == []
    assert result.dropped[0].reason == DropReason.VEHICLE_UNRESOLVED


@pytest.mark.asyncio
async def test_pending_revisions_ignores_other_partners_and_statuses(store, partner):
    add_quote(store, "mine", REVISION)
    add_revision(store, "mine", NOW)
    add_quote(store, "theirs", REVISION, partner_id=OTHER_PARTNER_ID)
    add_revision(store, "theirs", NOW)
    add_quote(store, "reviewing", QuoteStatus.ADMIN_REVIEW)

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert [r.quote_id for r in result.items] == ["mine"]


@pytest.mark.asyncio
async def test_pending_revisions_for_another_partner_is_denied_before_any_lookup(store, partner, mocker):
    list_quotes = mocker.spy(store, "list_quotes")

    with pytest.raises(AccessDeniedError):
        await PartnerPendingTimeRevisions(store, fixed_clock).run(partner, partner_id=OTHER_PARTNER_ID)

    list_quotes.assert_not_called()


@pytest.mark.asyncio
async def test_pending_revisions_rejects_specialist_role(store, specialist):
    with pytest.raises(AccessDeniedError):
        await PartnerPendingTimeRevisions(store, fixed_clock).run(specialist, partner_id=PARTNER_ID)


@pytest.mark.asyncio
async def test_admin_can_read_a_partner_queue(store, admin):
    add_quote(store, "q1", REVISION)
    add_revision(store, "q1", NOW)

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(admin, partner_id=PARTNER_ID)

    assert [r.quote_id for r in result.items] == ["q1"]


@pytest.mark.asyncio
async def test_store_failure_drops_only_the_affected_quote(store, partner, mocker):
    add_quote(store, "q1", REVISION)
    add_revision(store, "q1", NOW)
    add_quote(store, "q2", REVISION)
    add_revision(store, "q2", NOW)

    real_latest = store.latest_journal_event

    def flaky_latest(quote_id, action):
        if quote_id == "q1":
            raise StoreFailureError("latest_journal_event")
        return real_latest(quote_id, action)

    mocker.patch.object(store, "latest_journal_event", side_effect=flaky_latest)

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert [r.quote_id for r in result.items] == ["q2"]
    assert [(d.quote_id, d.reason) for d in result.dropped] == [("q1", DropReason.STORE_FAILURE)]


@pytest.mark.asyncio
async def test_malformed_revision_row_drops_only_the_affected_quote(store, partner, mocker):
    add_quote(store, "good", REVISION)
    add_revision(store, "good", NOW)
    add_quote(store, "bad", REVISION)

    real_latest = store.latest_journal_event
    bad_row = {
        "id": "rev-bad",
        "quote_id": "bad",
        "action": "revision_requested",
        "created_at": NOW.isoformat(),
        "comments": None,
        "specialist_id": None,
        "revision_requests": {"i": {"reason": "no days"}},
    }

    def latest_with_bad_row(quote_id, action):
        if quote_id == "bad":
            return parse_journal_event(bad_row)
        return real_latest(quote_id, action)

    mocker.patch.object(store, "latest_journal_event", side_effect=latest_with_bad_row)

    result = await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)

    assert [r.quote_id for r in result.items] == ["good"]
    assert [(d.quote_id, d.reason) for d in result.dropped] == [("bad", DropReason.MALFORMED_RECORD)]


@pytest.mark.asyncio
async def test_vehicle_without_client_drops_only_the_affected_quote(store, partner, mocker):
    add_quote(store, "good", QuoteStatus.ADMIN_REVIEW)
    add_quote(store, "bad", QuoteStatus.ADMIN_REVIEW)

    real_vehicle = store.get_vehicle_by_service_order

    def vehicle_lookup(service_order_id):
        if service_order_id == "so-bad":
            return Vehicle(**{"id": "veh-bad", "plate": "XYZ9A99", "model": "Uno", "client_id": None})
        return real_vehicle(service_order_id)

    mocker.patch.object(store, "get_vehicle_by_service_order", side_effect=vehicle_lookup)

    result = await PartnerInReview(store, fixed_clock).run(partner)

    assert [r.quote_id for r in result.items] == ["good"]
    assert [(d.quote_id, d.reason) for d in result.dropped] == [("bad", DropReason.MALFORMED_RECORD)]


@pytest.mark.asyncio
async def test_store_failure_on_the_quote_list_propagates(store, partner, mocker):
    mocker.patch.object(store, "list_quotes", side_effect=StoreFailureError("list_quotes"))

    with pytest.raises(StoreFailureError):
        await PartnerPendingTimeRevisions(store, fixed_clock).run(partner)


# ==================== PARTNER IN REVIEW ====================

@pytest.mark.asyncio
async def test_in_review_reference_timestamps_per_status(store, partner):
    add_quote(store, "sent", QuoteStatus.PENDING_ADMIN_APPROVAL, sent_to_admin_at=NOW - timedelta(days=4))
    add_quote(store, "updated", QuoteStatus.ADMIN_REVIEW, sent_to_admin_at=NOW - timedelta(days=9))
    add_partner_update(store, "updated", NOW - timedelta(hours=30), comments="Adjusted")
    add_quote(store, "revision", REVISION, sent_to_admin_at=NOW - timedelta(days=9))
    add_revision(store, "revision", NOW - timedelta(days=2), comments="Check item 2")
    add_quote(store, "approved", QuoteStatus.APPROVED)

    result = await PartnerInReview(store, fixed_clock).run(partner)
    by_id = {q.quote_id: q for q in result.items}

    assert set(by_id) == {"sent", "updated", "revision"}

    assert by_id["sent"].submitted_at == NOW - timedelta(days=4)
    assert by_id["sent"].waiting_days == 4
    assert by_id["sent"].has_time_revision is False
    assert by_id["sent"].partner_comments is None

    assert by_id["updated"].submitted_at == NOW - timedelta(hours=30)
    assert by_id["updated"].waiting_days == 1
    assert by_id["updated"].partner_comments == "Adjusted"
    assert by_id["updated"].revision_comments is None

    assert by_id["revision"].submitted_at == NOW - timedelta(days=2)
    assert by_id["revision"].has_time_revision is True
    assert by_id["revision"].revision_comments == "Check item 2"


@pytest.mark.asyncio
async def test_in_review_hides_revision_comments_once_partner_answered(store, partner):
    add_quote(store, "q1", QuoteStatus.ADMIN_REVIEW)
    add_revision(store, "q1", NOW - timedelta(days=3), comments="old request")
    add_partner_update(store, "q1", NOW - timedelta(days=1))

    result = await PartnerInReview(store, fixed_clock).run(partner)

    assert result.items[0].has_time_revision is False
    assert result.items[0].revision_comments is None


@pytest.mark.asyncio
async def test_in_review_revision_without_event_uses_quote_creation(store, partner):
    add_quote(store, "q1", REVISION, created_at=NOW - timedelta(days=6))

    result = await PartnerInReview(store, fixed_clock).run(partner)

    assert result.items[0].submitted_at == NOW - timedelta(days=6)
    assert result.items[0].waiting_days == 6


@pytest.mark.asyncio
async def test_in_review_reports_items_and_total(store, partner):
    add_quote(store, "q1", QuoteStatus.PENDING_ADMIN_APPROVAL, total_value="980.50")
    add_items(store, "q1", 1, 2)

    result = await PartnerInReview(store, fixed_clock).run(partner)

    assert result.items[0].items_count == 2
    assert result.items[0].total_value == Decimal("980.50")


@pytest.mark.asyncio
async def test_in_review_future_timestamp_is_not_clamped(store, partner):
    add_quote(store, "q1", QuoteStatus.PENDING_ADMIN_APPROVAL, sent_to_admin_at=NOW + timedelta(hours=2))

    result = await PartnerInReview(store, fixed_clock).run(partner)

    assert result.items[0].waiting_days == -1


# ==================== SPECIALIST PENDING REVIEW ====================

@pytest.mark.asyncio
async def test_pending_review_counts_past_rounds(store, specialist):
    t0 = NOW - timedelta(days=4)
    t1 = NOW - timedelta(hours=36)
    add_quote(store, "q3", QuoteStatus.ADMIN_REVIEW)
    add_items(store, "q3", 2, 4)
    add_revision(store, "q3", t0, comments="Too short")
    add_partner_update(store, "q3", t1, comments="Extended")

    result = await SpecialistPendingReview(store, fixed_clock).run(specialist)

    [review] = result.items
    assert review.quote_id == "q3"
    assert review.updated_at == t1
    assert review.waiting_days == 1
    assert review.revision_count == 1
    assert review.partner_name == "Oficina Central"
    assert review.client_name == "Ana Client"
    assert review.partner_comments == "Extended"
    assert review.last_revision_comments == "Too short"
    assert review.items_count == 2


@pytest.mark.asyncio
async def test_pending_review_excludes_quotes_never_updated_by_partner(store, specialist):
    add_quote(store, "q2", QuoteStatus.ADMIN_REVIEW, created_at=NOW - timedelta(days=400))

    result = await SpecialistPendingReview(store, fixed_clock).run(specialist)

    assert result.items == []
    assert [(d.quote_id, d.reason) for d in result.dropped] == [("q2", DropReason.PARTNER_UPDATE_MISSING)]


@pytest.mark.asyncio
async def test_pending_review_only_covers_assigned_clients(store, specialist):
    add_quote(store, "mine", QuoteStatus.ADMIN_REVIEW)
    add_partner_update(store, "mine", NOW - timedelta(days=1))
    add_quote(store, "other", QuoteStatus.ADMIN_REVIEW, client_id=OTHER_CLIENT_ID)
    add_partner_update(store, "other", NOW - timedelta(days=1))

    result = await SpecialistPendingReview(store, fixed_clock).run(specialist)

    assert [r.quote_id for r in result.items] == ["mine"]
    assert {(d.quote_id, d.reason) for d in result.dropped} == {("other", DropReason.NOT_ASSIGNED)}


@pytest.mark.asyncio
async def test_pending_review_sorted_oldest_waiting_first(store, specialist):
    for quote_id, days in [("fresh", 1), ("stale", 9), ("middle", 4)]:
        add_quote(store, quote_id, QuoteStatus.ADMIN_REVIEW)
        add_partner_update(store, quote_id, NOW - timedelta(days=days, hours=1))

    result = await SpecialistPendingReview(store, fixed_clock).run(specialist)

    assert [r.quote_id for r in result.items] == ["stale", "middle", "fresh"]
    assert [r.waiting_days for r in result.items] == [9, 4, 1]


@pytest.mark.asyncio
async def test_pending_review_without_assignments_skips_quote_lookup(store, mocker):
    lonely = Actor(user_id="specialist-9", role=Role.SPECIALIST)
    add_quote(store, "q1", QuoteStatus.ADMIN_REVIEW)
    add_partner_update(store, "q1", NOW)
    list_quotes = mocker.spy(store, "list_quotes")

    result = await SpecialistPendingReview(store, fixed_clock).run(lonely)

    assert result.items == []
    list_quotes.assert_not_called()


@pytest.mark.asyncio
async def test_pending_review_denies_other_specialist_queue(store, specialist):
    with pytest.raises(AccessDeniedError):
        await SpecialistPendingReview(store, fixed_clock).run(specialist, specialist_id="specialist-2")


@pytest.mark.asyncio
async def test_pending_review_denies_partners(store, partner):
    with pytest.raises(AccessDeniedError):
        await SpecialistPendingReview(store, fixed_clock).run(partner)


# ==================== SPECIALIST PENDING TIME APPROVAL ====================

@pytest.mark.asyncio
async def test_pending_time_approval_lists_approved_quotes_with_items(store, specialist):
    add_quote(store, "q1", QuoteStatus.APPROVED, total_value="820.50")
    store.add_item(
        QuoteItem(
            id="q1-item-0",
            quote_id="q1",
            description="Brake pads",
            quantity=Decimal("2"),
            unit_price=Decimal("150.25"),
            total_price=Decimal("300.50"),
            estimated_days=3,
        )
    )

    result = await SpecialistPendingTimeApproval(store, fixed_clock).run(specialist)

    assert result.dropped == []
    [quote] = result.items
    assert quote.quote_id == "q1"
    assert quote.status == QuoteStatus.APPROVED
    assert quote.total_value == Decimal("820.50")
    assert quote.partner_name == "Oficina Central"
    assert quote.client_name == "Ana Client"
    assert (quote.vehicle_plate, quote.vehicle_model, quote.vehicle_brand) == ("ABC1D23", "Strada", "Fiat")
    [item] = quote.items
    assert item.description == "Brake pads"
    assert item.quantity == Decimal("2")
    assert item.total_price == Decimal("300.50")
    assert item.estimated_days == 3


@pytest.mark.asyncio
async def test_pending_time_approval_newest_first_for_assigned_clients(store, specialist):
    add_quote(store, "older", QuoteStatus.APPROVED, created_at=NOW - timedelta(days=6))
    add_quote(store, "newer", QuoteStatus.APPROVED, created_at=NOW - timedelta(days=1))
    add_quote(store, "other", QuoteStatus.APPROVED, client_id=OTHER_CLIENT_ID)
    add_quote(store, "revising", REVISION)

    result = await SpecialistPendingTimeApproval(store, fixed_clock).run(specialist)

    assert [r.quote_id for r in result.items] == ["newer", "older"]
    assert [(d.quote_id, d.reason) for d in result.dropped] == [("other", DropReason.NOT_ASSIGNED)]


@pytest.mark.asyncio
async def test_pending_time_approval_without_assignments_skips_quote_lookup(store, mocker):
    lonely = Actor(user_id="specialist-9", role=Role.SPECIALIST)
    add_quote(store, "q1", QuoteStatus.APPROVED)
    list_quotes = mocker.spy(store, "list_quotes")

    result = await SpecialistPendingTimeApproval(store, fixed_clock).run(lonely)

    assert result.items == []
    list_quotes.assert_not_called()


@pytest.mark.asyncio
async def test_pending_time_approval_denies_partners(store, partner):
    with pytest.raises(AccessDeniedError):
        await SpecialistPendingTimeApproval(store, fixed_clock).run(partner)


# ==================== REVISION DETAILS ====================

@pytest.mark.asyncio
async def test_revision_details_merges_suggestions(store, partner):
    add_quote(store, "q1", REVISION)
    add_items(store, "q1", 3, 2)
    add_revision(store, "q1", NOW - timedelta(days=1), suggestions={"q1-item-0": (5, "parts delay")})

    details = await RevisionDetailsQuery(store).get(partner, "q1")

    assert details.quote.quote_number == "Q1"
    assert details.quote.client_name == "Ana Client"
    assert details.revision.specialist_name == "Carla Specialist"
    assert details.revision.comments == "Please review"
    assert set(details.revision.revision_requests) == {"q1-item-0"}
    assert [i.id for i in details.items] == ["q1-item-0", "q1-item-1"]
    assert details.items[0].has_suggestion is True
    assert details.items[0].suggested_days == 5
    assert details.items[0].suggestion_reason == "parts delay"
    assert details.items[1].has_suggestion is False


@pytest.mark.asyncio
async def test_revision_details_error_taxonomy(store, partner):
    add_quote(store, "theirs", REVISION, partner_id=OTHER_PARTNER_ID)
    add_quote(store, "reviewing", QuoteStatus.ADMIN_REVIEW)
    add_quote(store, "no-event", REVISION)
    add_quote(store, "orphan", REVISION, with_vehicle=False)
    query = RevisionDetailsQuery(store)

    with pytest.raises(NotFoundError):
        await query.get(partner, "missing")
    with pytest.raises(AccessDeniedError):
        await query.get(partner, "theirs")
    with pytest.raises(InvalidStateError):
        await query.get(partner, "reviewing")
    with pytest.raises(NotFoundError):
        await query.get(partner, "no-event")
    with pytest.raises(NotFoundError):
        await query.get(partner, "orphan")


@pytest.mark.asyncio
async def test_revision_details_propagates_item_store_failure(store, partner, mocker):
    add_quote(store, "q1", REVISION)
    add_revision(store, "q1", NOW)
    mocker.patch.object(store, "list_quote_items", side_effect=StoreFailureError("list_quote_items"))

    with pytest.raises(StoreFailureError):
        await RevisionDetailsQuery(store).get(partner, "q1")
