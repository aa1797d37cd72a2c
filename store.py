"""
Record store adapters.

The negotiation engine only talks to the RecordStore protocol. SupabaseRecordStore
is the production adapter; InMemoryRecordStore backs tests and local runs.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

import httpx
from postgrest.exceptions import APIError
from pydantic import TypeAdapter
from supabase import Client

from errors import StoreFailureError
from models import (
    JournalAction,
    JournalEvent,
    Profile,
    Quote,
    QuoteItem,
    QuoteStatus,
    Vehicle,
)

logger = logging.getLogger(__name__)

_journal_event_adapter = TypeAdapter(JournalEvent)


class RecordStore(Protocol):
    def get_quote(self, quote_id: str) -> Optional[Quote]: ...

    def list_quotes(
        self, statuses: Iterable[QuoteStatus], partner_id: Optional[str] = None
    ) -> List[Quote]: ...

    def get_vehicle_by_service_order(self, service_order_id: str) -> Optional[Vehicle]: ...

    def get_profile(self, profile_id: str) -> Optional[Profile]: ...

    def list_quote_items(self, quote_id: str) -> List[QuoteItem]: ...

    def count_quote_items(self, quote_id: str) -> int: ...

    def latest_journal_event(self, quote_id: str, action: JournalAction) -> Optional[JournalEvent]: ...

    def count_journal_events(self, quote_id: str, actions: Iterable[JournalAction]) -> int: ...

    def list_client_ids_for_specialist(self, specialist_id: str) -> List[str]: ...

    def append_journal_event(self, event: JournalEvent) -> JournalEvent: ...

    def update_quote_status(self, quote_id: str, status: QuoteStatus) -> None: ...

    def update_quote_item_days(self, item_id: str, estimated_days: int) -> None: ...


def parse_journal_event(row: dict) -> JournalEvent:
    return _journal_event_adapter.validate_python(row)


# ==================== SUPABASE ====================

class SupabaseRecordStore:
    """RecordStore backed by the Supabase tables of the marketplace."""

    def __init__(self, client: Client):
        self._client = client

    def _execute(self, operation: str, query):
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error("Supabase %s failed: %s", operation, e)
            raise StoreFailureError(operation, e) from e

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        response = self._execute(
            "get_quote",
            self._client.table("quotes")
            .select("id, status, total_value, partner_id, service_order_id, created_at, sent_to_admin_at")
            .eq("id", quote_id)
            .limit(1),
        )
        if not response.data:
            return None
        return Quote(**response.data[0])

    def list_quotes(self, statuses, partner_id=None) -> List[Quote]:
        query = (
            self._client.table("quotes")
            .select("id, status, total_value, partner_id, service_order_id, created_at, sent_to_admin_at")
            .in_("status", [QuoteStatus(s).value for s in statuses])
        )
        if partner_id is not None:
            query = query.eq("partner_id", partner_id)
        response = self._execute("list_quotes", query.order("created_at"))
        return [Quote(**row) for row in response.data or []]

    def get_vehicle_by_service_order(self, service_order_id: str) -> Optional[Vehicle]:
        order_response = self._execute(
            "get_service_order",
            self._client.table("service_orders").select("vehicle_id").eq("id", service_order_id).limit(1),
        )
        if not order_response.data:
            logger.debug("Service order %s not found", service_order_id)
            return None

        vehicle_id = order_response.data[0]["vehicle_id"]
        vehicle_response = self._execute(
            "get_vehicle",
            self._client.table("vehicles").select("id, plate, model, brand, client_id").eq("id", vehicle_id).limit(1),
        )
        if not vehicle_response.data:
            logger.debug("Vehicle %s for service order %s not found", vehicle_id, service_order_id)
            return None
        return Vehicle(**vehicle_response.data[0])

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        response = self._execute(
            "get_profile",
            self._client.table("profiles").select("id, full_name").eq("id", profile_id).limit(1),
        )
        if not response.data:
            return None
        return Profile(**response.data[0])

    def list_quote_items(self, quote_id: str) -> List[QuoteItem]:
        response = self._execute(
            "list_quote_items",
            self._client.table("quote_items")
            .select("id, quote_id, description, quantity, unit_price, total_price, estimated_days, created_at")
            .eq("quote_id", quote_id)
            .order("created_at"),
        )
        return [QuoteItem(**row) for row in response.data or []]

    def count_quote_items(self, quote_id: str) -> int:
        response = self._execute(
            "count_quote_items",
            self._client.table("quote_items").select("id", count="exact", head=True).eq("quote_id", quote_id),
        )
        return response.count or 0

    def latest_journal_event(self, quote_id: str, action: JournalAction) -> Optional[JournalEvent]:
        # id breaks created_at ties so the same row always wins
        response = self._execute(
            "latest_journal_event",
            self._client.table("quote_time_reviews")
            .select("id, quote_id, action, created_at, comments, specialist_id, revision_requests")
            .eq("quote_id", quote_id)
            .eq("action", JournalAction(action).value)
            .order("created_at", desc=True)
            .order("id", desc=True)
            .limit(1),
        )
        if not response.data:
            return None
        return parse_journal_event(response.data[0])

    def count_journal_events(self, quote_id: str, actions) -> int:
        response = self._execute(
            "count_journal_events",
            self._client.table("quote_time_reviews")
            .select("id", count="exact", head=True)
            .eq("quote_id", quote_id)
            .in_("action", [JournalAction(a).value for a in actions]),
        )
        return response.count or 0

    def list_client_ids_for_specialist(self, specialist_id: str) -> List[str]:
        response = self._execute(
            "list_client_ids_for_specialist",
            self._client.table("client_specialists").select("client_id").eq("specialist_id", specialist_id),
        )
        return [row["client_id"] for row in response.data or []]

    def append_journal_event(self, event: JournalEvent) -> JournalEvent:
        payload = event.model_dump(mode="json")
        response = self._execute(
            "append_journal_event",
            self._client.table("quote_time_reviews").insert(payload),
        )
        if not response.data:
            raise StoreFailureError("append_journal_event")
        return parse_journal_event(response.data[0])

    def update_quote_status(self, quote_id: str, status: QuoteStatus) -> None:
        self._execute(
            "update_quote_status",
            self._client.table("quotes").update({"status": QuoteStatus(status).value}).eq("id", quote_id),
        )

    def update_quote_item_days(self, item_id: str, estimated_days: int) -> None:
        self._execute(
            "update_quote_item_days",
            self._client.table("quote_items").update({"estimated_days": estimated_days}).eq("id", item_id),
        )


# ==================== IN-MEMORY ====================

class InMemoryRecordStore:
    """Dictionary-backed RecordStore with the same ordering rules as the Supabase adapter."""

    def __init__(self) -> None:
        self.quotes: Dict[str, Quote] = {}
        self.items: Dict[str, QuoteItem] = {}
        self.events: List[JournalEvent] = []
        self.service_orders: Dict[str, str] = {}
        self.vehicles: Dict[str, Vehicle] = {}
        self.profiles: Dict[str, Profile] = {}
        self.assignments: Set[Tuple[str, str]] = set()

    # Seeding helpers

    def add_quote(self, quote: Quote) -> Quote:
        self.quotes[quote.id] = quote
        return quote

    def add_item(self, item: QuoteItem) -> QuoteItem:
        self.items[item.id] = item
        return item

    def add_event(self, event: JournalEvent) -> JournalEvent:
        self.events.append(event)
        return event

    def add_vehicle(self, vehicle: Vehicle, service_order_id: str) -> Vehicle:
        self.vehicles[vehicle.id] = vehicle
        self.service_orders[service_order_id] = vehicle.id
        return vehicle

    def add_profile(self, profile: Profile) -> Profile:
        self.profiles[profile.id] = profile
        return profile

    def assign_specialist(self, specialist_id: str, client_id: str) -> None:
        self.assignments.add((specialist_id, client_id))

    # RecordStore

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        quote = self.quotes.get(quote_id)
        return quote.model_copy() if quote else None

    def list_quotes(self, statuses, partner_id=None) -> List[Quote]:
        wanted = {QuoteStatus(s) for s in statuses}
        quotes = [
            q.model_copy()
            for q in self.quotes.values()
            if q.status in wanted and (partner_id is None or q.partner_id == partner_id)
        ]
        return sorted(quotes, key=lambda q: q.created_at)

    def get_vehicle_by_service_order(self, service_order_id: str) -> Optional[Vehicle]:
        vehicle_id = self.service_orders.get(service_order_id)
        if vehicle_id is None or vehicle_id not in self.vehicles:
            return None
        return self.vehicles[vehicle_id].model_copy()

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        profile = self.profiles.get(profile_id)
        return profile.model_copy() if profile else None

    def list_quote_items(self, quote_id: str) -> List[QuoteItem]:
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        items = [i.model_copy() for i in self.items.values() if i.quote_id == quote_id]
        return sorted(items, key=lambda i: i.created_at or epoch)

    def count_quote_items(self, quote_id: str) -> int:
        return sum(1 for i in self.items.values() if i.quote_id == quote_id)

    def latest_journal_event(self, quote_id: str, action: JournalAction) -> Optional[JournalEvent]:
        action = JournalAction(action).value
        matching = [e for e in self.events if e.quote_id == quote_id and e.action == action]
        if not matching:
            return None
        return max(matching, key=lambda e: (e.created_at, e.id)).model_copy(deep=True)

    def count_journal_events(self, quote_id: str, actions) -> int:
        wanted = {JournalAction(a).value for a in actions}
        return sum(1 for e in self.events if e.quote_id == quote_id and e.action in wanted)

    def list_client_ids_for_specialist(self, specialist_id: str) -> List[str]:
        return sorted(client for specialist, client in self.assignments if specialist == specialist_id)

    def append_journal_event(self, event: JournalEvent) -> JournalEvent:
        self.events.append(event)
        return event.model_copy(deep=True)

    def update_quote_status(self, quote_id: str, status: QuoteStatus) -> None:
        self.quotes[quote_id] = self.quotes[quote_id].model_copy(update={"status": QuoteStatus(status)})

    def update_quote_item_days(self, item_id: str, estimated_days: int) -> None:
        self.items[item_id] = self.items[item_id].model_copy(update={"estimated_days": estimated_days})
