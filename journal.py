import logging
from typing import Iterable, NamedTuple, Optional

from models import JournalAction, JournalEvent, PartnerUpdatedEvent, RevisionRequestedEvent
from store import RecordStore

logger = logging.getLogger(__name__)


class JournalSnapshot(NamedTuple):
    """Latest negotiation events of a quote, one per kind the deriver cares about."""
    latest_revision: Optional[RevisionRequestedEvent]
    latest_partner_update: Optional[PartnerUpdatedEvent]


class JournalReader:
    """
    Read side of the quote_time_reviews journal.

    The current state of an action kind is its most recent event. When two events
    share a created_at, the one with the greatest id wins.
    """

    def __init__(self, store: RecordStore):
        self._store = store

    def latest_event(self, quote_id: str, action: JournalAction) -> Optional[JournalEvent]:
        event = self._store.latest_journal_event(quote_id, JournalAction(action))
        if event is None:
            logger.debug("No %s event for quote %s", JournalAction(action).value, quote_id)
        return event

    def latest_revision(self, quote_id: str) -> Optional[RevisionRequestedEvent]:
        return self.latest_event(quote_id, JournalAction.REVISION_REQUESTED)

    def latest_partner_update(self, quote_id: str) -> Optional[PartnerUpdatedEvent]:
        return self.latest_event(quote_id, JournalAction.PARTNER_UPDATED)

    def event_count(self, quote_id: str, actions: Iterable[JournalAction]) -> int:
        actions = {JournalAction(a) for a in actions}
        if not actions:
            return 0
        return self._store.count_journal_events(quote_id, actions)

    def snapshot(self, quote_id: str) -> JournalSnapshot:
        return JournalSnapshot(
            latest_revision=self.latest_revision(quote_id),
            latest_partner_update=self.latest_partner_update(quote_id),
        )
