from typing import Iterable, List, Optional

from models import QuoteItem, RevisionRequestedEvent
from schemas import DisplayItem


def merge_suggestions(
    items: Iterable[QuoteItem], latest_revision: Optional[RevisionRequestedEvent]
) -> List[DisplayItem]:
    """
    Pair each quote item with the specialist's suggestion for it, if the latest
    revision request carries one. Items keep their input order.
    """
    suggestions = latest_revision.revision_requests if latest_revision else {}

    merged = []
    for item in items:
        suggestion = suggestions.get(item.id)
        merged.append(
            DisplayItem(
                id=item.id,
                description=item.description,
                estimated_days=item.estimated_days,
                has_suggestion=suggestion is not None,
                suggested_days=suggestion.suggested_days if suggestion else None,
                suggestion_reason=suggestion.reason if suggestion else None,
            )
        )
    return merged
