from __future__ import annotations

from typing import Any, Dict, Mapping

from quotedesk.domain.models import Actor, Quote, QuoteStatus, Role


CUSTOMER_HIDDEN_FIELDS = ("quoter", "supplier", "supplier_files")
SUPPLIER_HIDDEN_FIELDS = ("customer", "quoter", "quoter_files")
NOTIFICATION_HIDDEN_FIELDS = ("customer", "customer_message")


def project_quote(
    quote: Quote,
    actor: Actor,
    parties: Mapping[str, Any] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> Dict[str, Any]:
    """Serialize a quote the actor is already authorized to read, minus the fields their role never sees."""
    data = quote.to_dict(parties)
    if extra:
        data.update(extra)
    role = actor.role
    if role == Role.CUSTOMER:
        for key in CUSTOMER_HIDDEN_FIELDS:
            data.pop(key, None)
        if quote.status != QuoteStatus.QUOTED:
            data.pop("quoter_files", None)
    elif role == Role.SUPPLIER:
        for key in SUPPLIER_HIDDEN_FIELDS:
            data.pop(key, None)
    elif role not in (Role.QUOTER, Role.ADMIN):
        return {"id": quote.id, "quote_number": quote.quote_number}
    return data


def sanitize_for_notification(quote: Quote, parties: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Snapshot for mails addressed to suppliers and quoters; never carries customer identity."""
    data = quote.to_dict(parties)
    for key in NOTIFICATION_HIDDEN_FIELDS:
        data.pop(key, None)
    return data
