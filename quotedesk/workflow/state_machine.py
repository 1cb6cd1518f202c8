from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Sequence, Tuple

from quotedesk.domain.models import (
    FileType,
    Quote,
    QuoteFile,
    QuoteStatus,
    invariant_violations,
    party_id,
)
from quotedesk.errors import ValidationError


class Trigger(str, Enum):
    EDIT = "edit"
    TOGGLE_URGENT = "toggle_urgent"
    ASSIGN_SUPPLIER = "assign_supplier"
    REMOVE_SUPPLIER = "remove_supplier"
    ASSIGN_QUOTER = "assign_quoter"
    UPLOAD_CUSTOMER_FILE = "upload_customer_file"
    UPLOAD_SUPPLIER_FILE = "upload_supplier_file"
    UPLOAD_QUOTER_FILE = "upload_quoter_file"
    CONFIRM_SUPPLIER_QUOTE = "confirm_supplier_quote"
    CONFIRM_FINAL_QUOTE = "confirm_final_quote"
    REJECT = "reject"
    DELETE_CUSTOMER_FILE = "delete_customer_file"
    DELETE_SUPPLIER_FILE = "delete_supplier_file"
    DELETE_QUOTER_FILE = "delete_quoter_file"
    CANCEL = "cancel"
    DELETE = "delete"


_S = QuoteStatus
_ALL = frozenset(QuoteStatus)
_NOT_CANCELLED = _ALL - {_S.CANCELLED}


TRANSITIONS: Dict[Trigger, FrozenSet[QuoteStatus]] = {
    Trigger.EDIT: _NOT_CANCELLED,
    Trigger.TOGGLE_URGENT: _ALL,
    Trigger.ASSIGN_SUPPLIER: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.REJECTED}),
    Trigger.REMOVE_SUPPLIER: frozenset({_S.PENDING, _S.IN_PROGRESS}),
    Trigger.ASSIGN_QUOTER: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.SUPPLIER_QUOTED, _S.REJECTED}),
    Trigger.UPLOAD_CUSTOMER_FILE: frozenset({_S.PENDING}),
    Trigger.UPLOAD_SUPPLIER_FILE: frozenset({_S.IN_PROGRESS, _S.REJECTED, _S.SUPPLIER_QUOTED}),
    Trigger.UPLOAD_QUOTER_FILE: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.SUPPLIER_QUOTED}),
    Trigger.CONFIRM_SUPPLIER_QUOTE: frozenset({_S.IN_PROGRESS, _S.REJECTED}),
    Trigger.CONFIRM_FINAL_QUOTE: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.SUPPLIER_QUOTED}),
    Trigger.REJECT: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.SUPPLIER_QUOTED}),
    Trigger.DELETE_CUSTOMER_FILE: _NOT_CANCELLED,
    Trigger.DELETE_SUPPLIER_FILE: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.REJECTED}),
    Trigger.DELETE_QUOTER_FILE: _NOT_CANCELLED,
    Trigger.CANCEL: frozenset({_S.PENDING, _S.IN_PROGRESS, _S.SUPPLIER_QUOTED, _S.REJECTED}),
    Trigger.DELETE: _ALL,
}


UPLOAD_TRIGGERS: Dict[FileType, Trigger] = {
    FileType.CUSTOMER: Trigger.UPLOAD_CUSTOMER_FILE,
    FileType.SUPPLIER: Trigger.UPLOAD_SUPPLIER_FILE,
    FileType.QUOTER: Trigger.UPLOAD_QUOTER_FILE,
}

DELETE_FILE_TRIGGERS: Dict[FileType, Trigger] = {
    FileType.CUSTOMER: Trigger.DELETE_CUSTOMER_FILE,
    FileType.SUPPLIER: Trigger.DELETE_SUPPLIER_FILE,
    FileType.QUOTER: Trigger.DELETE_QUOTER_FILE,
}


def allowed_triggers(status: QuoteStatus | None) -> List[Trigger]:
    if status is None:
        return []
    return [trigger for trigger in Trigger if status in TRANSITIONS[trigger]]


def is_allowed(status: QuoteStatus | None, trigger: Trigger) -> bool:
    return status is not None and status in TRANSITIONS.get(trigger, frozenset())


def ensure_allowed(quote: Quote, trigger: Trigger) -> None:
    if is_allowed(quote.status, trigger):
        return
    raise ValidationError(
        code="action_not_allowed_for_status",
        message_key="action_not_allowed_for_status",
        http_status=409,
        payload={
            "status": quote.status.value,
            "action": trigger.value,
            "allowed_actions": [item.value for item in allowed_triggers(quote.status)],
        },
    )


def check_invariants(quote: Quote) -> Quote:
    violations = invariant_violations(quote)
    if violations:
        raise ValidationError(
            code="invariant_violation",
            message_key=violations[0] if violations[0].endswith("_files_required") else "invariant_violation",
            http_status=409,
            payload={"violations": violations},
        )
    return quote


def _clean_reason(reason: object) -> str:
    return str(reason or "").strip()


def assign_supplier(quote: Quote, supplier_id: object) -> Quote:
    ensure_allowed(quote, Trigger.ASSIGN_SUPPLIER)
    supplier = party_id(supplier_id)
    if not supplier:
        raise ValidationError(code="supplier_id_required", http_status=400)
    return check_invariants(
        replace(quote, supplier_id=supplier, status=QuoteStatus.IN_PROGRESS, reject_reason=None)
    )


def remove_supplier(quote: Quote) -> Quote:
    ensure_allowed(quote, Trigger.REMOVE_SUPPLIER)
    return check_invariants(replace(quote, supplier_id=None, status=QuoteStatus.PENDING))


def assign_quoter(quote: Quote, quoter_id: object) -> Quote:
    ensure_allowed(quote, Trigger.ASSIGN_QUOTER)
    quoter = party_id(quoter_id)
    if not quoter:
        raise ValidationError(code="quoter_id_required", http_status=400)
    return check_invariants(replace(quote, quoter_id=quoter))


def add_files(quote: Quote, file_type: FileType, files: Sequence[QuoteFile], actor_id: object) -> Quote:
    """Append uploaded attachments and apply the uploader's side effects."""
    ensure_allowed(quote, UPLOAD_TRIGGERS[file_type])
    if not files:
        raise ValidationError(code="files_required", http_status=400)
    updated = quote.with_files(file_type, [*quote.files(file_type), *files])
    if file_type == FileType.SUPPLIER:
        status = QuoteStatus.IN_PROGRESS if quote.status == QuoteStatus.REJECTED else quote.status
        updated = replace(
            updated,
            status=status,
            reject_reason=None,
            supplier_id=quote.supplier_id or party_id(actor_id),
        )
    elif file_type == FileType.QUOTER:
        updated = replace(updated, reject_reason=None, quoter_id=party_id(actor_id))
    return check_invariants(updated)


def confirm_supplier_quote(quote: Quote) -> Quote:
    ensure_allowed(quote, Trigger.CONFIRM_SUPPLIER_QUOTE)
    if not quote.supplier_files:
        raise ValidationError(code="supplier_files_required", http_status=400)
    return check_invariants(replace(quote, status=QuoteStatus.SUPPLIER_QUOTED, reject_reason=None))


def confirm_final_quote(quote: Quote) -> Quote:
    ensure_allowed(quote, Trigger.CONFIRM_FINAL_QUOTE)
    if not quote.quoter_files:
        raise ValidationError(code="quoter_files_required", http_status=400)
    return check_invariants(replace(quote, status=QuoteStatus.QUOTED))


def reject(quote: Quote, reason: object, quoter_id: object | None = None) -> Quote:
    ensure_allowed(quote, Trigger.REJECT)
    cleaned = _clean_reason(reason)
    if not cleaned:
        raise ValidationError(code="reject_reason_required", http_status=400)
    updated = replace(quote, status=QuoteStatus.REJECTED, reject_reason=cleaned)
    if quoter_id is not None:
        updated = replace(updated, quoter_id=party_id(quoter_id))
    return check_invariants(updated)


def cancel(quote: Quote) -> Quote:
    ensure_allowed(quote, Trigger.CANCEL)
    return check_invariants(replace(quote, status=QuoteStatus.CANCELLED, reject_reason=None))


def ensure_deletable(quote: Quote) -> None:
    ensure_allowed(quote, Trigger.DELETE)


def _split_files(
    files: Sequence[QuoteFile], indexes: Iterable[int]
) -> Tuple[List[QuoteFile], List[QuoteFile]]:
    wanted = set()
    for raw in indexes:
        try:
            index = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(code="file_index_invalid", http_status=400) from None
        if index < 0 or index >= len(files):
            raise ValidationError(code="file_index_invalid", http_status=400, payload={"index": index})
        wanted.add(index)
    kept = [item for idx, item in enumerate(files) if idx not in wanted]
    removed = [item for idx, item in enumerate(files) if idx in wanted]
    return kept, removed


def remove_files(quote: Quote, file_type: FileType, indexes: Iterable[int]) -> Tuple[Quote, List[QuoteFile]]:
    """Drop attachments by index and rewind the status where the file type demands it.

    Returns the updated quote and the removed entries, whose blobs the caller
    deletes once the update is committed.
    """
    ensure_allowed(quote, DELETE_FILE_TRIGGERS[file_type])
    kept, removed = _split_files(quote.files(file_type), indexes)
    if not removed:
        return quote, []
    updated = quote.with_files(file_type, kept)
    if file_type == FileType.SUPPLIER:
        if updated.quoter_files:
            status = QuoteStatus.QUOTED
        elif updated.supplier_id:
            status = QuoteStatus.IN_PROGRESS
        else:
            status = QuoteStatus.PENDING
        updated = replace(updated, status=status, reject_reason=None)
    elif file_type == FileType.QUOTER:
        status = QuoteStatus.SUPPLIER_QUOTED if updated.supplier_files else QuoteStatus.PENDING
        updated = replace(updated, status=status, quoter_id=None, reject_reason=None)
    return check_invariants(updated), removed


def transition_table() -> Dict[str, List[str]]:
    return {
        trigger.value: sorted(status.value for status in TRANSITIONS[trigger])
        for trigger in Trigger
    }
