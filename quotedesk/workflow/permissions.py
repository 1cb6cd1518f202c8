"""Role based permission decisions for quotes.

Every check is a pure function of the quote, the acting user and (for file
operations) the file type. Checks return a ``Decision`` instead of a bare
boolean so that a denial always carries the message key shown to the user.
Unknown roles fall through every table and are denied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet

from quotedesk.domain.models import (
    ACTIVE_STATUSES,
    Actor,
    FileType,
    Quote,
    QuoteStatus,
    Role,
    same_party,
)
from quotedesk.errors import PermissionError as AppPermissionError


SUPPLIER_VISIBLE_STATUSES: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.PENDING, QuoteStatus.REJECTED, QuoteStatus.IN_PROGRESS}
)
SUPPLIER_EDITABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.IN_PROGRESS, QuoteStatus.REJECTED, QuoteStatus.SUPPLIER_QUOTED}
)
SUPPLIER_LOCKED_STATUSES: FrozenSet[QuoteStatus] = frozenset({QuoteStatus.SUPPLIER_QUOTED, QuoteStatus.QUOTED})

CUSTOMER_EDITABLE_FIELDS: FrozenSet[str] = frozenset({"title", "description", "customer_message", "urgent"})
QUOTER_EDITABLE_FIELDS: FrozenSet[str] = frozenset(
    {"title", "description", "quoter_message", "price", "currency", "valid_until", "urgent"}
)
ADMIN_EDITABLE_FIELDS: FrozenSet[str] = CUSTOMER_EDITABLE_FIELDS | QUOTER_EDITABLE_FIELDS


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def _unknown_role() -> Decision:
    return deny("unknown_role")


def is_customer_owner(quote: Quote, actor: Actor) -> bool:
    return same_party(quote.customer_id, actor.user_id)


def is_assigned_supplier(quote: Quote, actor: Actor) -> bool:
    return same_party(quote.supplier_id, actor.user_id)


def can_view(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        return ALLOW if is_customer_owner(quote, actor) else deny("customer_not_owner")
    if role == Role.SUPPLIER:
        if is_assigned_supplier(quote, actor) or quote.status in SUPPLIER_VISIBLE_STATUSES:
            return ALLOW
        return deny("supplier_not_assigned")
    if role in (Role.QUOTER, Role.ADMIN):
        return ALLOW
    return _unknown_role()


def can_edit(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        return ALLOW if is_customer_owner(quote, actor) else deny("customer_not_owner")
    if role == Role.SUPPLIER:
        if not is_assigned_supplier(quote, actor):
            return deny("supplier_not_assigned")
        return ALLOW if quote.status in SUPPLIER_EDITABLE_STATUSES else deny("status_locked")
    if role == Role.QUOTER:
        return ALLOW if quote.status in ACTIVE_STATUSES else deny("status_locked")
    if role == Role.ADMIN:
        return ALLOW
    return _unknown_role()


def editable_fields(actor: Actor) -> FrozenSet[str]:
    if actor.role == Role.CUSTOMER:
        return CUSTOMER_EDITABLE_FIELDS
    if actor.role == Role.QUOTER:
        return QUOTER_EDITABLE_FIELDS
    if actor.role == Role.ADMIN:
        return ADMIN_EDITABLE_FIELDS
    return frozenset()


def can_toggle_urgent(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        return ALLOW if is_customer_owner(quote, actor) else deny("customer_not_owner")
    if role == Role.SUPPLIER:
        return deny("role_not_allowed")
    if role in (Role.QUOTER, Role.ADMIN):
        return ALLOW
    return _unknown_role()


def can_delete_quote(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        return ALLOW if is_customer_owner(quote, actor) else deny("customer_not_owner")
    if role in (Role.SUPPLIER, Role.QUOTER):
        return deny("role_not_allowed")
    if role == Role.ADMIN:
        return ALLOW
    return _unknown_role()


def can_cancel(quote: Quote, actor: Actor) -> Decision:
    return can_delete_quote(quote, actor)


def can_reject(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        return deny("role_not_allowed")
    if role == Role.SUPPLIER:
        if not is_assigned_supplier(quote, actor):
            return deny("supplier_not_assigned")
    elif role not in (Role.QUOTER, Role.ADMIN):
        return _unknown_role()
    if quote.status not in ACTIVE_STATUSES:
        return deny("status_locked")
    return ALLOW


def can_assign_supplier(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role in (Role.QUOTER, Role.ADMIN):
        return ALLOW
    if role in (Role.CUSTOMER, Role.SUPPLIER):
        return deny("role_not_allowed")
    return _unknown_role()


def can_remove_supplier(quote: Quote, actor: Actor) -> Decision:
    return can_assign_supplier(quote, actor)


def can_assign_quoter(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.ADMIN:
        return ALLOW
    if role in (Role.CUSTOMER, Role.SUPPLIER, Role.QUOTER):
        return deny("role_not_allowed")
    return _unknown_role()


def upload_file_type(actor: Actor) -> FileType | None:
    """The attachment collection an actor's uploads land in."""
    if actor.role == Role.CUSTOMER:
        return FileType.CUSTOMER
    if actor.role == Role.SUPPLIER:
        return FileType.SUPPLIER
    if actor.role in (Role.QUOTER, Role.ADMIN):
        return FileType.QUOTER
    return None


def can_upload(quote: Quote, actor: Actor, file_type: FileType) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        if file_type != FileType.CUSTOMER:
            return deny("file_type_not_allowed")
        if not is_customer_owner(quote, actor):
            return deny("customer_not_owner")
        return ALLOW if quote.status == QuoteStatus.PENDING else deny("status_locked")
    if role == Role.SUPPLIER:
        if file_type != FileType.SUPPLIER:
            return deny("file_type_not_allowed")
        if quote.supplier_id is not None and not is_assigned_supplier(quote, actor):
            return deny("supplier_not_assigned")
        return ALLOW if quote.status in SUPPLIER_EDITABLE_STATUSES else deny("status_locked")
    if role in (Role.QUOTER, Role.ADMIN):
        if file_type != FileType.QUOTER:
            return deny("file_type_not_allowed")
        return ALLOW if quote.status in ACTIVE_STATUSES else deny("status_locked")
    return _unknown_role()


def can_confirm_supplier_quote(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role == Role.SUPPLIER:
        return ALLOW if is_assigned_supplier(quote, actor) else deny("supplier_not_assigned")
    if role in (Role.CUSTOMER, Role.QUOTER, Role.ADMIN):
        return deny("role_not_allowed")
    return _unknown_role()


def can_confirm_final_quote(quote: Quote, actor: Actor) -> Decision:
    role = actor.role
    if role in (Role.QUOTER, Role.ADMIN):
        return ALLOW
    if role in (Role.CUSTOMER, Role.SUPPLIER):
        return deny("role_not_allowed")
    return _unknown_role()


def can_delete_file(quote: Quote, actor: Actor, file_type: FileType) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        if file_type != FileType.CUSTOMER:
            return deny("file_type_not_allowed")
        if not is_customer_owner(quote, actor):
            return deny("customer_not_owner")
        return ALLOW if quote.status == QuoteStatus.PENDING else deny("status_locked")
    if role == Role.SUPPLIER:
        if file_type != FileType.SUPPLIER:
            return deny("file_type_not_allowed")
        if not is_assigned_supplier(quote, actor):
            return deny("supplier_not_assigned")
        if quote.quoter_files:
            return deny("final_quote_present")
        return deny("supplier_quote_locked") if quote.status in SUPPLIER_LOCKED_STATUSES else ALLOW
    if role == Role.QUOTER:
        return ALLOW if file_type == FileType.QUOTER else deny("file_type_not_allowed")
    if role == Role.ADMIN:
        if file_type == FileType.SUPPLIER and quote.status in SUPPLIER_LOCKED_STATUSES:
            return deny("supplier_quote_locked")
        return ALLOW
    return _unknown_role()


def can_download(quote: Quote, actor: Actor, file_type: FileType) -> Decision:
    role = actor.role
    if role == Role.CUSTOMER:
        if not is_customer_owner(quote, actor):
            return deny("customer_not_owner")
        if file_type == FileType.CUSTOMER:
            return ALLOW
        if file_type == FileType.QUOTER:
            return ALLOW if quote.status == QuoteStatus.QUOTED else deny("status_locked")
        return deny("file_type_not_allowed")
    if role == Role.SUPPLIER:
        assigned = is_assigned_supplier(quote, actor)
        if file_type == FileType.CUSTOMER:
            if assigned or quote.status == QuoteStatus.PENDING:
                return ALLOW
            return deny("supplier_not_assigned")
        if file_type == FileType.SUPPLIER:
            return ALLOW if assigned else deny("supplier_not_assigned")
        return deny("file_type_not_allowed")
    if role in (Role.QUOTER, Role.ADMIN):
        return ALLOW
    return _unknown_role()


def require(decision: Decision) -> None:
    if decision.allowed:
        return
    raise AppPermissionError(
        code="permission_denied",
        message_key=decision.reason or "permission_denied",
        http_status=403,
        critical=False,
        payload={"reason": decision.reason or "permission_denied"},
    )
