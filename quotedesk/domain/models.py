from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping


class QuoteStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUPPLIER_QUOTED = "supplier_quoted"
    REJECTED = "rejected"
    QUOTED = "quoted"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: object) -> "QuoteStatus | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


class Role(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    QUOTER = "quoter"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: object) -> "Role | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


class FileType(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    QUOTER = "quoter"

    @classmethod
    def parse(cls, value: object) -> "FileType | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None

    @property
    def collection(self) -> str:
        return f"{self.value}_files"


ACTIVE_STATUSES = frozenset({QuoteStatus.PENDING, QuoteStatus.IN_PROGRESS, QuoteStatus.SUPPLIER_QUOTED})


def party_id(reference: object) -> str | None:
    """Resolve a party reference (raw id, mapping or object) to a plain id string."""
    if reference is None:
        return None
    if isinstance(reference, Mapping):
        reference = reference.get("id", reference.get("_id"))
    elif not isinstance(reference, (str, int)):
        reference = getattr(reference, "id", None)
    if reference is None or isinstance(reference, bool):
        return None
    value = str(reference).strip()
    return value or None


def same_party(left: object, right: object) -> bool:
    left_id = party_id(left)
    return left_id is not None and left_id == party_id(right)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of one request."""

    user_id: str
    role: Role | None
    email: str | None = None
    name: str | None = None

    @property
    def id(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class QuoteFile:
    stored_name: str
    display_name: str
    size: int
    uploaded_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stored_name": self.stored_name,
            "display_name": self.display_name,
            "size": self.size,
            "uploaded_at": self.uploaded_at,
        }


@dataclass(frozen=True)
class Quote:
    id: int | None
    quote_number: str
    customer_id: str
    title: str
    status: QuoteStatus = QuoteStatus.PENDING
    quoter_id: str | None = None
    supplier_id: str | None = None
    description: str = ""
    customer_message: str = ""
    quoter_message: str = ""
    reject_reason: str | None = None
    price: float | None = None
    currency: str = "CNY"
    valid_until: str | None = None
    urgent: bool = False
    customer_files: tuple[QuoteFile, ...] = field(default_factory=tuple)
    supplier_files: tuple[QuoteFile, ...] = field(default_factory=tuple)
    quoter_files: tuple[QuoteFile, ...] = field(default_factory=tuple)
    revision: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    def files(self, file_type: FileType) -> tuple[QuoteFile, ...]:
        return getattr(self, file_type.collection)

    def has_files(self, file_type: FileType) -> bool:
        return bool(self.files(file_type))

    def with_files(self, file_type: FileType, files) -> "Quote":
        return replace(self, **{file_type.collection: tuple(files)})

    def all_files(self) -> List[QuoteFile]:
        return [*self.customer_files, *self.supplier_files, *self.quoter_files]

    def to_dict(self, parties: Mapping[str, Any] | None = None) -> Dict[str, Any]:
        parties = parties or {}
        return {
            "id": self.id,
            "quote_number": self.quote_number,
            "customer": parties.get("customer") or _bare_party(self.customer_id),
            "quoter": parties.get("quoter") or _bare_party(self.quoter_id),
            "supplier": parties.get("supplier") or _bare_party(self.supplier_id),
            "title": self.title,
            "description": self.description,
            "customer_message": self.customer_message,
            "quoter_message": self.quoter_message,
            "reject_reason": self.reject_reason,
            "price": self.price,
            "currency": self.currency,
            "valid_until": self.valid_until,
            "urgent": self.urgent,
            "status": self.status.value,
            "customer_files": [item.to_dict() for item in self.customer_files],
            "supplier_files": [item.to_dict() for item in self.supplier_files],
            "quoter_files": [item.to_dict() for item in self.quoter_files],
            "revision": self.revision,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _bare_party(reference: str | None) -> Dict[str, Any] | None:
    if reference is None:
        return None
    return {"id": reference}


def invariant_violations(quote: Quote) -> List[str]:
    violations: List[str] = []
    has_reason = bool((quote.reject_reason or "").strip())
    if (quote.status == QuoteStatus.REJECTED) != has_reason:
        violations.append("reject_reason_mismatch")
    if quote.status == QuoteStatus.SUPPLIER_QUOTED and not quote.supplier_files:
        violations.append("supplier_files_required")
    if quote.status == QuoteStatus.QUOTED and not quote.quoter_files:
        violations.append("quoter_files_required")
    if not party_id(quote.customer_id):
        violations.append("customer_required")
    return violations
