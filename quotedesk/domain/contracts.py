from __future__ import annotations

from dataclasses import dataclass, field
from typing import IO, Any, Dict, List

from quotedesk.domain.models import FileType, QuoteStatus


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    stream: IO[bytes]
    size: int
    content_type: str | None = None


@dataclass(frozen=True)
class QuoteCreateInput:
    title: str | None
    description: str | None
    customer_message: str | None
    urgent: bool = False


@dataclass(frozen=True)
class QuoteUpdateInput:
    fields: Dict[str, Any] = field(default_factory=dict)
    deletions: Dict[FileType, List[int]] = field(default_factory=dict)
    confirmed: bool = False


@dataclass(frozen=True)
class QuoteListInput:
    status: QuoteStatus | None = None
    page: int = 1
    page_size: int = 20
    sort: str = "-created_at"


@dataclass(frozen=True)
class AuthLoginInput:
    email: str
    password: str


@dataclass(frozen=True)
class AuthRegisterInput:
    email: str
    password: str
    name: str | None
    company: str | None
    phone: str | None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class GroupInput:
    name: str | None
    description: str | None = None
    color: str | None = None
    is_active: bool | None = None
