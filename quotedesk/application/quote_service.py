from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from quotedesk.application.notification_service import NotificationEvent, schedule_notification
from quotedesk.application.uploads import discard_blobs, store_uploads, validate_uploads
from quotedesk.db import integrity_errors
from quotedesk.domain.contracts import QuoteCreateInput, QuoteListInput, QuoteUpdateInput, UploadedFile
from quotedesk.domain.models import Actor, FileType, Quote, QuoteFile, QuoteStatus, Role
from quotedesk.errors import ConflictError, NotFoundError, ValidationError
from quotedesk.errors import PermissionError as AppPermissionError
from quotedesk.infrastructure.file_store import LocalFileStore
from quotedesk.infrastructure.repositories.quote_repository import SORTABLE_COLUMNS, QuoteRepository
from quotedesk.infrastructure.repositories.status_event_repository import StatusEventRepository
from quotedesk.infrastructure.repositories.user_repository import UserRepository
from quotedesk.workflow import permissions
from quotedesk.workflow import state_machine
from quotedesk.workflow.projection import project_quote
from quotedesk.workflow.state_machine import Trigger
from quotedesk.workflow.status_display import flow_meta


logger = logging.getLogger(__name__)

Mutation = Callable[[Quote], Quote]


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _clean_text(value: object) -> str:
    return str(value if value is not None else "").strip()


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _parse_price(value: object) -> float | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError(code="price_invalid", http_status=400) from None
    if price < 0:
        raise ValidationError(code="price_invalid", http_status=400)
    return price


def _parse_valid_until(value: object) -> str | None:
    raw = _clean_text(value)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10]).isoformat()
    except ValueError:
        raise ValidationError(code="valid_until_invalid", http_status=400) from None


class QuoteService:
    def __init__(
        self,
        file_store: LocalFileStore,
        *,
        quote_repository: QuoteRepository | None = None,
        user_repository: UserRepository | None = None,
        event_repository: StatusEventRepository | None = None,
        number_max_attempts: int = 5,
        update_max_attempts: int = 3,
        default_currency: str = "CNY",
        max_files: int = 10,
        max_file_bytes: int = 10 * 1024 * 1024,
        allowed_extensions: Iterable[str] = (".xlsx", ".xls"),
        max_page_size: int = 100,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.file_store = file_store
        self.quotes = quote_repository or QuoteRepository()
        self.users = user_repository or UserRepository()
        self.events = event_repository or StatusEventRepository()
        self.number_max_attempts = max(1, int(number_max_attempts))
        self.update_max_attempts = max(1, int(update_max_attempts))
        self.default_currency = default_currency
        self.max_files = int(max_files)
        self.max_file_bytes = int(max_file_bytes)
        self.allowed_extensions = tuple(allowed_extensions)
        self.max_page_size = max(1, int(max_page_size))
        self.today = today

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **overrides) -> "QuoteService":
        options: Dict[str, Any] = {
            "number_max_attempts": config.get("QUOTE_NUMBER_MAX_ATTEMPTS", 5),
            "update_max_attempts": config.get("QUOTE_UPDATE_MAX_ATTEMPTS", 3),
            "default_currency": config.get("QUOTE_DEFAULT_CURRENCY", "CNY"),
            "max_files": config.get("UPLOAD_MAX_FILES", 10),
            "max_file_bytes": config.get("UPLOAD_MAX_FILE_BYTES", 10 * 1024 * 1024),
            "allowed_extensions": config.get("UPLOAD_ALLOWED_EXTENSIONS", (".xlsx", ".xls")),
            "max_page_size": config.get("QUOTE_LIST_MAX_PAGE_SIZE", 100),
        }
        options.update(overrides)
        return cls(LocalFileStore(str(config["UPLOAD_DIR"])), **options)

    # Reads

    def load(self, db, quote_id: int) -> Quote:
        quote = self.quotes.get_by_id(db, quote_id)
        if quote is None:
            raise NotFoundError(code="quote_not_found", http_status=404, payload={"quote_id": quote_id})
        return quote

    def get_quote(self, db, actor: Actor, quote_id: int) -> Quote:
        quote = self.load(db, quote_id)
        permissions.require(permissions.can_view(quote, actor))
        return quote

    def list_quotes(self, db, actor: Actor, list_input: QuoteListInput) -> Dict[str, Any]:
        if actor.role is None:
            permissions.require(permissions.deny("unknown_role"))
        page = int(list_input.page)
        page_size = int(list_input.page_size)
        if page < 1 or page_size < 1 or page_size > self.max_page_size:
            raise ValidationError(
                code="page_invalid",
                http_status=400,
                payload={"max_page_size": self.max_page_size},
            )
        if list_input.sort.lstrip("-+") not in SORTABLE_COLUMNS:
            raise ValidationError(code="sort_invalid", http_status=400, payload={"sortable": sorted(SORTABLE_COLUMNS)})
        quotes, total = self.quotes.list_for_actor(
            db,
            actor,
            status=list_input.status,
            page=page,
            page_size=page_size,
            sort=list_input.sort,
        )
        parties = self._parties(db, quotes)
        return {
            "items": [self._serialize(quote, actor, parties) for quote in quotes],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    def serialize(self, db, actor: Actor, quote: Quote) -> Dict[str, Any]:
        return self._serialize(quote, actor, self._parties(db, [quote]))

    def history(self, db, actor: Actor, quote_id: int) -> List[Dict[str, Any]]:
        quote = self.get_quote(db, actor, quote_id)
        events = self.events.list_for_quote(db, int(quote.id))
        if actor.role in (Role.QUOTER, Role.ADMIN):
            return events
        for event in events:
            event.pop("actor_id", None)
        return events

    def get_file(self, db, actor: Actor, quote_id: int, file_type: FileType, index: int) -> QuoteFile:
        quote = self.load(db, quote_id)
        permissions.require(permissions.can_download(quote, actor, file_type))
        files = quote.files(file_type)
        if index < 0 or index >= len(files):
            raise NotFoundError(code="file_not_found", http_status=404, payload={"index": index})
        return files[index]

    def build_archive(self, db, actor: Actor, quote_id: int, file_type: FileType) -> Tuple[str, io.BytesIO]:
        quote = self.load(db, quote_id)
        permissions.require(permissions.can_download(quote, actor, file_type))
        files = quote.files(file_type)
        if not files:
            raise NotFoundError(code="file_not_found", http_status=404)
        buffer = io.BytesIO()
        used_names: Dict[str, int] = {}
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for item in files:
                with self.file_store.open(item.stored_name) as handle:
                    archive.writestr(self._unique_name(item.display_name, used_names), handle.read())
        buffer.seek(0)
        return f"{quote.quote_number}-{file_type.value}-files.zip", buffer

    # Writes

    def create_quote(
        self,
        db,
        actor: Actor,
        create_input: QuoteCreateInput,
        files: Sequence[UploadedFile],
    ) -> Quote:
        if actor.role != Role.CUSTOMER:
            permissions.require(permissions.deny("role_not_allowed" if actor.role else "unknown_role"))
        title = _clean_text(create_input.title)
        if not title:
            raise ValidationError(code="title_required", http_status=400)
        uploads = self._validated(files)
        if not uploads:
            raise ValidationError(code="files_required", http_status=400)

        stored = store_uploads(self.file_store, uploads)
        draft = Quote(
            id=None,
            quote_number="",
            customer_id=actor.user_id,
            title=title,
            description=_clean_text(create_input.description),
            customer_message=_clean_text(create_input.customer_message),
            urgent=bool(create_input.urgent),
            currency=self.default_currency,
            customer_files=tuple(stored),
        )
        state_machine.check_invariants(draft)
        try:
            quote_id = self._insert_with_number(db, actor, draft)
        except BaseException:
            discard_blobs(self.file_store, [item.stored_name for item in stored])
            raise
        created = self.load(db, quote_id)
        logger.info("quote_created", extra={"quote_id": quote_id, "quote_number": created.quote_number})
        schedule_notification(NotificationEvent.QUOTE_CREATED, quote_id)
        return created

    def update_quote(
        self,
        db,
        actor: Actor,
        quote_id: int,
        update_input: QuoteUpdateInput,
        files: Sequence[UploadedFile] = (),
    ) -> Quote:
        uploads = self._validated(files)
        if not update_input.fields and not update_input.deletions and not uploads:
            raise ValidationError(code="no_changes", http_status=400)
        if update_input.deletions and not update_input.confirmed:
            raise ValidationError(code="confirmation_required", http_status=400, payload={"action": "delete_file"})

        fields = self._normalize_fields(update_input.fields)
        removed: List[QuoteFile] = []
        stored: List[QuoteFile] = []

        def mutate(quote: Quote) -> Quote:
            removed.clear()
            updated = quote
            for file_type, indexes in update_input.deletions.items():
                permissions.require(permissions.can_delete_file(updated, actor, file_type))
                updated, dropped = state_machine.remove_files(updated, file_type, indexes)
                removed.extend(dropped)
            if stored:
                file_type = permissions.upload_file_type(actor)
                if file_type is None:
                    permissions.require(permissions.deny("unknown_role"))
                permissions.require(permissions.can_upload(updated, actor, file_type))
                updated = state_machine.add_files(updated, file_type, stored, actor.user_id)
            if fields:
                updated = self._apply_fields(updated, actor, fields)
            return updated

        if uploads:
            # Fail fast before any blob is written.
            current = self.get_quote(db, actor, quote_id)
            file_type = permissions.upload_file_type(actor)
            permissions.require(
                permissions.can_upload(current, actor, file_type) if file_type else permissions.deny("unknown_role")
            )
            stored.extend(store_uploads(self.file_store, uploads))
        try:
            updated = self._mutate(db, actor, quote_id, "update", mutate)
        except BaseException:
            discard_blobs(self.file_store, [item.stored_name for item in stored])
            raise
        discard_blobs(self.file_store, [item.stored_name for item in removed])
        return updated

    def reject(self, db, actor: Actor, quote_id: int, reason: object) -> Quote:
        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_reject(quote, actor))
            quoter_id = actor.user_id if actor.role == Role.QUOTER else None
            return state_machine.reject(quote, reason, quoter_id=quoter_id)

        return self._mutate(db, actor, quote_id, Trigger.REJECT.value, mutate, reason=_clean_text(reason))

    def assign_supplier(self, db, actor: Actor, quote_id: int, supplier_id: object) -> Quote:
        supplier = self._active_user(db, supplier_id, Role.SUPPLIER, "supplier_id_required", "supplier_invalid")

        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_assign_supplier(quote, actor))
            return state_machine.assign_supplier(quote, supplier["id"])

        updated = self._mutate(db, actor, quote_id, Trigger.ASSIGN_SUPPLIER.value, mutate)
        schedule_notification(NotificationEvent.SUPPLIER_ASSIGNED, updated.id)
        return updated

    def remove_supplier(self, db, actor: Actor, quote_id: int) -> Quote:
        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_remove_supplier(quote, actor))
            return state_machine.remove_supplier(quote)

        return self._mutate(db, actor, quote_id, Trigger.REMOVE_SUPPLIER.value, mutate)

    def assign_quoter(self, db, actor: Actor, quote_id: int, quoter_id: object) -> Quote:
        quoter = self._active_user(db, quoter_id, Role.QUOTER, "quoter_id_required", "quoter_invalid")

        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_assign_quoter(quote, actor))
            return state_machine.assign_quoter(quote, quoter["id"])

        return self._mutate(db, actor, quote_id, Trigger.ASSIGN_QUOTER.value, mutate)

    def confirm_supplier_quote(self, db, actor: Actor, quote_id: int) -> Quote:
        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_confirm_supplier_quote(quote, actor))
            return state_machine.confirm_supplier_quote(quote)

        updated = self._mutate(db, actor, quote_id, Trigger.CONFIRM_SUPPLIER_QUOTE.value, mutate)
        schedule_notification(NotificationEvent.SUPPLIER_QUOTED, updated.id)
        return updated

    def confirm_final_quote(self, db, actor: Actor, quote_id: int) -> Quote:
        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_confirm_final_quote(quote, actor))
            return state_machine.confirm_final_quote(quote)

        updated = self._mutate(db, actor, quote_id, Trigger.CONFIRM_FINAL_QUOTE.value, mutate)
        schedule_notification(NotificationEvent.FINAL_QUOTE, updated.id)
        return updated

    def cancel(self, db, actor: Actor, quote_id: int) -> Quote:
        def mutate(quote: Quote) -> Quote:
            permissions.require(permissions.can_cancel(quote, actor))
            return state_machine.cancel(quote)

        return self._mutate(db, actor, quote_id, Trigger.CANCEL.value, mutate)

    def delete_quote(self, db, actor: Actor, quote_id: int) -> Quote:
        quote = self.load(db, quote_id)
        permissions.require(permissions.can_delete_quote(quote, actor))
        state_machine.ensure_deletable(quote)
        with db.transaction():
            self.quotes.delete(db, int(quote.id))
        discard_blobs(self.file_store, [item.stored_name for item in quote.all_files()])
        logger.info("quote_deleted", extra={"quote_id": quote.id, "quote_number": quote.quote_number})
        return quote

    # Internals

    def _mutate(self, db, actor: Actor, quote_id: int, action: str, mutation: Mutation, reason: str | None = None) -> Quote:
        """Read, authorize, transition and compare-and-swap, repeating on a lost race."""
        for attempt in range(1, self.update_max_attempts + 1):
            current = self.load(db, quote_id)
            permissions.require(permissions.can_view(current, actor))
            updated = mutation(current)
            with db.transaction():
                swapped = self.quotes.compare_and_swap(db, updated, current.revision)
                if swapped:
                    self.events.add_event(
                        db,
                        quote_id=int(current.id),
                        action=action,
                        from_status=current.status.value,
                        to_status=updated.status.value,
                        actor_id=self._actor_pk(actor),
                        reason=reason or updated.reject_reason,
                    )
            if swapped:
                logger.info(
                    "quote_transition",
                    extra={
                        "quote_id": current.id,
                        "action": action,
                        "from_status": current.status.value,
                        "to_status": updated.status.value,
                    },
                )
                return replace(updated, revision=current.revision + 1)
            logger.info("quote_update_conflict", extra={"quote_id": quote_id, "action": action, "attempt": attempt})
        raise ConflictError(code="quote_update_conflict", payload={"quote_id": quote_id, "action": action})

    def _insert_with_number(self, db, actor: Actor, draft: Quote) -> int:
        errors = integrity_errors()
        for attempt in range(1, self.number_max_attempts + 1):
            number = None
            try:
                with db.transaction():
                    number = self.quotes.next_quote_number(db, self.today())
                    quote_id = self.quotes.insert(db, replace(draft, quote_number=number))
                    self.events.add_event(
                        db,
                        quote_id=quote_id,
                        action="create",
                        from_status=None,
                        to_status=draft.status.value,
                        actor_id=self._actor_pk(actor),
                    )
                return quote_id
            except errors:
                logger.info("quote_number_collision", extra={"quote_number": number, "attempt": attempt})
        raise ConflictError(code="quote_number_conflict")

    def _validated(self, files: Sequence[UploadedFile]) -> List[UploadedFile]:
        return validate_uploads(
            files or (),
            max_files=self.max_files,
            max_file_bytes=self.max_file_bytes,
            allowed_extensions=self.allowed_extensions,
        )

    def _normalize_fields(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        normalized: Dict[str, Any] = {}
        for key, value in (fields or {}).items():
            if key == "title":
                title = _clean_text(value)
                if not title:
                    raise ValidationError(code="title_required", http_status=400)
                normalized[key] = title
            elif key in {"description", "customer_message", "quoter_message"}:
                normalized[key] = _clean_text(value)
            elif key == "price":
                normalized[key] = _parse_price(value)
            elif key == "currency":
                normalized[key] = _clean_text(value).upper() or self.default_currency
            elif key == "valid_until":
                normalized[key] = _parse_valid_until(value)
            elif key == "urgent":
                normalized[key] = _parse_bool(value)
            else:
                raise ValidationError(code="field_not_editable", http_status=400, payload={"fields": [key]})
        return normalized

    def _apply_fields(self, quote: Quote, actor: Actor, fields: Dict[str, Any]) -> Quote:
        content = {key: value for key, value in fields.items() if key != "urgent"}
        if "urgent" in fields:
            permissions.require(permissions.can_toggle_urgent(quote, actor))
            state_machine.ensure_allowed(quote, Trigger.TOGGLE_URGENT)
        if content:
            permissions.require(permissions.can_edit(quote, actor))
            state_machine.ensure_allowed(quote, Trigger.EDIT)
            allowed = permissions.editable_fields(actor)
            blocked = sorted(key for key in content if key not in allowed)
            if blocked:
                raise AppPermissionError(
                    code="field_not_editable",
                    message_key="field_not_editable",
                    http_status=403,
                    payload={"fields": blocked},
                )
        return state_machine.check_invariants(replace(quote, **fields))

    def _active_user(self, db, user_id: object, role: Role, missing_key: str, invalid_key: str) -> Dict[str, Any]:
        raw = _clean_text(user_id)
        if not raw:
            raise ValidationError(code=missing_key, http_status=400)
        try:
            user = self.users.get_by_id(db, int(raw))
        except ValueError:
            user = None
        if not user or user.get("role") != role.value or not user.get("is_active"):
            raise ValidationError(code=invalid_key, http_status=400)
        return user

    def _parties(self, db, quotes: Sequence[Quote]) -> Dict[int, Dict[str, Any]]:
        ids: List[int] = []
        for quote in quotes:
            for reference in (quote.customer_id, quote.quoter_id, quote.supplier_id):
                if reference is not None:
                    ids.append(int(reference))
        return self.users.list_by_ids(db, ids)

    def _serialize(self, quote: Quote, actor: Actor, users: Mapping[int, Dict[str, Any]]) -> Dict[str, Any]:
        def party(reference: str | None) -> Dict[str, Any] | None:
            if reference is None:
                return None
            user = users.get(int(reference))
            if not user:
                return {"id": reference}
            return {
                "id": reference,
                "name": user.get("name"),
                "email": user.get("email"),
                "company": user.get("company"),
            }

        parties = {
            "customer": party(quote.customer_id),
            "quoter": party(quote.quoter_id),
            "supplier": party(quote.supplier_id),
        }
        return project_quote(quote, actor, parties=parties, extra={"flow": flow_meta(quote, actor)})

    @staticmethod
    def _actor_pk(actor: Actor) -> int | None:
        try:
            return int(actor.user_id)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _unique_name(name: str, used: Dict[str, int]) -> str:
        count = used.get(name, 0)
        used[name] = count + 1
        if count == 0:
            return name
        stem, dot, extension = name.rpartition(".")
        if not dot:
            return f"{name} ({count})"
        return f"{stem} ({count}).{extension}"
