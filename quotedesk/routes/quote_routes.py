from __future__ import annotations

import json
import os
from typing import Dict, List

from flask import Blueprint, current_app, jsonify, request, send_file

from quotedesk.application.quote_service import QuoteService
from quotedesk.db import get_db
from quotedesk.domain.contracts import QuoteCreateInput, QuoteListInput, QuoteUpdateInput, UploadedFile
from quotedesk.domain.models import FileType, QuoteStatus
from quotedesk.errors import NotFoundError, ValidationError
from quotedesk.policies import current_actor
from quotedesk.ui_strings import success_message
from quotedesk.workflow.critical_actions import require_confirmation


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")

UPDATABLE_FIELDS = (
    "title",
    "description",
    "customer_message",
    "quoter_message",
    "price",
    "currency",
    "valid_until",
    "urgent",
)
_RESERVED_FORM_KEYS = {"confirm", "confirm_token"}


def _quote_service() -> QuoteService:
    return QuoteService.from_config(current_app.config)


def _ok(key: str) -> str:
    return success_message(key)


def _request_payload() -> Dict[str, object]:
    if request.mimetype == "application/json":
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}
    return {key: value for key, value in request.form.items()}


def _uploaded_files() -> List[UploadedFile]:
    uploads: List[UploadedFile] = []
    for storage in request.files.getlist("files"):
        if not storage or not (storage.filename or "").strip():
            continue
        stream = storage.stream
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        uploads.append(
            UploadedFile(
                filename=storage.filename,
                stream=stream,
                size=size,
                content_type=storage.mimetype,
            )
        )
    return uploads


def _parse_indexes(raw: object) -> List[int]:
    if isinstance(raw, list):
        values = raw
    else:
        text = str(raw or "").strip()
        if not text:
            return []
        try:
            values = json.loads(text) if text.startswith("[") else text.split(",")
        except ValueError:
            raise ValidationError(code="file_index_invalid", http_status=400) from None
    indexes: List[int] = []
    for value in values:
        try:
            indexes.append(int(str(value).strip()))
        except ValueError:
            raise ValidationError(code="file_index_invalid", http_status=400) from None
    return indexes


def _deletion_markers(payload: Dict[str, object]) -> Dict[FileType, List[int]]:
    deletions: Dict[FileType, List[int]] = {}
    for file_type in FileType:
        indexes = _parse_indexes(payload.get(f"delete_{file_type.value}_files"))
        if indexes:
            deletions[file_type] = indexes
    return deletions


def _file_type_or_404(raw: str) -> FileType:
    file_type = FileType.parse(raw)
    if file_type is None:
        raise NotFoundError(code="file_not_found", http_status=404, payload={"file_type": raw})
    return file_type


def _quote_response(service: QuoteService, db, actor, quote, message_key: str | None = None, status: int = 200):
    payload = {"quote": service.serialize(db, actor, quote)}
    if message_key:
        payload["message"] = _ok(message_key)
    return jsonify(payload), status


@quotes_bp.route("", methods=["GET"])
def list_quotes():
    actor = current_actor()
    raw_status = (request.args.get("status") or "").strip()
    status = QuoteStatus.parse(raw_status) if raw_status else None
    if raw_status and status is None:
        raise ValidationError(code="status_invalid", http_status=400)
    try:
        page = int(request.args.get("page", 1))
        page_size = int(request.args.get("page_size", 20))
    except ValueError:
        raise ValidationError(code="page_invalid", http_status=400) from None
    list_input = QuoteListInput(
        status=status,
        page=page,
        page_size=page_size,
        sort=(request.args.get("sort") or "-created_at").strip(),
    )
    return jsonify(_quote_service().list_quotes(get_db(), actor, list_input))


@quotes_bp.route("", methods=["POST"])
def create_quote():
    actor = current_actor()
    payload = _request_payload()
    service = _quote_service()
    db = get_db()
    quote = service.create_quote(
        db,
        actor,
        QuoteCreateInput(
            title=payload.get("title"),
            description=payload.get("description"),
            customer_message=payload.get("customer_message"),
            urgent=str(payload.get("urgent") or "").strip().lower() in {"1", "true", "yes", "on"},
        ),
        _uploaded_files(),
    )
    return _quote_response(service, db, actor, quote, "quote_created", 201)


@quotes_bp.route("/<int:quote_id>", methods=["GET"])
def get_quote(quote_id: int):
    actor = current_actor()
    service = _quote_service()
    db = get_db()
    return _quote_response(service, db, actor, service.get_quote(db, actor, quote_id))


@quotes_bp.route("/<int:quote_id>", methods=["PUT", "PATCH"])
def update_quote(quote_id: int):
    actor = current_actor()
    payload = _request_payload()
    deletions = _deletion_markers(payload)
    if deletions:
        require_confirmation("delete_file", request, payload)
    fields = {key: payload[key] for key in payload if key in UPDATABLE_FIELDS}
    unknown = sorted(
        key
        for key in payload
        if key not in UPDATABLE_FIELDS
        and key not in _RESERVED_FORM_KEYS
        and not (key.startswith("delete_") and key.endswith("_files"))
    )
    if unknown:
        raise ValidationError(code="field_not_editable", http_status=400, payload={"fields": unknown})

    service = _quote_service()
    db = get_db()
    quote = service.update_quote(
        db,
        actor,
        quote_id,
        QuoteUpdateInput(fields=fields, deletions=deletions, confirmed=bool(deletions)),
        _uploaded_files(),
    )
    return _quote_response(service, db, actor, quote, "quote_updated")


@quotes_bp.route("/<int:quote_id>", methods=["DELETE"])
def delete_quote(quote_id: int):
    actor = current_actor()
    require_confirmation("delete_quote", request, _request_payload())
    quote = _quote_service().delete_quote(get_db(), actor, quote_id)
    return jsonify({"message": _ok("quote_deleted"), "id": quote.id, "quote_number": quote.quote_number})


@quotes_bp.route("/<int:quote_id>/reject", methods=["POST"])
def reject_quote(quote_id: int):
    actor = current_actor()
    payload = _request_payload()
    require_confirmation("reject_quote", request, payload)
    service = _quote_service()
    db = get_db()
    quote = service.reject(db, actor, quote_id, payload.get("reason") or payload.get("reject_reason"))
    return _quote_response(service, db, actor, quote, "quote_rejected")


@quotes_bp.route("/<int:quote_id>/assign-supplier", methods=["POST"])
def assign_supplier(quote_id: int):
    actor = current_actor()
    payload = _request_payload()
    service = _quote_service()
    db = get_db()
    quote = service.assign_supplier(db, actor, quote_id, payload.get("supplier_id"))
    return _quote_response(service, db, actor, quote, "supplier_assigned")


@quotes_bp.route("/<int:quote_id>/remove-supplier", methods=["POST"])
def remove_supplier(quote_id: int):
    actor = current_actor()
    require_confirmation("remove_supplier", request, _request_payload())
    service = _quote_service()
    db = get_db()
    quote = service.remove_supplier(db, actor, quote_id)
    return _quote_response(service, db, actor, quote, "supplier_removed")


@quotes_bp.route("/<int:quote_id>/assign-quoter", methods=["POST"])
def assign_quoter(quote_id: int):
    actor = current_actor()
    payload = _request_payload()
    service = _quote_service()
    db = get_db()
    quote = service.assign_quoter(db, actor, quote_id, payload.get("quoter_id"))
    return _quote_response(service, db, actor, quote, "quoter_assigned")


@quotes_bp.route("/<int:quote_id>/confirm-supplier-quote", methods=["POST"])
def confirm_supplier_quote(quote_id: int):
    actor = current_actor()
    service = _quote_service()
    db = get_db()
    quote = service.confirm_supplier_quote(db, actor, quote_id)
    return _quote_response(service, db, actor, quote, "supplier_quote_confirmed")


@quotes_bp.route("/<int:quote_id>/confirm-final-quote", methods=["POST"])
def confirm_final_quote(quote_id: int):
    actor = current_actor()
    service = _quote_service()
    db = get_db()
    quote = service.confirm_final_quote(db, actor, quote_id)
    return _quote_response(service, db, actor, quote, "final_quote_confirmed")


@quotes_bp.route("/<int:quote_id>/cancel", methods=["POST"])
def cancel_quote(quote_id: int):
    actor = current_actor()
    require_confirmation("cancel_quote", request, _request_payload())
    service = _quote_service()
    db = get_db()
    quote = service.cancel(db, actor, quote_id)
    return _quote_response(service, db, actor, quote, "quote_cancelled")


@quotes_bp.route("/<int:quote_id>/files/<file_type>/<int:index>", methods=["GET"])
def download_file(quote_id: int, file_type: str, index: int):
    actor = current_actor()
    service = _quote_service()
    item = service.get_file(get_db(), actor, quote_id, _file_type_or_404(file_type), index)
    return send_file(
        service.file_store.open(item.stored_name),
        as_attachment=True,
        download_name=item.display_name,
        max_age=0,
    )


@quotes_bp.route("/<int:quote_id>/files/<file_type>/archive", methods=["GET"])
def download_archive(quote_id: int, file_type: str):
    actor = current_actor()
    filename, buffer = _quote_service().build_archive(get_db(), actor, quote_id, _file_type_or_404(file_type))
    return send_file(buffer, mimetype="application/zip", as_attachment=True, download_name=filename, max_age=0)


@quotes_bp.route("/<int:quote_id>/history", methods=["GET"])
def quote_history(quote_id: int):
    actor = current_actor()
    events = _quote_service().history(get_db(), actor, quote_id)
    return jsonify({"quote_id": quote_id, "events": events})
