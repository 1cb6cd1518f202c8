"""Outbound mail for quote workflow events and password resets.

Jobs are queued on the request while the quote is mutated and dispatched
after the response is produced, either on a daemon thread or inline. A
delivery problem never reaches the caller: it is logged and dropped.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List

from flask import current_app, g
from jinja2 import Environment, FileSystemLoader, select_autoescape

from quotedesk.domain.models import Actor, FileType, Quote, Role
from quotedesk.infrastructure.file_store import LocalFileStore
from quotedesk.infrastructure.mailer import MailAttachment, OutboundEmail, build_mailer, recipients
from quotedesk.infrastructure.repositories.quote_repository import QuoteRepository
from quotedesk.infrastructure.repositories.user_repository import UserRepository
from quotedesk.observability import bind_request_id, current_request_id
from quotedesk.ui_strings import FRIENDLY_TERMS, status_label
from quotedesk.workflow.projection import project_quote, sanitize_for_notification


logger = logging.getLogger(__name__)

MAILER_EXTENSION_KEY = "quotedesk.mailer"
_TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates" / "email"


class NotificationEvent(str, Enum):
    QUOTE_CREATED = "quote_created"
    SUPPLIER_ASSIGNED = "supplier_assigned"
    SUPPLIER_QUOTED = "supplier_quoted"
    FINAL_QUOTE = "final_quote"


_SUBJECTS: Dict[NotificationEvent, str] = {
    NotificationEvent.QUOTE_CREATED: "New quote request - {number} - {title}",
    NotificationEvent.SUPPLIER_ASSIGNED: "Quote request assigned to you - {number} - {title}",
    NotificationEvent.SUPPLIER_QUOTED: "Supplier quote confirmed - {number} - {title}",
    NotificationEvent.FINAL_QUOTE: "Final quote confirmed - {number} - {title}",
}


@dataclass(frozen=True)
class NotificationJob:
    event: NotificationEvent
    quote_id: int


def template_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "xml"]),
    )


class NotificationService:
    def __init__(
        self,
        mailer,
        file_store: LocalFileStore,
        *,
        app_public_url: str = "",
        quote_repository: QuoteRepository | None = None,
        user_repository: UserRepository | None = None,
        templates: Environment | None = None,
    ) -> None:
        self.mailer = mailer
        self.file_store = file_store
        self.app_public_url = (app_public_url or "").rstrip("/")
        self.quotes = quote_repository or QuoteRepository()
        self.users = user_repository or UserRepository()
        self.templates = templates or template_environment()

    def deliver(self, db, job: NotificationJob) -> int:
        quote = self.quotes.get_by_id(db, job.quote_id)
        if quote is None:
            logger.warning("notification_quote_missing", extra={"quote_id": job.quote_id, "event": job.event.value})
            return 0
        sent = 0
        for message in self.build_messages(db, job.event, quote):
            try:
                self.mailer.send(message)
                sent += 1
            except Exception:
                logger.exception(
                    "notification_send_failed",
                    extra={"quote_id": quote.id, "event": job.event.value, "mail_to": list(message.to)},
                )
        return sent

    def build_messages(self, db, event: NotificationEvent, quote: Quote) -> List[OutboundEmail]:
        if event in (NotificationEvent.QUOTE_CREATED, NotificationEvent.SUPPLIER_QUOTED):
            quoters = self.users.list_users(db, role=Role.QUOTER.value, active_only=True)
            to = recipients([user.get("email") for user in quoters])
            snapshot = sanitize_for_notification(quote)
            attachments: List[MailAttachment] = []
        elif event == NotificationEvent.SUPPLIER_ASSIGNED:
            supplier = self.users.get_by_id(db, int(quote.supplier_id)) if quote.supplier_id else None
            to = recipients([supplier.get("email") if supplier and supplier.get("is_active") else None])
            snapshot = sanitize_for_notification(quote)
            attachments = self._attachments(quote, FileType.CUSTOMER)
        elif event == NotificationEvent.FINAL_QUOTE:
            customer = self.users.get_by_id(db, int(quote.customer_id))
            to = recipients([customer.get("email") if customer else None])
            snapshot = project_quote(quote, Actor(user_id=quote.customer_id, role=Role.CUSTOMER))
            attachments = self._attachments(quote, FileType.QUOTER)
        else:
            return []
        if not to:
            logger.info("notification_no_recipients", extra={"quote_id": quote.id, "event": event.value})
            return []

        html = self.templates.get_template(f"{event.value}.html").render(
            quote=snapshot,
            status_label=status_label(quote.status.value),
            attachment_names=[item.filename for item in attachments],
            quote_url=f"{self.app_public_url}/quotes/{quote.id}",
            app_name=FRIENDLY_TERMS["app_name"],
        )
        subject = _SUBJECTS[event].format(number=quote.quote_number, title=quote.title)
        text = f"{subject}\n\n{self.app_public_url}/quotes/{quote.id}"
        # One message per recipient.
        return [
            OutboundEmail(
                to=(address,),
                subject=subject,
                html=html,
                text=text,
                attachments=tuple(attachments),
                category=event.value,
            )
            for address in to
        ]

    def _attachments(self, quote: Quote, file_type: FileType) -> List[MailAttachment]:
        attachments: List[MailAttachment] = []
        for item in quote.files(file_type):
            path = self.file_store.path_for(item.stored_name)
            if not path.is_file():
                logger.warning(
                    "notification_attachment_missing",
                    extra={"quote_id": quote.id, "stored_name": item.stored_name},
                )
                continue
            attachments.append(MailAttachment(filename=item.display_name, path=path))
        return attachments


def password_reset_email(
    user: Dict[str, object],
    reset_url: str,
    *,
    expires_in: int,
    templates: Environment | None = None,
) -> OutboundEmail:
    templates = templates or template_environment()
    app_name = FRIENDLY_TERMS["app_name"]
    html = templates.get_template("password_reset.html").render(
        name=user.get("name") or user.get("email"),
        reset_url=reset_url,
        expires_minutes=max(1, int(expires_in) // 60),
        app_name=app_name,
    )
    subject = f"Reset your {app_name} password"
    return OutboundEmail(
        to=(str(user["email"]),),
        subject=subject,
        html=html,
        text=f"{subject}\n\n{reset_url}",
        category="password_reset",
    )


def get_mailer(app):
    mailer = app.extensions.get(MAILER_EXTENSION_KEY)
    if mailer is None:
        mailer = build_mailer(app.config)
        app.extensions[MAILER_EXTENSION_KEY] = mailer
    return mailer


def schedule_notification(event: NotificationEvent, quote_id: int | None) -> None:
    if quote_id is None:
        return
    if not bool(current_app.config.get("NOTIFICATIONS_ENABLED", True)):
        return
    pending = g.setdefault("_pending_notifications", [])
    pending.append(NotificationJob(event=event, quote_id=int(quote_id)))


def _run_jobs(app, jobs: List[NotificationJob], request_id: str) -> None:
    from quotedesk.db import get_db

    with app.app_context(), bind_request_id(request_id):
        try:
            service = NotificationService(
                get_mailer(app),
                LocalFileStore(app.config["UPLOAD_DIR"]),
                app_public_url=str(app.config.get("APP_PUBLIC_URL") or ""),
            )
            db = get_db()
            for job in jobs:
                try:
                    service.deliver(db, job)
                except Exception:
                    logger.exception(
                        "notification_job_failed",
                        extra={"quote_id": job.quote_id, "event": job.event.value},
                    )
        except Exception:
            logger.exception("notification_dispatch_failed", extra={"jobs": len(jobs)})


def dispatch_pending_notifications(response):
    """after_request hook: hand queued jobs of a successful request to the dispatcher."""
    jobs: List[NotificationJob] = g.pop("_pending_notifications", None) or []
    if not jobs or response.status_code >= 400:
        return response
    app = current_app._get_current_object()
    request_id = current_request_id(default="n/a")
    mode = str(app.config.get("NOTIFICATIONS_MODE") or "thread").strip().lower()
    if mode == "inline":
        _run_jobs(app, jobs, request_id)
        return response
    worker = threading.Thread(
        target=_run_jobs,
        args=(app, jobs, request_id),
        name="quotedesk-notifications",
        daemon=True,
    )
    worker.start()
    return response

