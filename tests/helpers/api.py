from __future__ import annotations

import io
from typing import Dict, Iterable, List, Tuple

from quotedesk import create_app
from quotedesk.application.auth_service import AuthService
from quotedesk.application.notification_service import MAILER_EXTENSION_KEY
from quotedesk.config import Config
from quotedesk.db import close_db, get_db
from quotedesk.infrastructure.repositories.user_repository import UserRepository
from quotedesk.security import reset_rate_limiter_for_tests
from tests.helpers.temp_db import TempDbSandbox


class RecordingMailer:
    """Mailer double: keeps every message, fails for addresses listed in ``fail_for``."""

    def __init__(self, fail_for: Iterable[str] = ()) -> None:
        self.sent: List = []
        self.fail_for = {address.lower() for address in fail_for}

    def send(self, message) -> None:
        if any(address in self.fail_for for address in message.to):
            raise RuntimeError(f"smtp refused {message.to}")
        self.sent.append(message)

    def by_category(self, category: str) -> List:
        return [message for message in self.sent if message.category == category]


def xlsx(name: str = "request.xlsx", content: bytes = b"PK\x03\x04 spreadsheet") -> Tuple[io.BytesIO, str]:
    return io.BytesIO(content), name


class ApiHarness:
    def __init__(self, prefix: str, **overrides) -> None:
        self.sandbox = TempDbSandbox(prefix=prefix)
        attrs = {"TESTING": True, "SECRET_KEY": "test-secret"}
        attrs.update(overrides)
        self.app = create_app(self.sandbox.make_config(Config, **attrs))
        self.client = self.app.test_client()
        self.mailer = RecordingMailer()
        self.app.extensions[MAILER_EXTENSION_KEY] = self.mailer
        self.users: Dict[str, Dict[str, object]] = {}
        reset_rate_limiter_for_tests()

    def cleanup(self) -> None:
        with self.app.app_context():
            close_db()
        self.sandbox.cleanup()
        reset_rate_limiter_for_tests()

    def create_user(self, key: str, role: str, *, email: str | None = None, is_active: bool = True) -> Dict[str, object]:
        email = email or f"{key}@example.com"
        with self.app.app_context():
            db = get_db()
            repository = UserRepository()
            user_id = repository.create_user(
                db,
                email=email,
                password="secret-password",
                role=role,
                name=key.replace("_", " ").title(),
                company=f"{key} ltd",
                is_active=is_active,
            )
            db.commit()
            tokens = AuthService.from_config(self.app.config).issue_tokens(repository.get_by_id(db, user_id))
        user = {
            "id": str(user_id),
            "email": email,
            "role": role,
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
        }
        self.users[key] = user
        return user

    def headers(self, key: str, **extra: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.users[key]['access_token']}"}
        headers.update(extra)
        return headers

    def create_quote(self, customer: str, *, title: str = "Steel brackets", files=None, **fields):
        data = {"title": title, **fields}
        data["files"] = files if files is not None else [xlsx()]
        return self.client.post(
            "/api/quotes",
            headers=self.headers(customer),
            data=data,
            content_type="multipart/form-data",
        )

    def upload(self, key: str, quote_id: int, *files, **fields):
        data = dict(fields)
        data["files"] = list(files) or [xlsx(f"{key}.xlsx")]
        return self.client.put(
            f"/api/quotes/{quote_id}",
            headers=self.headers(key),
            data=data,
            content_type="multipart/form-data",
        )

    def post(self, key: str, path: str, payload: dict | None = None):
        return self.client.post(path, headers=self.headers(key), json=payload or {})
