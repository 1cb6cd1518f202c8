from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Tuple

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash

from quotedesk.domain.contracts import AuthLoginInput, AuthRegisterInput, TokenPair
from quotedesk.domain.models import Actor, Role
from quotedesk.errors import PermissionError as AppPermissionError
from quotedesk.errors import ValidationError
from quotedesk.infrastructure.repositories.user_repository import UserRepository


ACCESS_SALT = "quotedesk-access"
REFRESH_SALT = "quotedesk-refresh"
RESET_SALT = "quotedesk-password-reset"
MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _invalid_token() -> AppPermissionError:
    return AppPermissionError(
        code="auth_invalid_token",
        message_key="auth_invalid_token",
        http_status=401,
        critical=False,
    )


def _check_password_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            code="password_too_short",
            http_status=400,
            payload={"min_length": MIN_PASSWORD_LENGTH},
        )


def public_user(user: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["id"]),
        "email": user.get("email"),
        "name": user.get("name"),
        "company": user.get("company"),
        "phone": user.get("phone"),
        "role": user.get("role"),
        "is_active": bool(user.get("is_active")),
        "created_at": user.get("created_at"),
    }


class AuthService:
    """Password login plus signed, timed access and refresh tokens.

    Every token carries the user's ``token_version``; bumping it (logout, role
    change, deactivation, password reset) revokes every outstanding token of
    that user, the reset token included.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        access_max_age: int = 3600,
        refresh_max_age: int = 3 * 24 * 3600,
        reset_max_age: int = 3600,
        repository: UserRepository | None = None,
    ) -> None:
        self.repository = repository or UserRepository()
        self.access_max_age = int(access_max_age)
        self.refresh_max_age = int(refresh_max_age)
        self.reset_max_age = int(reset_max_age)
        self._access = URLSafeTimedSerializer(secret_key, salt=ACCESS_SALT)
        self._refresh = URLSafeTimedSerializer(secret_key, salt=REFRESH_SALT)
        self._reset = URLSafeTimedSerializer(secret_key, salt=RESET_SALT)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AuthService":
        return cls(
            str(config["SECRET_KEY"]),
            access_max_age=int(config.get("ACCESS_TOKEN_MAX_AGE_SECONDS") or 3600),
            refresh_max_age=int(config.get("REFRESH_TOKEN_MAX_AGE_SECONDS") or 3 * 24 * 3600),
            reset_max_age=int(config.get("PASSWORD_RESET_MAX_AGE_SECONDS") or 3600),
        )

    def register(self, db, auth_input: AuthRegisterInput) -> Dict[str, Any]:
        email = (auth_input.email or "").strip().lower()
        password = auth_input.password or ""
        if not email or not password:
            raise ValidationError(code="auth_missing_credentials", http_status=400)
        if not _EMAIL_RE.match(email):
            raise ValidationError(code="email_invalid", http_status=400)
        _check_password_length(password)
        if self.repository.email_exists(db, email):
            raise ValidationError(
                code="email_already_registered",
                message_key="email_already_registered",
                http_status=400,
                critical=False,
            )
        user_id = self.repository.create_user(
            db,
            email=email,
            password=password,
            role=Role.CUSTOMER.value,
            name=(auth_input.name or "").strip() or email.split("@")[0],
            company=(auth_input.company or "").strip() or None,
            phone=(auth_input.phone or "").strip() or None,
        )
        return self.repository.get_by_id(db, user_id)

    def login(self, db, auth_input: AuthLoginInput) -> Dict[str, Any]:
        email = (auth_input.email or "").strip().lower()
        password = auth_input.password or ""
        if not email or not password:
            raise ValidationError(code="auth_missing_credentials", http_status=400)
        user = self.repository.find_by_email_with_password(db, email)
        if not user or not check_password_hash(user["password_hash"], password):
            raise AppPermissionError(
                code="auth_invalid_credentials",
                message_key="auth_invalid_credentials",
                http_status=401,
                critical=False,
            )
        if not user.get("is_active"):
            raise AppPermissionError(code="account_inactive", http_status=403, critical=False)
        user.pop("password_hash", None)
        return user

    def issue_tokens(self, user: Mapping[str, Any]) -> TokenPair:
        claims = {"uid": int(user["id"]), "tv": int(user.get("token_version") or 0)}
        return TokenPair(
            access_token=self._access.dumps(claims),
            refresh_token=self._refresh.dumps(claims),
            expires_in=self.access_max_age,
        )

    def refresh(self, db, refresh_token: str | None) -> TokenPair:
        user = self._user_for(db, self._refresh, refresh_token, self.refresh_max_age)
        return self.issue_tokens(user)

    def logout(self, db, actor: Actor) -> None:
        self.repository.bump_token_version(db, int(actor.user_id))

    def request_password_reset(self, db, email: str | None) -> Tuple[Dict[str, Any], str] | None:
        """Return the active user behind ``email`` and a reset token, or None.

        Callers answer the same way in both cases so the endpoint does not
        reveal which addresses are registered.
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError(code="auth_missing_credentials", http_status=400)
        user = self.repository.find_by_email_with_password(db, email)
        if not user or not user.get("is_active"):
            return None
        user.pop("password_hash", None)
        claims = {"uid": int(user["id"]), "tv": int(user.get("token_version") or 0)}
        return user, self._reset.dumps(claims)

    def reset_password(self, db, reset_token: str | None, new_password: str | None) -> Dict[str, Any]:
        user = self._user_for(db, self._reset, reset_token, self.reset_max_age)
        password = new_password or ""
        if not password:
            raise ValidationError(code="auth_missing_credentials", http_status=400)
        _check_password_length(password)
        self.repository.set_password(db, int(user["id"]), password)
        return self.repository.get_by_id(db, int(user["id"]))

    def authenticate(self, db, access_token: str | None) -> Actor:
        """Resolve a bearer access token to the acting user."""
        user = self._user_for(db, self._access, access_token, self.access_max_age)
        return Actor(
            user_id=str(user["id"]),
            role=Role.parse(user.get("role")),
            email=user.get("email"),
            name=user.get("name"),
        )

    def _user_for(self, db, serializer: URLSafeTimedSerializer, token: str | None, max_age: int) -> Dict[str, Any]:
        if not token:
            raise _invalid_token()
        try:
            claims = serializer.loads(token, max_age=max_age)
        except (SignatureExpired, BadSignature):
            raise _invalid_token() from None
        if not isinstance(claims, dict) or "uid" not in claims:
            raise _invalid_token()
        user = self.repository.get_by_id(db, int(claims["uid"]))
        if not user or int(user.get("token_version") or 0) != int(claims.get("tv", -1)):
            raise _invalid_token()
        if not user.get("is_active"):
            raise AppPermissionError(code="account_inactive", http_status=401, critical=False)
        return user
