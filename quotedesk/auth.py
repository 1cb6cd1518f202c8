from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from quotedesk.application.auth_service import AuthService, public_user
from quotedesk.application.notification_service import get_mailer, password_reset_email
from quotedesk.db import get_db
from quotedesk.domain.contracts import AuthLoginInput, AuthRegisterInput, TokenPair
from quotedesk.errors import PermissionError as AppPermissionError
from quotedesk.policies import current_actor
from quotedesk.ui_strings import success_message


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

PUBLIC_PATHS = {
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/refresh",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/health",
}


def _auth_service() -> AuthService:
    return AuthService.from_config(current_app.config)


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _token_payload(tokens: TokenPair) -> dict:
    return {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "token_type": "Bearer",
        "expires_in": tokens.expires_in,
    }


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _resolve_actor():
        g.actor = None
        path = request.path or "/"
        if request.method == "OPTIONS" or path in PUBLIC_PATHS:
            return None
        if not path.startswith("/api/"):
            return None

        token = _bearer_token()
        if token is None:
            raise AppPermissionError(
                code="auth_required",
                message_key="auth_required",
                http_status=401,
                critical=False,
            )
        g.actor = _auth_service().authenticate(get_db(), token)
        return None


@auth_bp.route("/register", methods=["POST"])
def register():
    body = request.get_json(silent=True) or {}
    db = get_db()
    service = _auth_service()
    user = service.register(
        db,
        AuthRegisterInput(
            email=str(body.get("email") or ""),
            password=str(body.get("password") or ""),
            name=body.get("name"),
            company=body.get("company"),
            phone=body.get("phone"),
        ),
    )
    db.commit()
    current_app.logger.info("user_registered", extra={"user_id": user["id"]})
    return jsonify({"user": public_user(user), **_token_payload(service.issue_tokens(user))}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    body = request.get_json(silent=True) or {}
    service = _auth_service()
    user = service.login(
        get_db(),
        AuthLoginInput(email=str(body.get("email") or ""), password=str(body.get("password") or "")),
    )
    return jsonify({"user": public_user(user), **_token_payload(service.issue_tokens(user))})


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    body = request.get_json(silent=True) or {}
    tokens = _auth_service().refresh(get_db(), body.get("refresh_token"))
    return jsonify(_token_payload(tokens))


@auth_bp.route("/logout", methods=["POST"])
def logout():
    actor = current_actor()
    db = get_db()
    _auth_service().logout(db, actor)
    db.commit()
    return jsonify({"message": success_message("logged_out")})


@auth_bp.route("/me", methods=["GET"])
def me():
    actor = current_actor()
    user = _auth_service().repository.get_by_id(get_db(), int(actor.user_id))
    return jsonify({"user": public_user(user)})


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    body = request.get_json(silent=True) or {}
    service = _auth_service()
    found = service.request_password_reset(get_db(), str(body.get("email") or ""))
    if found is not None:
        user, token = found
        base_url = str(current_app.config.get("APP_PUBLIC_URL") or "").rstrip("/")
        message = password_reset_email(
            user,
            f"{base_url}/reset-password?token={token}",
            expires_in=service.reset_max_age,
        )
        try:
            get_mailer(current_app).send(message)
        except Exception:
            current_app.logger.exception("password_reset_mail_failed", extra={"user_id": user["id"]})
        else:
            current_app.logger.info("password_reset_requested", extra={"user_id": user["id"]})
    return jsonify({"message": success_message("password_reset_requested")})


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    body = request.get_json(silent=True) or {}
    db = get_db()
    user = _auth_service().reset_password(db, body.get("token"), body.get("password"))
    db.commit()
    current_app.logger.info("password_reset_completed", extra={"user_id": user["id"]})
    return jsonify({"message": success_message("password_reset_done")})
