import os

import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from quotedesk.config import Config
from quotedesk.db import close_db, get_db, init_db, ping
from quotedesk.db_migrations import register_db_cli
from quotedesk.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)
from quotedesk.security import apply_security_headers, enforce_rate_limit


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_storage_dirs(app)
    _register_error_handlers(app)
    _register_security(app)
    _register_auth(app)
    _register_blueprints(app)
    _register_notifications(app)
    _register_health(app)
    register_db_cli(app)
    _register_user_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_storage_dirs(app: Flask) -> None:
    for key in ("DATABASE_DIR", "UPLOAD_DIR"):
        directory = app.config.get(key)
        if directory:
            os.makedirs(directory, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from quotedesk.routes.group_routes import groups_bp
    from quotedesk.routes.meta_routes import meta_bp
    from quotedesk.routes.quote_routes import quotes_bp
    from quotedesk.routes.user_routes import users_bp

    app.register_blueprint(quotes_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(groups_bp)
    app.register_blueprint(meta_bp)


def _register_auth(app: Flask) -> None:
    from quotedesk.auth import register_auth

    register_auth(app)


def _register_notifications(app: Flask) -> None:
    from quotedesk.application.notification_service import dispatch_pending_notifications

    app.after_request(dispatch_pending_notifications)


def _register_error_handlers(app: Flask) -> None:
    from quotedesk.errors import AppError, SystemError, ValidationError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        response = observe_response(response)
        return apply_security_headers(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(RequestEntityTooLarge)
    def _handle_too_large(exc: RequestEntityTooLarge):
        request_id = ensure_request_id()
        mapped = ValidationError(
            code="file_too_large",
            message_key="file_too_large",
            http_status=413,
            details=str(exc),
        )
        _log_error(mapped, request_id)
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_security(app: Flask) -> None:
    @app.before_request
    def _rate_limit_guard():
        return enforce_rate_limit()


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "db_reachable": True,
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        try:
            payload["db_reachable"] = ping(get_db())
        except Exception:
            app.logger.warning("health_db_unreachable", exc_info=True)
            payload["db_reachable"] = False
        if not payload["db_reachable"]:
            payload["status"] = "degraded"
            return payload, 503
        return payload, 200


def _register_user_cli(app: Flask) -> None:
    from quotedesk.domain.models import Role
    from quotedesk.infrastructure.repositories.user_repository import UserRepository

    @app.cli.group("users")
    def users_group() -> None:
        """User administration."""

    @users_group.command("create")
    @click.option("--email", required=True)
    @click.option("--password", required=True)
    @click.option("--role", type=click.Choice([role.value for role in Role]), default=Role.CUSTOMER.value)
    @click.option("--name", default=None)
    @click.option("--company", default=None)
    def users_create(email: str, password: str, role: str, name: str | None, company: str | None) -> None:
        repository = UserRepository()
        db = get_db()
        normalized = email.strip().lower()
        if repository.email_exists(db, normalized):
            raise click.ClickException(f"{normalized} is already registered.")
        user_id = repository.create_user(
            db,
            email=normalized,
            password=password,
            role=role,
            name=name or normalized.split("@")[0],
            company=company,
        )
        db.commit()
        click.echo(f"Created {role} {normalized} (id {user_id}).")
