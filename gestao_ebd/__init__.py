import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from gestao_ebd.config import Config
from gestao_ebd.db import close_db, init_db
from gestao_ebd.db_migrations import register_db_cli
from gestao_ebd.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    observe_response,
)


def create_app(config_class=Config, services=None):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_services(app, services)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Testes sobem o schema sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_services(app: Flask, registry) -> None:
    from gestao_ebd.application.services import register_services

    register_services(app, registry)


def _register_blueprints(app: Flask) -> None:
    from gestao_ebd.routes.commission_routes import commission_bp
    from gestao_ebd.routes.onboarding_routes import onboarding_bp
    from gestao_ebd.routes.proposal_routes import proposal_bp

    app.register_blueprint(proposal_bp)
    app.register_blueprint(commission_bp)
    app.register_blueprint(onboarding_bp)


def _register_error_handlers(app: Flask) -> None:
    from gestao_ebd.errors import AppError, IntegrationError, SystemError, classify_remote_failure, extract_remote_error_message
    from gestao_ebd.integrations.gateway import RemoteProcedureError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

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

    @app.errorhandler(RemoteProcedureError)
    def _handle_remote_error(exc: RemoteProcedureError):
        request_id = ensure_request_id()
        code, http_status = classify_remote_failure(str(exc))
        mapped = IntegrationError(
            code=code,
            http_status=http_status,
            critical=False,
            details=extract_remote_error_message(str(exc)),
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


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from gestao_ebd.application.services import services

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        registry = services()
        return {
            "status": "ok",
            "db": backend,
            "remote_mode": app.config.get("REMOTE_MODE", "mock"),
            "change_feed_subscribers": registry.change_feed.subscriber_count(),
        }, 200
