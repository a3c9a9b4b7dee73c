import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, request
from werkzeug.exceptions import HTTPException

# Models first: module models import Base from here.
from app.ums import models as _models  # noqa: F401
from app.ums.auth import load_current_user
from app.ums.config import load_config
from app.ums.db import init_db, teardown_db_session
from app.ums.errors import InfrastructureError
from app.ums.events import install_dispatch
from app.ums.modules.accounts.api import bp as accounts_bp
from app.ums.modules.notifications.api import bp as notifications_bp
from app.ums.modules.notifications.email import EmailSender, sender_from_config
from app.ums.modules.notifications.service import NotificationDispatcher
from app.ums.modules.password_changes.api import bp as password_changes_bp
from app.ums.responses import error_response
from app.ums.routes import bp as routes_bp
from app.ums.security import PasswordHasher


def create_app(*, email_sender: EmailSender | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")
    logging.getLogger("app.ums").setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Collaborators are built once per app and shared through app.extensions.
    sm = app.extensions["sqlalchemy_sessionmaker"]
    sender = email_sender if email_sender is not None else sender_from_config(app.config)
    if email_sender is None and not sender.configured:
        app.logger.warning("SMTP not configured (SMTP_SERVER/EMAIL_FROM); emails will be skipped")
    dispatcher = NotificationDispatcher(sm, sender)
    install_dispatch(sm, dispatcher.handle)

    app.extensions["password_hasher"] = PasswordHasher(app.config.get("PASSWORD_HASH_METHOD") or "scrypt")
    app.extensions["email_sender"] = sender
    app.extensions["notification_dispatcher"] = dispatcher

    app.register_blueprint(routes_bp)
    app.register_blueprint(accounts_bp, url_prefix="/api")
    app.register_blueprint(password_changes_bp, url_prefix="/api")
    app.register_blueprint(notifications_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _request_id_header(resp):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    @app.errorhandler(InfrastructureError)
    def _err_infrastructure(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Store failure on %s %s (request_id=%s): %s", request.method, request.path, getattr(g, "request_id", None), e)
        return error_response(500, "internal_error", "An unexpected error occurred.")

    @app.errorhandler(HTTPException)
    def _err_http(e):  # type: ignore[no-redef]
        if e.code == 403:
            app.logger.warning(
                "Forbidden: missing_role=%s request_id=%s",
                getattr(g, "missing_role", None),
                getattr(g, "request_id", None),
            )
        kind = (e.name or "error").lower().replace(" ", "_")
        return error_response(e.code or 500, kind, e.description or e.name)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response(500, "internal_error", "An unexpected error occurred.")

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
