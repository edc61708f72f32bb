"""
Application entry point for SMARTLIAS, the barangay resident-services portal.

This module creates the Flask application, loads configuration, initializes
extensions, and registers blueprints.  Running `flask --app wsgi run`
starts the development server.
"""
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone

import click
from dotenv import load_dotenv
from flask import Flask, flash, g, jsonify, redirect, request, session, url_for
from flask_login import current_user, logout_user
from flask_mail import Message
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, NotFound as HTTPNotFound
from werkzeug.security import generate_password_hash

from .admin import admin_bp
from .api import api_bp
from .auth import auth_bp
from .config import DevelopmentConfig
from .constants import (
    DEFAULT_DOCUMENT_TYPES,
    HTTP_STATUS_MESSAGES,
    PASSWORD_NOT_CHANGED,
    ROLE_ADMIN,
    AuthMessages,
)
from .errors import NotFound, StorageError
from .extensions import csrf, db, limiter, login_manager, mail
from .repositories import get_resident_repository, get_user_repository
from .routes import main_bp
from .security import normalize_username, validate_mpin, validate_username
from .services import unlock_account
from .time_utils import format_local


def seed_document_types() -> int:
    """Insert the default document types that are missing.  Returns how many were added."""
    from .models import DocumentType

    added = 0
    for name, description, fee in DEFAULT_DOCUMENT_TYPES:
        if DocumentType.query.filter_by(name=name).first() is None:
            db.session.add(DocumentType(name=name, description=description, fee=fee))
            added += 1
    db.session.commit()
    return added


def _is_api_request() -> bool:
    return request.path.startswith("/api/") or request.path == "/api"


def create_app(config_class=DevelopmentConfig):
    """
    Application factory.  Creates and configures the Flask app instance.

    Args:
        config_class: The configuration class to use (e.g., DevelopmentConfig or ProductionConfig).
    Returns:
        A configured Flask app instance.
    """
    # .env from the working directory and/or the package directory
    load_dotenv(os.path.join(os.getcwd(), ".env"), override=False)
    load_dotenv(os.path.join(os.path.dirname(__file__), ".env"), override=False)

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Logging configuration
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(log_level)
    logging.getLogger("smartlias").setLevel(log_level)

    # Initialize extensions
    db.init_app(app)
    Migrate(app, db)
    # Mail is only used for error report emails
    mail.init_app(app)
    limiter.init_app(app)

    # CSRF applies to the HTML forms; the JSON API authenticates with bearer tokens.
    csrf.init_app(app)
    csrf.exempt(api_bp)

    login_manager.init_app(app)
    login_manager.login_view = "auth.login"
    login_manager.login_message = AuthMessages.UNAUTHORIZED
    login_manager.session_protection = "strong"

    @login_manager.user_loader
    def load_user(user_id: str):
        """Reload the signed-in account from the active user repository."""
        if not user_id:
            return None
        try:
            return get_user_repository().get(int(user_id))
        except (ValueError, TypeError):
            return None

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e: CSRFError):
        """Expired or missing form tokens send the user back to retry."""
        flash("Your form session expired. Please submit it again.", "danger")
        return redirect(request.referrer or url_for("main.index"))

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        """JSON envelope for API routes; the default HTML page elsewhere."""
        if e.code == 429:
            app.logger.warning("Rate limit hit: %s %s from %s", request.method, request.path, request.remote_addr)
        if not _is_api_request():
            return e
        if e.code == 429:
            message = AuthMessages.TOO_MANY_REQUESTS
        elif e.code == 401:
            message = AuthMessages.UNAUTHORIZED
        elif e.code == 403:
            message = AuthMessages.FORBIDDEN
        else:
            message = HTTP_STATUS_MESSAGES.get(e.code, e.name)
        return jsonify({"success": False, "error": message}), e.code

    @app.errorhandler(StorageError)
    def handle_storage_error(e: StorageError):
        app.logger.error("Storage failure: %s", e.message)
        if _is_api_request():
            return jsonify({"success": False, "error": e.message}), e.status_code
        return HTTP_STATUS_MESSAGES[500], 500

    @app.errorhandler(NotFound)
    def handle_missing_record(e: NotFound):
        if _is_api_request():
            return jsonify({"success": False, "error": e.message}), 404
        return HTTPNotFound(e.message)

    @app.context_processor
    def inject_helpers():
        def pagination_url(page: int):
            args = request.args.to_dict(flat=True)
            args["page"] = page
            return url_for(request.endpoint, **args, **(request.view_args or {}))

        return {"pagination_url": pagination_url, "ROLE_ADMIN": ROLE_ADMIN}

    @app.template_filter("local_dt")
    def local_dt(value, fmt: str = "%b %d, %Y %I:%M %p"):
        return format_local(value, app.config.get("DISPLAY_TIMEZONE", "Asia/Manila"), fmt)

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.request_start = time.time()
        # Echo back for clients
        request.environ["request_id"] = g.request_id

    @app.teardown_request
    def log_unhandled_exception(exc):
        if exc and not isinstance(exc, HTTPException):
            payload = {
                "event": "error",
                "request_id": getattr(g, "request_id", None),
                "path": request.path,
                "method": request.method,
                "error": str(exc),
            }
            if app.config.get("LOG_JSON", True):
                app.logger.error(json.dumps(payload), exc_info=exc)
            else:
                app.logger.error("Unhandled exception: %s", exc, exc_info=exc)

            report_to = str(app.config.get("ERROR_REPORT_EMAIL", "")).strip()
            if report_to:
                user_id = getattr(current_user, "id", None) if current_user.is_authenticated else None
                subject = f"[SMARTLIAS] Error {request.method} {request.path}"
                body = (
                    "An unhandled exception occurred.\n\n"
                    f"Time (UTC): {datetime.now(timezone.utc).isoformat()}\n"
                    f"Request ID: {getattr(g, 'request_id', None)}\n"
                    f"User ID: {user_id}\n"
                    f"Method: {request.method}\n"
                    f"Path: {request.path}\n"
                    f"IP: {request.remote_addr}\n"
                    f"User-Agent: {request.user_agent.string if request.user_agent else ''}\n"
                    f"Error: {exc}\n"
                )
                try:
                    mail.send(Message(subject=subject, recipients=[report_to], body=body))
                except OSError:
                    app.logger.exception("Failed to send error report email.")

    @app.after_request
    def log_request(response):
        duration_ms = None
        if hasattr(g, "request_start"):
            duration_ms = int((time.time() - g.request_start) * 1000)
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")

        user_id = getattr(current_user, "id", None) if current_user.is_authenticated else None
        api_user = getattr(g, "api_user", None)
        if api_user is not None:
            user_id = api_user.id
        payload = {
            "event": "request",
            "request_id": getattr(g, "request_id", None),
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "user_id": user_id,
        }
        if app.config.get("LOG_JSON", True):
            app.logger.info(json.dumps(payload))
        else:
            app.logger.info(
                "%s %s %s %sms user=%s",
                request.method,
                request.path,
                response.status_code,
                duration_ms,
                user_id,
            )
        return response

    @app.before_request
    def enforce_session_security():
        """Apply idle timeout and forced MPIN change checks."""
        if _is_api_request() or not current_user.is_authenticated:
            return

        endpoint = request.endpoint or ""
        if endpoint.startswith("static"):
            return

        idle_timeout = int(app.config.get("SESSION_IDLE_TIMEOUT_SECONDS", 0) or 0)
        if idle_timeout > 0:
            now_ts = int(time.time())
            last = session.get("last_activity")
            if last and now_ts - int(last) > idle_timeout:
                logout_user()
                session.pop("force_mpin_change", None)
                session.pop("last_activity", None)
                flash(AuthMessages.SESSION_EXPIRED, "warning")
                return redirect(url_for("auth.login"))
            session["last_activity"] = now_ts

        if session.get("force_mpin_change") or current_user.must_change_mpin:
            allowed = {"auth.change_mpin", "auth.logout", "main.home", "healthz"}
            if endpoint not in allowed:
                return redirect(url_for("auth.change_mpin"))

    @app.after_request
    def apply_security_headers(response):
        """Browser hardening headers for every response."""
        if app.config.get("SECURITY_HEADERS_ENABLED", True):
            csp = app.config.get("CSP")
            if csp:
                response.headers["Content-Security-Policy"] = csp
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "DENY"
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
            response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
            if request.is_secure:
                hsts = int(app.config.get("HSTS_SECONDS", 0) or 0)
                if hsts > 0:
                    response.headers["Strict-Transport-Security"] = f"max-age={hsts}; includeSubDomains"
        return response

    # Register blueprints
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(api_bp)

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        """Basic health check with DB connectivity."""
        db_ok = True
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            db.session.rollback()
            db_ok = False
        status = "ok" if db_ok else "degraded"
        code = 200 if db_ok else 503
        return jsonify(
            {
                "status": status,
                "db": db_ok,
                "mock_data": bool(app.config.get("USE_MOCK_DATA")),
                "time": datetime.now(timezone.utc).isoformat(),
            }
        ), code

    # -----------------------------------------------------------------
    # Database initialization
    # -----------------------------------------------------------------
    # Prefer `flask db upgrade` (Alembic) for real deployments.  Local and
    # demo setups auto-create tables and seed the document types.
    with app.app_context():
        from . import models  # noqa: F401  (registers tables on the metadata)

        try:
            db.engine.connect().close()
        except SQLAlchemyError as exc:
            app.logger.error("Database connection failed. Check DATABASE_URL / .env. Error: %s", exc)
            raise

        if app.config.get("AUTO_CREATE_DB", True):
            db.create_all()
            seed_document_types()

    # -----------------------------------------------------------------
    # CLI commands
    # -----------------------------------------------------------------

    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables and seed the default document types."""
        db.create_all()
        added = seed_document_types()
        click.echo(f"Database initialized ({added} document type(s) added).")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Load the demo accounts and residents into the active backend."""
        from .seed import DEMO_PASSWORD_STATUS, DEMO_RESIDENTS, DEMO_USERS

        db.create_all()
        seed_document_types()
        users = get_user_repository()
        residents = get_resident_repository()

        account_ids = {}
        for username, first_name, last_name, mpin, role in DEMO_USERS:
            account = users.find_by_username(username)
            if account is None:
                account = users.create(
                    username=username,
                    mpin_hash=generate_password_hash(mpin),
                    role=role,
                    first_name=first_name,
                    last_name=last_name,
                    is_password_changed=DEMO_PASSWORD_STATUS,
                )
                click.echo(f"Created account {username}")
            account_ids[username] = account.id

        existing = {(r["first_name"], r["last_name"]) for r in residents.list_active()}
        for record in DEMO_RESIDENTS:
            if (record["first_name"], record["last_name"]) in existing:
                continue
            data = {k: v for k, v in record.items() if k != "username"}
            data["user_id"] = account_ids.get(record.get("username"))
            residents.create(data)
            click.echo(f"Created resident {record['last_name']}, {record['first_name']}")
        click.echo("Demo data ready.")

    @app.cli.command("create-admin")
    @click.option("--username", prompt=True)
    @click.option("--mpin", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--first-name", default="Barangay")
    @click.option("--last-name", default="Admin")
    def create_admin_command(username: str, mpin: str, first_name: str, last_name: str):
        """Create a staff account.  The PIN must be changed on first login."""
        username = normalize_username(username)
        error = validate_username(username) or validate_mpin(mpin)
        if error:
            raise click.BadParameter(error)
        users = get_user_repository()
        if users.find_by_username(username):
            raise click.BadParameter(f"Username '{username}' is already taken.")
        users.create(
            username=username,
            mpin_hash=generate_password_hash(mpin),
            role=ROLE_ADMIN,
            first_name=first_name,
            last_name=last_name,
            is_password_changed=PASSWORD_NOT_CHANGED,
        )
        click.echo(f"Admin account '{username}' created.")

    @app.cli.command("unlock-account")
    @click.argument("username")
    def unlock_account_command(username: str):
        """Clear failed attempts and any lockout for USERNAME."""
        users = get_user_repository()
        account = users.find_by_username(username)
        if account is None:
            raise click.BadParameter(f"No account named '{username}'.")
        unlock_account(account, users)
        click.echo(f"Account '{account.username}' unlocked.")

    return app
