"""
Utility functions shared by the blueprints.

Role checks, client address lookup and the audit trail live here so the
HTML views and the JSON API record actions the same way.
"""
from __future__ import annotations

from functools import wraps

from flask import abort, has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import TransactionLog


def roles_required(*roles: str):
    """Require the current user to have one of the given role names.

    Usage:
        @login_required
        @roles_required("admin")
        def view(...):
            ...
    """

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            # Anonymous users are handled by @login_required.
            if not current_user.is_authenticated:
                abort(401)
            if roles and getattr(current_user, "role_key", None) not in roles:
                abort(403)
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def get_client_ip() -> str | None:
    """Best-effort client IP for audit logs."""
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.remote_addr


def log_action(
    action: str,
    *,
    user=None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    meta: dict | None = None,
) -> None:
    """Record an action in the transaction log.

    `user` defaults to the signed-in user.  API requests authenticate with
    bearer tokens and pass their account explicitly.  Nothing is written
    for anonymous callers.

    Args:
        action: A description of the action performed.
    """
    if user is None and current_user.is_authenticated:
        user = current_user
    if user is None:
        return

    user_agent = None
    if has_request_context():
        user_agent = (request.user_agent.string or "")[:255] or None

    db.session.add(
        TransactionLog(
            user_id=user.id,
            username=user.username,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip_address=get_client_ip(),
            user_agent=user_agent,
            meta=meta,
        )
    )
    db.session.commit()


def page_args(default_size: int = 20, max_size: int = 100) -> tuple[int, int]:
    """Read ``page`` and ``limit`` from the query string, clamped to sane values."""
    page = request.args.get("page", 1, type=int) or 1
    limit = request.args.get("limit", default_size, type=int) or default_size
    return max(page, 1), min(max(limit, 1), max_size)
