"""
JSON API blueprint, mounted at ``/api``.

Every response uses the same envelope::

    {"success": true, "data": ...}
    {"success": false, "error": "..."}

Clients authenticate with ``Authorization: Bearer <token>`` where the token
comes from ``POST /api/auth/login``.  The blueprint is exempt from CSRF;
session cookies are not consulted here.
"""
from __future__ import annotations

from datetime import date, datetime
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request

from .announcements import (
    create_announcement,
    delete_announcement,
    publish_announcement,
    serialize_announcement,
    sms_status,
    update_announcement,
)
from .constants import AuthMessages, ROLE_ADMIN
from .document_requests import (
    create_request,
    get_request_or_404,
    list_document_types,
    serialize_request,
    transition,
)
from .errors import NotFound, SmartliasError, ValidationError
from .extensions import db, limiter
from .helpers import log_action, page_args
from .models import Announcement, DocumentRequest
from .repositories import get_resident_repository, transform_for_storage
from .services import (
    authenticate,
    change_mpin,
    check_username,
    create_resident_account,
    issue_api_token,
    load_api_token,
    plan_resident_account,
    revoke_api_tokens,
)

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _auth_limit() -> str:
    return current_app.config.get("RATELIMIT_AUTH", "50 per 2 hours")


def _mpin_change_limit() -> str:
    return current_app.config.get("RATELIMIT_MPIN_CHANGE", "50 per 2 hours")


def ok(data=None, status: int = 200, message: str | None = None):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def fail(error: str, status: int, **extra):
    body = {"success": False, "error": error}
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _plain(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _resident_json(record: dict) -> dict:
    return {key: _plain(value) for key, value in record.items()}


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def token_required(*roles: str, allow_pending_mpin: bool = False):
    """Authenticate the request from its bearer token.

    The account is stored on ``g.api_user``.  Accounts still on a default
    MPIN may only reach endpoints marked ``allow_pending_mpin``.
    """

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            account = load_api_token(_bearer_token())
            if account is None:
                return fail(AuthMessages.UNAUTHORIZED, 401)
            if roles and account.role_key not in roles:
                return fail(AuthMessages.FORBIDDEN, 403)
            if account.must_change_mpin and not allow_pending_mpin:
                return fail(AuthMessages.PIN_CHANGE_REQUIRED, 403, must_change_mpin=True)
            g.api_user = account
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


@api_bp.errorhandler(SmartliasError)
def handle_domain_error(exc: SmartliasError):
    return fail(exc.message, exc.status_code, fields=exc.fields or None)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@api_bp.post("/auth/check-username")
@limiter.limit(_auth_limit)
def api_check_username():
    data = _json_body()
    result = check_username(data.get("username"))
    if not result.success:
        return fail(result.error, result.status, field=result.field)
    return ok({"username": result.user.username})


@api_bp.post("/auth/login")
@limiter.limit(_auth_limit)
def api_login():
    data = _json_body()
    username = data.get("username")
    mpin = data.get("pin") or data.get("mpin")
    if not username or not mpin:
        return fail(AuthMessages.MISSING_REQUIRED_FIELDS, 400)

    result = authenticate(username, mpin)
    if not result.success:
        return fail(
            result.error,
            result.status,
            field=result.field,
            remaining_attempts=result.remaining_attempts,
            locked_minutes=result.locked_minutes or None,
        )

    account = result.user
    log_action("Logged in (API)", user=account, entity_type="user", entity_id=account.id)
    return ok(
        {
            "token": issue_api_token(account),
            "user": account.public_info(),
            "must_change_mpin": result.must_change_mpin,
        },
        message=AuthMessages.LOGIN_SUCCESS,
    )


@api_bp.post("/auth/logout")
@token_required(allow_pending_mpin=True)
def api_logout():
    account = revoke_api_tokens(g.api_user)
    log_action("Logged out (API)", user=account, entity_type="user", entity_id=account.id)
    return ok(None, message="Logged out")


@api_bp.get("/auth/session")
@token_required(allow_pending_mpin=True)
def api_session():
    return ok({"user": g.api_user.public_info()})


@api_bp.post("/auth/change-mpin")
@token_required(allow_pending_mpin=True)
@limiter.limit(_mpin_change_limit)
def api_change_mpin():
    data = _json_body()
    account = change_mpin(
        g.api_user,
        data.get("current_pin") or data.get("current_mpin"),
        data.get("new_pin") or data.get("new_mpin"),
        data.get("confirm_pin") or data.get("confirm_mpin"),
    )
    log_action("Changed own PIN (API)", user=account, entity_type="user", entity_id=account.id)
    # The old token was revoked by the version bump
    return ok(
        {"token": issue_api_token(account), "user": account.public_info()},
        message=AuthMessages.PIN_CHANGE_SUCCESS,
    )


# ---------------------------------------------------------------------------
# Residents
# ---------------------------------------------------------------------------


@api_bp.get("/residents")
@token_required("admin")
def api_list_residents():
    page, limit = page_args(
        int(current_app.config.get("DEFAULT_PAGE_SIZE", 20)),
        int(current_app.config.get("API_MAX_PAGE_SIZE", 100)),
    )
    result = get_resident_repository().find_all(request.args.get("search", ""), page, limit)
    result["residents"] = [_resident_json(r) for r in result["residents"]]
    return ok(result)


@api_bp.post("/residents")
@token_required("admin")
def api_create_resident():
    data = _json_body()
    residents = get_resident_repository()
    if data.get("create_account"):
        plan_resident_account(transform_for_storage(data), residents.users)
    resident = residents.create(data)
    account_info = None
    if data.get("create_account"):
        account, _ = create_resident_account(resident, residents.users, residents)
        account_info = {"username": account.username, "must_change_mpin": True}
        resident = residents.find_by_id(resident["id"])
    log_action(
        f"Added resident {resident['full_name']}",
        user=g.api_user,
        entity_type="resident",
        entity_id=resident["id"],
    )
    payload = _resident_json(resident)
    if account_info:
        payload["account"] = account_info
    return ok(payload, 201, message="Resident created")


@api_bp.get("/residents/stats")
@token_required("admin")
def api_resident_stats():
    return ok(get_resident_repository().get_stats())


@api_bp.get("/residents/<int:resident_id>")
@token_required("admin")
def api_get_resident(resident_id: int):
    resident = get_resident_repository().find_by_id(resident_id)
    if resident is None:
        raise NotFound("Resident not found.")
    return ok(_resident_json(resident))


@api_bp.put("/residents/<int:resident_id>")
@token_required("admin")
def api_update_resident(resident_id: int):
    data = _json_body()
    resident = get_resident_repository().update(resident_id, data)
    if resident is None:
        raise NotFound("Resident not found.")
    log_action(
        f"Updated resident {resident['full_name']}",
        user=g.api_user,
        entity_type="resident",
        entity_id=resident_id,
        meta={"fields": sorted(data)},
    )
    return ok(_resident_json(resident), message="Resident updated")


@api_bp.delete("/residents/<int:resident_id>")
@token_required("admin")
def api_delete_resident(resident_id: int):
    if not get_resident_repository().delete(resident_id):
        raise NotFound("Resident not found.")
    log_action("Deactivated resident", user=g.api_user, entity_type="resident", entity_id=resident_id)
    return ok(None, message="Resident deactivated")


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------


def _announcement_or_404(announcement_id: int, *, published_only: bool = False) -> Announcement:
    announcement = db.session.get(Announcement, announcement_id)
    if announcement is None or (published_only and not announcement.published_at):
        raise NotFound("Announcement not found.")
    return announcement


@api_bp.get("/announcements")
@token_required()
def api_list_announcements():
    query = Announcement.query
    status = request.args.get("status")
    if g.api_user.role != ROLE_ADMIN or status == "published":
        query = query.filter(Announcement.published_at.isnot(None))
    elif status == "draft":
        query = query.filter(Announcement.published_at.is_(None))

    page, limit = page_args(
        int(current_app.config.get("DEFAULT_PAGE_SIZE", 20)),
        int(current_app.config.get("API_MAX_PAGE_SIZE", 100)),
    )
    pagination = db.paginate(
        query.order_by(Announcement.created_at.desc(), Announcement.id.desc()),
        page=page,
        per_page=limit,
        error_out=False,
    )
    return ok(
        {
            "announcements": [serialize_announcement(a) for a in pagination.items],
            "total": pagination.total,
            "page": page,
            "limit": limit,
        }
    )


@api_bp.post("/announcements")
@token_required("admin")
def api_create_announcement():
    announcement = create_announcement(_json_body(), g.api_user.id)
    log_action(
        f"Created announcement '{announcement.title}'",
        user=g.api_user,
        entity_type="announcement",
        entity_id=announcement.id,
    )
    return ok(serialize_announcement(announcement), 201, message="Announcement created")


@api_bp.get("/announcements/<int:announcement_id>")
@token_required()
def api_get_announcement(announcement_id: int):
    announcement = _announcement_or_404(announcement_id, published_only=g.api_user.role != ROLE_ADMIN)
    return ok(serialize_announcement(announcement))


@api_bp.put("/announcements/<int:announcement_id>")
@token_required("admin")
def api_update_announcement(announcement_id: int):
    announcement = _announcement_or_404(announcement_id)
    data = _json_body()
    if set(data) - {"status"}:
        update_announcement(announcement, data)
        log_action(
            f"Updated announcement '{announcement.title}'",
            user=g.api_user,
            entity_type="announcement",
            entity_id=announcement.id,
        )

    payload = serialize_announcement(announcement)
    if data.get("status") == "published":
        status = publish_announcement(announcement, g.api_user.id)
        log_action(
            f"Published announcement '{announcement.title}'",
            user=g.api_user,
            entity_type="announcement",
            entity_id=announcement.id,
            meta=status,
        )
        payload = serialize_announcement(announcement)
        payload["sms_status"] = status
        return ok(payload, message="Announcement published")
    return ok(payload, message="Announcement updated")


@api_bp.delete("/announcements/<int:announcement_id>")
@token_required("admin")
def api_delete_announcement(announcement_id: int):
    announcement = _announcement_or_404(announcement_id)
    title = announcement.title
    delete_announcement(announcement)
    log_action(f"Deleted announcement '{title}'", user=g.api_user, entity_type="announcement", entity_id=announcement_id)
    return ok(None, message="Announcement deleted")


@api_bp.get("/announcements/<int:announcement_id>/sms-status")
@token_required("admin")
def api_announcement_sms_status(announcement_id: int):
    return ok(sms_status(_announcement_or_404(announcement_id)))


# ---------------------------------------------------------------------------
# Document requests
# ---------------------------------------------------------------------------


@api_bp.get("/document-types")
@token_required()
def api_document_types():
    return ok(
        [
            {"id": t.id, "name": t.name, "description": t.description, "fee": float(t.fee or 0)}
            for t in list_document_types()
        ]
    )


def _own_resident_id() -> int | None:
    resident = get_resident_repository().find_by_user_id(g.api_user.id)
    return resident["id"] if resident else None


@api_bp.get("/document-requests")
@token_required()
def api_list_document_requests():
    query = DocumentRequest.query
    if g.api_user.role == ROLE_ADMIN:
        status = request.args.get("status")
        if status:
            query = query.filter(DocumentRequest.status == status)
        resident_id = request.args.get("resident_id", type=int)
        if resident_id:
            query = query.filter(DocumentRequest.resident_id == resident_id)
    else:
        query = query.filter(DocumentRequest.resident_id == _own_resident_id())

    page, limit = page_args(
        int(current_app.config.get("DEFAULT_PAGE_SIZE", 20)),
        int(current_app.config.get("API_MAX_PAGE_SIZE", 100)),
    )
    pagination = db.paginate(
        query.order_by(DocumentRequest.created_at.desc(), DocumentRequest.id.desc()),
        page=page,
        per_page=limit,
        error_out=False,
    )
    return ok(
        {
            "requests": [serialize_request(r) for r in pagination.items],
            "total": pagination.total,
            "page": page,
            "limit": limit,
        }
    )


@api_bp.post("/document-requests")
@token_required()
def api_create_document_request():
    data = _json_body()
    if g.api_user.role == ROLE_ADMIN:
        resident_id = data.get("resident_id")
        if not resident_id:
            raise ValidationError("resident_id is required.", fields={"resident_id": "Required."})
    else:
        resident_id = _own_resident_id()
        if resident_id is None:
            raise NotFound("No resident record is linked to this account.")

    doc_request = create_request(resident_id, data.get("document_type_id"), data.get("purpose"), g.api_user)
    log_action(
        f"Filed {doc_request.document_type.name} request {doc_request.reference_no}",
        user=g.api_user,
        entity_type="document_request",
        entity_id=doc_request.id,
    )
    return ok(serialize_request(doc_request), 201, message="Request submitted")


@api_bp.put("/document-requests/<int:request_id>")
@token_required("admin")
def api_update_document_request(request_id: int):
    data = _json_body()
    doc_request = get_request_or_404(request_id)
    previous = doc_request.status
    transition(doc_request, data.get("status"), g.api_user, data.get("remarks"))
    log_action(
        f"Request {doc_request.reference_no}: {previous} -> {doc_request.status}",
        user=g.api_user,
        entity_type="document_request",
        entity_id=doc_request.id,
    )
    return ok(serialize_request(doc_request), message="Request updated")
