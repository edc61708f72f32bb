"""
Administrative blueprint: sign-in accounts and the audit trail.

Staff can review every account, lift a lockout early and issue a
temporary MPIN.  Access is restricted to authenticated users with the
admin role.
"""
from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required
from sqlalchemy import or_

from .extensions import db
from .forms import DeleteForm
from .helpers import log_action, roles_required
from .models import TransactionLog
from .repositories import get_user_repository
from .routes import ListPage
from .security import is_account_locked
from .services import reset_mpin, unlock_account
from .time_utils import utcnow

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/audit")
@login_required
@roles_required("admin")
def audit_logs():
    """View recent audit log entries."""
    q = (request.args.get("q") or "").strip()
    page = request.args.get("page", 1, type=int)
    per_page = int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))
    query = TransactionLog.query
    if q:
        like = f"%{q}%"
        query = query.filter(or_(TransactionLog.action.ilike(like), TransactionLog.username.ilike(like)))
    query = query.order_by(TransactionLog.timestamp.desc(), TransactionLog.id.desc())
    pagination = db.paginate(query, page=page, per_page=per_page, error_out=False)
    return render_template("audit_logs.html", logs=pagination.items, q=q, pagination=pagination)


@admin_bp.route("/accounts")
@login_required
@roles_required("admin")
def list_accounts():
    """Display sign-in accounts with their lockout state."""
    q = (request.args.get("q") or "").strip().lower()
    page = request.args.get("page", 1, type=int)
    per_page = int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))

    accounts = sorted(get_user_repository().list_all(), key=lambda a: a.username)
    if q:
        accounts = [a for a in accounts if q in a.username or q in (a.display_name or "").lower()]
    start = (max(page, 1) - 1) * per_page
    pagination = ListPage(accounts[start:start + per_page], max(page, 1), per_page, len(accounts))

    now = utcnow()
    locked_ids = {a.id for a in pagination.items if is_account_locked(a, now)}
    return render_template(
        "accounts.html",
        accounts=pagination.items,
        locked_ids=locked_ids,
        q=q,
        pagination=pagination,
        action_form=DeleteForm(),
    )


def _account_or_404(user_id: int):
    account = get_user_repository().get(user_id)
    if account is None:
        abort(404)
    return account


@admin_bp.route("/accounts/<int:user_id>/unlock", methods=["POST"])
@login_required
@roles_required("admin")
def unlock(user_id: int):
    account = unlock_account(_account_or_404(user_id))
    log_action(f"Unlocked account '{account.username}'", entity_type="user", entity_id=account.id)
    flash(f"Account '{account.username}' unlocked.", "success")
    return redirect(url_for("admin.list_accounts"))


@admin_bp.route("/accounts/<int:user_id>/reset-mpin", methods=["POST"])
@login_required
@roles_required("admin")
def reset_account_mpin(user_id: int):
    account = _account_or_404(user_id)
    if account.id == current_user.id:
        flash("Use the Change PIN page to update your own PIN.", "warning")
        return redirect(url_for("admin.list_accounts"))
    temporary = reset_mpin(account)
    log_action(f"Reset PIN for '{account.username}'", entity_type="user", entity_id=account.id)
    flash(
        f"Temporary PIN for '{account.username}': {temporary}. "
        "Hand it to the resident in person; it must be changed on next login.",
        "info",
    )
    return redirect(url_for("admin.list_accounts"))
