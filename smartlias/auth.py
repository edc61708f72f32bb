"""
Authentication blueprint for the SMARTLIAS web pages.

Residents and staff sign in with a username and a 6-digit MPIN.  Failed
attempts are counted per account and lock it for a while (see
`services.authenticate`); the login route is also rate limited per client.
Accounts still on a default MPIN are held on the change-MPIN page until
they pick a new one.
"""
import time

from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user

from .constants import AuthMessages
from .errors import ValidationError
from .extensions import limiter
from .forms import ChangeMpinForm, LoginForm
from .helpers import log_action
from .services import authenticate, change_mpin as change_account_mpin

auth_bp = Blueprint("auth", __name__)


def _auth_limit() -> str:
    return current_app.config.get("RATELIMIT_AUTH", "50 per 2 hours")


def _mpin_change_limit() -> str:
    return current_app.config.get("RATELIMIT_MPIN_CHANGE", "50 per 2 hours")


def _safe_next(target: str | None) -> str | None:
    # Only same-site relative paths
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return None


@auth_bp.route("/login", methods=["GET", "POST"])
@limiter.limit(_auth_limit, methods=["POST"])
def login():
    """Render the login page and process login submissions."""
    if current_user.is_authenticated:
        return redirect(url_for("main.index"))

    form = LoginForm()
    if form.validate_on_submit():
        result = authenticate(form.username.data, form.mpin.data)
        if not result.success:
            message = result.error
            if result.remaining_attempts is not None:
                message = f"{message}. {result.remaining_attempts} attempt(s) left before the account is locked."
            flash(message, "danger")
            return render_template("login.html", form=form), result.status

        account = result.user
        login_user(account)
        session.permanent = True
        session["last_activity"] = int(time.time())
        log_action("Logged in", user=account, entity_type="user", entity_id=account.id)

        if result.must_change_mpin:
            session["force_mpin_change"] = True
            flash("Please change your default PIN before continuing.", "warning")
            return redirect(url_for("auth.change_mpin"))

        session.pop("force_mpin_change", None)
        flash(AuthMessages.LOGIN_SUCCESS, "success")
        return redirect(_safe_next(request.args.get("next")) or url_for("main.index"))
    return render_template("login.html", form=form)


@auth_bp.route("/logout")
@login_required
def logout():
    """Log the current user out and redirect to the login page."""
    log_action("Logged out", entity_type="user", entity_id=current_user.id)
    logout_user()
    session.pop("force_mpin_change", None)
    session.pop("last_activity", None)
    flash("You have been logged out.", "success")
    return redirect(url_for("auth.login"))


@auth_bp.route("/change-mpin", methods=["GET", "POST"])
@login_required
@limiter.limit(_mpin_change_limit, methods=["POST"])
def change_mpin():
    """Allow a signed-in user to replace their MPIN."""
    form = ChangeMpinForm()
    forced = bool(session.get("force_mpin_change"))
    if form.validate_on_submit():
        try:
            change_account_mpin(
                current_user._get_current_object(),
                form.current_mpin.data,
                form.new_mpin.data,
                form.confirm_mpin.data,
            )
        except ValidationError as exc:
            flash(exc.message, "danger")
        else:
            session.pop("force_mpin_change", None)
            log_action("Changed own PIN", entity_type="user", entity_id=current_user.id)
            flash(AuthMessages.PIN_CHANGE_SUCCESS, "success")
            return redirect(url_for("main.index"))
    return render_template("change_mpin.html", form=form, forced=forced)
