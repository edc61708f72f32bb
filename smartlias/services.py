"""Authentication and account services.

The login flow is shared by the HTML and JSON surfaces:

1. `check_username` validates the format and confirms the account exists.
2. `authenticate` checks the MPIN and applies the lockout rules from
   `security.py`, persisting the failure counter through the user
   repository (database or JSON files).
3. Accounts still on their default MPIN must call `change_mpin` before
   doing anything else.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .constants import PASSWORD_CHANGED, PASSWORD_NOT_CHANGED, ROLE_RESIDENT, AuthMessages
from .errors import ValidationError
from .repositories import Account, ResidentRepository, UserRepository, get_resident_repository, get_user_repository
from .security import (
    ATTEMPT_WINDOW_MINUTES,
    LOCKOUT_DURATION_MINUTES,
    MAX_ATTEMPTS,
    default_mpin_from_birthdate,
    generate_username_from_name,
    is_account_locked,
    lockout_end_time,
    minutes_until_unlock,
    should_lock_account,
    should_reset_attempts,
    validate_mpin,
    validate_new_mpin,
    validate_username,
)
from .time_utils import utcnow

logger = logging.getLogger(__name__)

TOKEN_SALT = "smartlias-api-token"


@dataclass
class AuthResult:
    success: bool
    error: str | None = None
    status: int = 200
    user: Account | None = None
    field: str | None = None
    must_change_mpin: bool = False
    locked_minutes: int = 0
    remaining_attempts: int | None = None


def _lockout_settings() -> tuple[int, int, int]:
    config = current_app.config
    return (
        int(config.get("LOGIN_MAX_ATTEMPTS", MAX_ATTEMPTS)),
        int(config.get("LOGIN_ATTEMPT_WINDOW_MINUTES", ATTEMPT_WINDOW_MINUTES)),
        int(config.get("LOGIN_LOCKOUT_MINUTES", LOCKOUT_DURATION_MINUTES)),
    )


def check_username(username: str | None, users: UserRepository | None = None) -> AuthResult:
    error = validate_username(username)
    if error:
        return AuthResult(False, error, 422, field="username")
    users = users or get_user_repository()
    account = users.find_by_username(username)
    if account is None:
        return AuthResult(False, AuthMessages.USERNAME_NOT_FOUND, 404, field="username")
    return AuthResult(True, user=account)


def authenticate(
    username: str | None,
    mpin: str | None,
    *,
    now: datetime | None = None,
    users: UserRepository | None = None,
) -> AuthResult:
    """Verify a username/MPIN pair and update the account's lockout state."""
    error = validate_username(username)
    if error:
        return AuthResult(False, error, 422, field="username")
    error = validate_mpin(mpin)
    if error:
        return AuthResult(False, error, 422, field="pin")

    users = users or get_user_repository()
    account = users.find_by_username(username)
    if account is None:
        return AuthResult(False, AuthMessages.INVALID_CREDENTIALS, 401, field="username")

    now = now or utcnow()
    max_attempts, window_minutes, lockout_minutes = _lockout_settings()

    if is_account_locked(account, now):
        minutes = minutes_until_unlock(account, now)
        return AuthResult(
            False, AuthMessages.ACCOUNT_LOCKED.format(minutes=minutes), 423, field="pin", locked_minutes=minutes
        )

    # A stale failure streak or an expired lock starts the count over
    if should_reset_attempts(account, now, window_minutes) or account.locked_until:
        users.update(account, failed_login_attempts=0, locked_until=None)

    if not check_password_hash(account.mpin_hash, mpin):
        users.update(
            account,
            failed_login_attempts=(account.failed_login_attempts or 0) + 1,
            last_failed_login=now,
        )
        if should_lock_account(account, max_attempts):
            users.update(account, locked_until=lockout_end_time(now, lockout_minutes))
            logger.warning("Account %s locked after %s failed attempts.", account.username, account.failed_login_attempts)
            return AuthResult(
                False,
                AuthMessages.ACCOUNT_LOCKED.format(minutes=lockout_minutes),
                423,
                field="pin",
                locked_minutes=lockout_minutes,
            )
        return AuthResult(
            False,
            AuthMessages.INVALID_CREDENTIALS,
            401,
            field="pin",
            remaining_attempts=max_attempts - account.failed_login_attempts,
        )

    users.update(account, failed_login_attempts=0, last_failed_login=None, locked_until=None, last_login=now)
    return AuthResult(True, user=account, must_change_mpin=account.must_change_mpin)


def change_mpin(
    account: Account,
    current_mpin: str | None,
    new_mpin: str | None,
    confirm_mpin: str | None,
    users: UserRepository | None = None,
) -> Account:
    """Replace the account's MPIN.  Raises ValidationError with a user-facing message."""
    if not isinstance(current_mpin, str) or not check_password_hash(account.mpin_hash, current_mpin):
        raise ValidationError(AuthMessages.PIN_CURRENT_INCORRECT, fields={"current_mpin": AuthMessages.PIN_CURRENT_INCORRECT})
    error = validate_new_mpin(new_mpin, confirm_mpin)
    if error:
        raise ValidationError(error, fields={"new_mpin": error})
    if new_mpin == current_mpin:
        raise ValidationError(AuthMessages.PIN_SAME_AS_CURRENT, fields={"new_mpin": AuthMessages.PIN_SAME_AS_CURRENT})

    users = users or get_user_repository()
    return users.update(
        account,
        mpin_hash=generate_password_hash(new_mpin),
        is_password_changed=PASSWORD_CHANGED,
        token_version=account.token_version + 1,
    )


def unlock_account(account: Account, users: UserRepository | None = None) -> Account:
    users = users or get_user_repository()
    return users.update(account, failed_login_attempts=0, last_failed_login=None, locked_until=None)


def reset_mpin(account: Account, users: UserRepository | None = None) -> str:
    """Give the account a random temporary MPIN that must be changed on next login."""
    users = users or get_user_repository()
    temporary = f"{secrets.randbelow(10 ** 6):06d}"
    users.update(
        account,
        mpin_hash=generate_password_hash(temporary),
        is_password_changed=PASSWORD_NOT_CHANGED,
        failed_login_attempts=0,
        last_failed_login=None,
        locked_until=None,
        token_version=account.token_version + 1,
    )
    return temporary


def plan_resident_account(resident: dict, users: UserRepository | None = None) -> tuple[str, str]:
    """Work out the username and initial MPIN for a resident without storing anything.

    The username is ``first.last`` (numbered on collision) and the initial
    MPIN is the birth date as MMDDYY.  Raises ValidationError when no
    usable login can be derived.
    """
    if resident.get("user_id"):
        raise ValidationError("This resident already has an account.")
    mpin = default_mpin_from_birthdate(resident.get("birth_date"))
    if mpin is None:
        raise ValidationError("A birth date is required to create an account.", fields={"birth_date": "Required."})

    users = users or get_user_repository()
    username = generate_username_from_name(resident.get("first_name"), resident.get("last_name"), users.list_usernames())
    if validate_username(username):
        message = "Could not derive a username from this name. Please visit the barangay office."
        raise ValidationError(message, fields={"first_name": message})
    return username, mpin


def create_resident_account(
    resident: dict,
    users: UserRepository | None = None,
    residents: ResidentRepository | None = None,
) -> tuple[Account, str]:
    """Create a login for a resident record.  Returns the account and its initial MPIN."""
    users = users or get_user_repository()
    residents = residents or get_resident_repository()
    username, mpin = plan_resident_account(resident, users)
    account = users.create(
        username=username,
        mpin_hash=generate_password_hash(mpin),
        role=ROLE_RESIDENT,
        first_name=resident.get("first_name"),
        last_name=resident.get("last_name"),
        is_password_changed=PASSWORD_NOT_CHANGED,
    )
    residents.update(resident["id"], {"user_id": account.id})
    logger.info("Created account %s for resident %s.", account.username, resident["id"])
    return account, mpin


def _token_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_api_token(account: Account) -> str:
    return _token_serializer().dumps({"uid": account.id, "ver": account.token_version})


def load_api_token(token: str | None, users: UserRepository | None = None) -> Account | None:
    """Return the account for a valid, unexpired, unrevoked token."""
    if not token:
        return None
    max_age = int(current_app.config.get("API_TOKEN_MAX_AGE_SECONDS", 24 * 60 * 60))
    try:
        payload = _token_serializer().loads(token, max_age=max_age)
    except BadSignature:
        return None
    if not isinstance(payload, dict):
        return None
    users = users or get_user_repository()
    account = users.get(payload.get("uid"))
    if account is None or account.token_version != payload.get("ver"):
        return None
    return account


def revoke_api_tokens(account: Account, users: UserRepository | None = None) -> Account:
    users = users or get_user_repository()
    return users.update(account, token_version=account.token_version + 1)
