"""Credential format checks and account lockout rules.

Everything here is a pure function over plain values (or any object that
exposes the lockout attributes), so the rules behave the same whether the
account lives in the database or in the JSON mock files.

Lockout policy: an account is locked for ``lockout_minutes`` once it has
``max_attempts`` failed logins, and the failure counter starts over when
the last failure is older than ``window_minutes``.
"""
from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime, timedelta

from .constants import (
    MPIN_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    AuthMessages,
)

MAX_ATTEMPTS = 5
LOCKOUT_DURATION_MINUTES = 15
ATTEMPT_WINDOW_MINUTES = 15

_USERNAME_RE = re.compile(r"^[a-z0-9._-]+$")
_NAME_PART_MAX = 20


def normalize_username(value: str | None) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def validate_username(value: str | None) -> str | None:
    """Return an error message for a malformed username, or None if valid."""
    if value is not None and not isinstance(value, str):
        return AuthMessages.USERNAME_INVALID_FORMAT
    username = normalize_username(value)
    if not username:
        return AuthMessages.USERNAME_REQUIRED
    if len(username) < USERNAME_MIN_LENGTH:
        return AuthMessages.USERNAME_TOO_SHORT
    if len(username) > USERNAME_MAX_LENGTH:
        return AuthMessages.USERNAME_TOO_LONG
    if not _USERNAME_RE.match(username):
        return AuthMessages.USERNAME_INVALID_FORMAT
    return None


def validate_mpin(value: str | None) -> str | None:
    """Return an error message for a malformed MPIN, or None if valid."""
    if not value:
        return AuthMessages.PIN_REQUIRED
    if not isinstance(value, str):
        return AuthMessages.PIN_INVALID_FORMAT
    if len(value) != MPIN_LENGTH:
        return AuthMessages.PIN_INVALID_LENGTH
    if not value.isdigit() or not value.isascii():
        return AuthMessages.PIN_INVALID_FORMAT
    return None


def validate_new_mpin(new_mpin: str | None, confirm_mpin: str | None) -> str | None:
    error = validate_mpin(new_mpin)
    if error:
        return error
    if new_mpin != confirm_mpin:
        return AuthMessages.PIN_MISMATCH
    return None


def is_account_locked(user, now: datetime) -> bool:
    locked_until = getattr(user, "locked_until", None)
    if not locked_until:
        return False
    return now < locked_until


def should_lock_account(user, max_attempts: int = MAX_ATTEMPTS) -> bool:
    return (getattr(user, "failed_login_attempts", 0) or 0) >= max_attempts


def should_reset_attempts(user, now: datetime, window_minutes: int = ATTEMPT_WINDOW_MINUTES) -> bool:
    last_attempt = getattr(user, "last_failed_login", None)
    if not last_attempt:
        return False
    return now - last_attempt > timedelta(minutes=window_minutes)


def lockout_end_time(now: datetime, lockout_minutes: int = LOCKOUT_DURATION_MINUTES) -> datetime:
    return now + timedelta(minutes=lockout_minutes)


def minutes_until_unlock(user, now: datetime) -> int:
    if not is_account_locked(user, now):
        return 0
    remaining = (user.locked_until - now).total_seconds() / 60
    return max(1, math.ceil(remaining))


def clean_name_for_username(name: str | None) -> str:
    """Lower-case a name and keep ASCII letters only, capped at 20 characters.

    Accented letters are folded to their base letter (``Ñ`` becomes ``n``).
    """
    if not name:
        return ""
    folded = unicodedata.normalize("NFKD", name.strip().lower()).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z]", "", folded)[:_NAME_PART_MAX]


def find_available_username(base_username: str, existing_usernames) -> str:
    taken = {u.lower() for u in existing_usernames if u}
    if base_username not in taken:
        return base_username
    increment = 2
    while f"{base_username}{increment}" in taken:
        increment += 1
    return f"{base_username}{increment}"


def generate_username_from_name(first_name: str, last_name: str, existing_usernames=()) -> str:
    """Build a ``first.last`` username that does not collide with ``existing_usernames``."""
    base = f"{clean_name_for_username(first_name)}.{clean_name_for_username(last_name)}"
    return find_available_username(base.strip("."), existing_usernames)


def default_mpin_from_birthdate(birth_date: date | None) -> str | None:
    """Initial MPIN for a new resident account: birth date as MMDDYY."""
    if not birth_date:
        return None
    return birth_date.strftime("%m%d%y")


def calculate_age(birth_date, today: date | None = None) -> int | None:
    """Whole years between ``birth_date`` and ``today``; None when unknown or in the future."""
    if not birth_date:
        return None
    if isinstance(birth_date, str):
        try:
            birth_date = date.fromisoformat(birth_date[:10])
        except ValueError:
            return None
    if isinstance(birth_date, datetime):
        birth_date = birth_date.date()
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age if age >= 0 else None
