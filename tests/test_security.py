from datetime import date, datetime, timedelta
from types import SimpleNamespace

from smartlias.constants import AuthMessages
from smartlias.security import (
    calculate_age,
    default_mpin_from_birthdate,
    generate_username_from_name,
    is_account_locked,
    minutes_until_unlock,
    should_lock_account,
    should_reset_attempts,
    validate_mpin,
    validate_new_mpin,
    validate_username,
)

NOW = datetime(2025, 1, 10, 8, 0, 0)


def test_validate_username_rules():
    assert validate_username("juan.delacruz") is None
    assert validate_username("  Juan.DelaCruz ") is None
    assert validate_username("") == AuthMessages.USERNAME_REQUIRED
    assert validate_username("ab") == AuthMessages.USERNAME_TOO_SHORT
    assert validate_username("a" * 51) == AuthMessages.USERNAME_TOO_LONG
    assert validate_username("juan dela") == AuthMessages.USERNAME_INVALID_FORMAT
    assert validate_username(123) == AuthMessages.USERNAME_INVALID_FORMAT
    assert validate_username(["juan.delacruz"]) == AuthMessages.USERNAME_INVALID_FORMAT


def test_validate_mpin_rules():
    assert validate_mpin("031590") is None
    assert validate_mpin(None) == AuthMessages.PIN_REQUIRED
    assert validate_mpin("12345") == AuthMessages.PIN_INVALID_LENGTH
    assert validate_mpin("12a456") == AuthMessages.PIN_INVALID_FORMAT
    assert validate_mpin(246810) == AuthMessages.PIN_INVALID_FORMAT
    # Non-ASCII digits are rejected
    assert validate_mpin("١٢٣٤٥٦") == AuthMessages.PIN_INVALID_FORMAT
    assert validate_new_mpin("111111", "222222") == AuthMessages.PIN_MISMATCH
    assert validate_new_mpin("111111", "111111") is None


def test_lockout_helpers():
    user = SimpleNamespace(failed_login_attempts=5, last_failed_login=NOW, locked_until=NOW + timedelta(minutes=15))
    assert should_lock_account(user, 5)
    assert is_account_locked(user, NOW)
    assert minutes_until_unlock(user, NOW + timedelta(minutes=14, seconds=30)) == 1
    assert not is_account_locked(user, NOW + timedelta(minutes=15))
    assert minutes_until_unlock(user, NOW + timedelta(minutes=16)) == 0

    fresh = SimpleNamespace(failed_login_attempts=4, last_failed_login=NOW, locked_until=None)
    assert not should_lock_account(fresh, 5)
    assert not should_reset_attempts(fresh, NOW + timedelta(minutes=15), 15)
    assert should_reset_attempts(fresh, NOW + timedelta(minutes=16), 15)


def test_generate_username_avoids_collisions():
    assert generate_username_from_name("Juan", "Dela Cruz") == "juan.delacruz"
    taken = ["juan.delacruz", "juan.delacruz2"]
    assert generate_username_from_name("Juan", "Dela Cruz", taken) == "juan.delacruz3"
    assert generate_username_from_name("María-José", "O'Brien") == "mariajose.obrien"
    assert generate_username_from_name("Ñ", "Li") == "n.li"
    # Nothing usable is left of a non-Latin name
    assert generate_username_from_name("李", "王") == ""


def test_default_mpin_and_age():
    assert default_mpin_from_birthdate(date(1990, 3, 15)) == "031590"
    assert default_mpin_from_birthdate(None) is None
    assert calculate_age("1965-06-20", date(2025, 6, 19)) == 59
    assert calculate_age(date(1965, 6, 20), date(2025, 6, 20)) == 60
    assert calculate_age(date(2030, 1, 1), date(2025, 1, 1)) is None
    assert calculate_age("not-a-date") is None
