from datetime import date, timedelta

import pytest
from werkzeug.security import generate_password_hash

from smartlias.constants import PASSWORD_CHANGED
from smartlias.errors import ValidationError
from smartlias.repositories import (
    JsonResidentBackend,
    JsonUserRepository,
    ResidentRepository,
    SqlResidentBackend,
    SqlUserRepository,
)
from smartlias.services import authenticate, create_resident_account, plan_resident_account
from smartlias.time_utils import utcnow


@pytest.fixture
def sql_users(db_session):
    return SqlUserRepository()


@pytest.fixture
def json_users(tmp_path):
    return JsonUserRepository(str(tmp_path / "users.json"))


@pytest.fixture(params=["sql_users", "json_users"])
def users(request):
    repo = request.getfixturevalue(request.param)
    repo.create(
        username="rosa.lim",
        mpin_hash=generate_password_hash("482913"),
        first_name="Rosa",
        last_name="Lim",
        is_password_changed=PASSWORD_CHANGED,
    )
    return repo


def _fail(users, now):
    return authenticate("rosa.lim", "000000", now=now, users=users)


def test_lock_holds_for_fifteen_minutes_then_clears(users):
    start = utcnow()
    for minute in range(4):
        result = _fail(users, start + timedelta(minutes=minute))
        assert result.status == 401
    assert result.remaining_attempts == 1

    result = _fail(users, start + timedelta(minutes=4))
    assert result.status == 423
    assert result.locked_minutes == 15
    stored = users.find_by_username("rosa.lim")
    assert stored.locked_until == start + timedelta(minutes=19)

    # The right MPIN does not get through while the lock holds
    during = authenticate("rosa.lim", "482913", now=start + timedelta(minutes=10), users=users)
    assert during.status == 423
    assert during.locked_minutes == 9

    after = authenticate("rosa.lim", "482913", now=start + timedelta(minutes=20), users=users)
    assert after.success
    stored = users.find_by_username("rosa.lim")
    assert stored.failed_login_attempts == 0
    assert stored.locked_until is None
    assert stored.last_login == start + timedelta(minutes=20)


def test_expired_lock_starts_a_fresh_count(users):
    start = utcnow()
    for minute in range(5):
        _fail(users, start + timedelta(minutes=minute))

    result = _fail(users, start + timedelta(minutes=20))
    assert result.status == 401
    assert result.remaining_attempts == 4
    assert users.find_by_username("rosa.lim").locked_until is None


def test_stale_failures_fall_out_of_the_window(users):
    start = utcnow()
    for minute in range(4):
        _fail(users, start + timedelta(minutes=minute))

    # Sixteen minutes after the last failure the streak is forgotten
    result = _fail(users, start + timedelta(minutes=19))
    assert result.status == 401
    assert result.remaining_attempts == 4

    # Failures inside the window keep counting
    result = _fail(users, start + timedelta(minutes=25))
    assert result.remaining_attempts == 3


def test_plan_resident_account_checks_birth_date_and_name(sql_users):
    with pytest.raises(ValidationError) as excinfo:
        plan_resident_account({"first_name": "Ana", "last_name": "Reyes", "birth_date": None}, sql_users)
    assert "birth_date" in excinfo.value.fields

    with pytest.raises(ValidationError) as excinfo:
        plan_resident_account({"first_name": "李", "last_name": "王", "birth_date": date(1990, 1, 2)}, sql_users)
    assert "first_name" in excinfo.value.fields

    assert plan_resident_account(
        {"first_name": "Ñ", "last_name": "Li", "birth_date": date(1990, 1, 2)}, sql_users
    ) == ("n.li", "010290")


@pytest.mark.parametrize("mode", ["sql", "json"])
def test_create_resident_account_folds_accents(request, tmp_path, mode):
    if mode == "sql":
        request.getfixturevalue("db_session")
        residents = ResidentRepository(SqlResidentBackend(), SqlUserRepository())
    else:
        (tmp_path / "residents.json").write_text("[]", encoding="utf-8")
        users = JsonUserRepository(str(tmp_path / "users.json"))
        residents = ResidentRepository(JsonResidentBackend(str(tmp_path / "residents.json")), users)

    resident = residents.create({"first_name": "Niño", "last_name": "Peña", "birth_date": "1992-07-04"})
    account, mpin = create_resident_account(resident, residents.users, residents)

    assert account.username == "nino.pena"
    assert mpin == "070492"
    assert account.must_change_mpin
    assert residents.find_by_id(resident["id"])["user_id"] == account.id
