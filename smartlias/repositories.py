"""Data access for residents and user accounts.

Two storage backends sit behind the same interface:

- SQL, through the Flask-SQLAlchemy models (the default), and
- JSON files under ``MOCK_DATA_DIR`` (``USE_MOCK_DATA=true``), handy for
  demos without a database server.

Backends only move rows in and out.  Input cleaning, age enrichment,
paging and the account join live in `ResidentRepository`, and login
bookkeeping lives in `services.py`, so switching the backend does not
change behaviour.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, fields
from datetime import date, datetime, timedelta
from typing import Optional, Protocol, Sequence

from flask import current_app
from flask_login import UserMixin
from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from .constants import (
    GENDER_FEMALE,
    GENDER_MALE,
    GENDER_NAMES,
    PASSWORD_NOT_CHANGED,
    ROLE_ADMIN,
    ROLE_NAMES,
    ROLE_RESIDENT,
    ROLE_STRINGS,
    SUFFIX_OPTIONS,
)
from .errors import StorageError, ValidationError
from .extensions import db
from .models import Resident, User
from .security import calculate_age, normalize_username
from .seed import DEMO_PASSWORD_STATUS, DEMO_RESIDENTS, DEMO_USERS
from .time_utils import utcnow

logger = logging.getLogger(__name__)

RESIDENT_FIELDS = (
    "user_id",
    "last_name",
    "first_name",
    "middle_name",
    "suffix",
    "birth_date",
    "gender",
    "civil_status",
    "contact_number",
    "email",
    "address",
    "purok",
    "religion",
    "occupation",
    "is_pwd",
    "is_solo_parent",
    "is_indigent",
)
OPTIONAL_TEXT_FIELDS = (
    "middle_name",
    "civil_status",
    "contact_number",
    "email",
    "address",
    "religion",
    "occupation",
)
CATEGORY_FLAGS = ("is_pwd", "is_solo_parent", "is_indigent")
RECENT_DAYS = 30


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Account(UserMixin):
    """A login account as seen by the rest of the app, whatever the backend."""

    id: int
    username: str
    mpin_hash: str
    role: int = ROLE_RESIDENT
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_password_changed: int = PASSWORD_NOT_CHANGED
    failed_login_attempts: int = 0
    last_failed_login: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    token_version: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def role_name(self) -> str:
        return ROLE_NAMES.get(self.role, "Unknown")

    @property
    def role_key(self) -> str | None:
        return ROLE_STRINGS.get(self.role)

    @property
    def must_change_mpin(self) -> bool:
        return self.is_password_changed == PASSWORD_NOT_CHANGED

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.username

    def public_info(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "role_name": self.role_name,
            "must_change_mpin": self.must_change_mpin,
        }


_ACCOUNT_FIELDS = tuple(f.name for f in fields(Account))
_ACCOUNT_DATETIME_FIELDS = ("last_failed_login", "locked_until", "last_login", "created_at")


class UserRepository(Protocol):
    """Storage interface for login accounts."""

    def get(self, user_id) -> Optional[Account]:
        raise NotImplementedError

    def find_by_username(self, username: str) -> Optional[Account]:
        raise NotImplementedError

    def list_usernames(self) -> list[str]:
        raise NotImplementedError

    def list_all(self) -> Sequence[Account]:
        raise NotImplementedError

    def create(
        self,
        *,
        username: str,
        mpin_hash: str,
        role: int = ROLE_RESIDENT,
        first_name: str | None = None,
        last_name: str | None = None,
        is_password_changed: int = PASSWORD_NOT_CHANGED,
    ) -> Account:
        raise NotImplementedError

    def update(self, account: Account, **changes) -> Account:
        """Persist ``changes`` and mirror them onto ``account``."""
        raise NotImplementedError


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class SqlUserRepository:
    def _model(self, user_id) -> Optional[User]:
        user_id = _as_int(user_id)
        if user_id is None:
            return None
        return db.session.get(User, user_id)

    @staticmethod
    def _to_account(user: User | None) -> Optional[Account]:
        if user is None:
            return None
        return Account(**{name: getattr(user, name) for name in _ACCOUNT_FIELDS})

    def get(self, user_id) -> Optional[Account]:
        return self._to_account(self._model(user_id))

    def find_by_username(self, username: str) -> Optional[Account]:
        user = User.query.filter(func.lower(User.username) == normalize_username(username)).first()
        return self._to_account(user)

    def list_usernames(self) -> list[str]:
        return [name for (name,) in db.session.query(User.username).all()]

    def list_all(self) -> list[Account]:
        return [self._to_account(u) for u in User.query.order_by(User.username.asc()).all()]

    def create(self, *, username, mpin_hash, role=ROLE_RESIDENT, first_name=None, last_name=None,
               is_password_changed=PASSWORD_NOT_CHANGED) -> Account:
        user = User(
            username=normalize_username(username),
            mpin_hash=mpin_hash,
            role=role,
            first_name=first_name,
            last_name=last_name,
            is_password_changed=is_password_changed,
            failed_login_attempts=0,
            token_version=0,
        )
        db.session.add(user)
        db.session.commit()
        return self._to_account(user)

    def update(self, account: Account, **changes) -> Account:
        user = self._model(account.id)
        if user is None:
            raise StorageError(f"User {account.id} no longer exists.")
        for key, value in changes.items():
            setattr(user, key, value)
            setattr(account, key, value)
        db.session.commit()
        return account


class JsonFile:
    """A JSON array on disk, optionally headed by a ``{"_comment": ...}`` element."""

    _locks: dict[str, threading.RLock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, path: str, seed=None):
        self.path = path
        self.seed = seed
        with self._locks_guard:
            self.lock = self._locks.setdefault(os.path.abspath(path), threading.RLock())

    def _read_raw(self) -> tuple[dict | None, list[dict]]:
        if not os.path.exists(self.path):
            rows = self.seed() if self.seed else []
            self._write_raw(None, rows)
            return None, rows
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                parsed = json.load(f)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load %s: %s", self.path, exc)
            raise StorageError(f"Could not read {os.path.basename(self.path)}.") from exc
        if not isinstance(parsed, list):
            raise StorageError(f"{os.path.basename(self.path)} must contain a JSON array.")
        if parsed and isinstance(parsed[0], dict) and "_comment" in parsed[0]:
            return parsed[0], parsed[1:]
        return None, parsed

    def _write_raw(self, header: dict | None, rows: list[dict]) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = ([header] if header else []) + rows
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error("Failed to save %s: %s", self.path, exc)
            raise StorageError(f"Could not write {os.path.basename(self.path)}.") from exc

    def read(self) -> list[dict]:
        with self.lock:
            return self._read_raw()[1]

    @contextmanager
    def transaction(self):
        """Yield the rows for in-place edits; they are written back on exit."""
        with self.lock:
            header, rows = self._read_raw()
            yield rows
            self._write_raw(header, rows)


def _parse_datetime(value) -> Optional[datetime]:
    if not value or isinstance(value, datetime):
        return value or None
    try:
        return datetime.fromisoformat(str(value).replace("Z", ""))
    except ValueError:
        return None


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _serialize(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _next_id(rows: list[dict]) -> int:
    return max((int(r.get("id") or 0) for r in rows), default=0) + 1


def _seed_users() -> list[dict]:
    now = utcnow().isoformat()
    rows = []
    for index, (username, first, last, mpin, role) in enumerate(DEMO_USERS, start=1):
        rows.append(
            {
                "id": index,
                "username": username,
                "first_name": first,
                "last_name": last,
                "mpin_hash": generate_password_hash(mpin),
                "role": role,
                "is_password_changed": DEMO_PASSWORD_STATUS,
                "failed_login_attempts": 0,
                "last_failed_login": None,
                "locked_until": None,
                "last_login": None,
                "token_version": 0,
                "created_at": now,
            }
        )
    return rows


def _seed_residents() -> list[dict]:
    user_ids = {username: index for index, (username, *_rest) in enumerate(DEMO_USERS, start=1)}
    now = utcnow().isoformat()
    rows = []
    for index, demo in enumerate(DEMO_RESIDENTS, start=1):
        row = {name: None for name in RESIDENT_FIELDS}
        row.update({k: v for k, v in demo.items() if k in RESIDENT_FIELDS})
        for flag in CATEGORY_FLAGS:
            row[flag] = bool(row.get(flag))
        row.update(
            {
                "id": index,
                "user_id": user_ids.get(demo.get("username")),
                "is_active": 1,
                "created_at": now,
                "updated_at": None,
            }
        )
        rows.append(row)
    return rows


class JsonUserRepository:
    def __init__(self, path: str):
        self.file = JsonFile(path, seed=_seed_users)

    @staticmethod
    def _to_account(row: dict | None) -> Optional[Account]:
        if row is None:
            return None
        data = {name: row.get(name) for name in _ACCOUNT_FIELDS}
        for name in _ACCOUNT_DATETIME_FIELDS:
            data[name] = _parse_datetime(data[name])
        data["id"] = int(data["id"])
        data["role"] = int(data["role"] or ROLE_RESIDENT)
        data["is_password_changed"] = int(data["is_password_changed"] or 0)
        data["failed_login_attempts"] = int(data["failed_login_attempts"] or 0)
        data["token_version"] = int(data["token_version"] or 0)
        return Account(**data)

    def get(self, user_id) -> Optional[Account]:
        user_id = _as_int(user_id)
        if user_id is None:
            return None
        row = next((r for r in self.file.read() if int(r.get("id") or 0) == user_id), None)
        return self._to_account(row)

    def find_by_username(self, username: str) -> Optional[Account]:
        wanted = normalize_username(username)
        row = next((r for r in self.file.read() if (r.get("username") or "").lower() == wanted), None)
        return self._to_account(row)

    def list_usernames(self) -> list[str]:
        return [r.get("username") for r in self.file.read() if r.get("username")]

    def list_all(self) -> list[Account]:
        accounts = [self._to_account(r) for r in self.file.read()]
        return sorted(accounts, key=lambda a: a.username)

    def create(self, *, username, mpin_hash, role=ROLE_RESIDENT, first_name=None, last_name=None,
               is_password_changed=PASSWORD_NOT_CHANGED) -> Account:
        with self.file.transaction() as rows:
            row = {
                "id": _next_id(rows),
                "username": normalize_username(username),
                "first_name": first_name,
                "last_name": last_name,
                "mpin_hash": mpin_hash,
                "role": role,
                "is_password_changed": is_password_changed,
                "failed_login_attempts": 0,
                "last_failed_login": None,
                "locked_until": None,
                "last_login": None,
                "token_version": 0,
                "created_at": utcnow().isoformat(),
            }
            rows.append(row)
        return self._to_account(row)

    def update(self, account: Account, **changes) -> Account:
        with self.file.transaction() as rows:
            row = next((r for r in rows if int(r.get("id") or 0) == account.id), None)
            if row is None:
                raise StorageError(f"User {account.id} no longer exists.")
            for key, value in changes.items():
                row[key] = _serialize(value)
                setattr(account, key, value)
        return account


# ---------------------------------------------------------------------------
# Residents
# ---------------------------------------------------------------------------


class ResidentBackend(Protocol):
    """Row storage for residents.  Rows are plain dicts keyed by column name."""

    def search(self, term: str, offset: int, limit: int) -> tuple[list[dict], int]:
        raise NotImplementedError

    def get(self, resident_id: int) -> Optional[dict]:
        raise NotImplementedError

    def insert(self, data: dict) -> dict:
        raise NotImplementedError

    def update(self, resident_id: int, data: dict) -> Optional[dict]:
        raise NotImplementedError

    def deactivate(self, resident_id: int) -> bool:
        raise NotImplementedError

    def active_rows(self) -> list[dict]:
        raise NotImplementedError

    def count_active(self, since: datetime | None = None) -> int:
        raise NotImplementedError


def _resident_to_dict(resident: Resident) -> dict:
    row = {name: getattr(resident, name) for name in RESIDENT_FIELDS}
    row.update(
        id=resident.id,
        is_active=resident.is_active,
        created_at=resident.created_at,
        updated_at=resident.updated_at,
    )
    return row


# Same order as the JSON backend: case-insensitive surname, then first name.
_RESIDENT_ORDER = (func.lower(Resident.last_name), func.lower(Resident.first_name), Resident.id)


class SqlResidentBackend:
    def _active_query(self):
        return Resident.query.filter(Resident.is_active == 1)

    def search(self, term: str, offset: int, limit: int) -> tuple[list[dict], int]:
        query = self._active_query()
        if term:
            query = query.filter(
                or_(
                    Resident.first_name.icontains(term, autoescape=True),
                    Resident.last_name.icontains(term, autoescape=True),
                    Resident.address.icontains(term, autoescape=True),
                )
            )
        total = query.count()
        rows = (
            query.order_by(*_RESIDENT_ORDER)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [_resident_to_dict(r) for r in rows], total

    def get(self, resident_id: int) -> Optional[dict]:
        resident = db.session.get(Resident, resident_id)
        return _resident_to_dict(resident) if resident else None

    def insert(self, data: dict) -> dict:
        resident = Resident(**data, is_active=1)
        db.session.add(resident)
        db.session.commit()
        return _resident_to_dict(resident)

    def update(self, resident_id: int, data: dict) -> Optional[dict]:
        resident = db.session.get(Resident, resident_id)
        if resident is None:
            return None
        for key, value in data.items():
            setattr(resident, key, value)
        resident.updated_at = utcnow()
        db.session.commit()
        return _resident_to_dict(resident)

    def deactivate(self, resident_id: int) -> bool:
        resident = db.session.get(Resident, resident_id)
        if resident is None:
            return False
        resident.is_active = 0
        resident.updated_at = utcnow()
        db.session.commit()
        return True

    def active_rows(self) -> list[dict]:
        rows = self._active_query().order_by(*_RESIDENT_ORDER).all()
        return [_resident_to_dict(r) for r in rows]

    def count_active(self, since: datetime | None = None) -> int:
        query = self._active_query()
        if since is not None:
            query = query.filter(Resident.created_at >= since)
        return query.count()


class JsonResidentBackend:
    def __init__(self, path: str):
        self.file = JsonFile(path, seed=_seed_residents)

    @staticmethod
    def _to_record(row: dict) -> dict:
        record = {name: row.get(name) for name in RESIDENT_FIELDS}
        record["birth_date"] = _parse_date(record["birth_date"])
        for flag in CATEGORY_FLAGS:
            record[flag] = bool(record.get(flag))
        record.update(
            id=int(row["id"]),
            is_active=0 if row.get("is_active") == 0 else 1,
            created_at=_parse_datetime(row.get("created_at") or row.get("createdAt")),
            updated_at=_parse_datetime(row.get("updated_at")),
        )
        return record

    @staticmethod
    def _sort_key(record: dict):
        return ((record["last_name"] or "").lower(), (record["first_name"] or "").lower(), record["id"])

    def _active(self) -> list[dict]:
        records = [self._to_record(r) for r in self.file.read() if r.get("is_active") != 0]
        return sorted(records, key=self._sort_key)

    def search(self, term: str, offset: int, limit: int) -> tuple[list[dict], int]:
        records = self._active()
        if term:
            needle = term.lower()
            records = [
                r for r in records
                if any(needle in (r.get(k) or "").lower() for k in ("first_name", "last_name", "address"))
            ]
        return records[offset:offset + limit], len(records)

    def get(self, resident_id: int) -> Optional[dict]:
        row = next((r for r in self.file.read() if int(r.get("id") or 0) == resident_id), None)
        return self._to_record(row) if row else None

    def insert(self, data: dict) -> dict:
        with self.file.transaction() as rows:
            row = {name: None for name in RESIDENT_FIELDS}
            row.update({k: _serialize(v) for k, v in data.items()})
            row.update(id=_next_id(rows), is_active=1, created_at=utcnow().isoformat(), updated_at=None)
            rows.append(row)
        return self._to_record(row)

    def update(self, resident_id: int, data: dict) -> Optional[dict]:
        with self.file.transaction() as rows:
            row = next((r for r in rows if int(r.get("id") or 0) == resident_id), None)
            if row is None:
                return None
            row.update({k: _serialize(v) for k, v in data.items()})
            row["updated_at"] = utcnow().isoformat()
        return self._to_record(row)

    def deactivate(self, resident_id: int) -> bool:
        with self.file.transaction() as rows:
            row = next((r for r in rows if int(r.get("id") or 0) == resident_id), None)
            if row is None:
                return False
            row["is_active"] = 0
            row["updated_at"] = utcnow().isoformat()
        return True

    def active_rows(self) -> list[dict]:
        return self._active()

    def count_active(self, since: datetime | None = None) -> int:
        records = self._active()
        if since is not None:
            records = [r for r in records if r["created_at"] and r["created_at"] >= since]
        return len(records)


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_gender(value) -> int | None:
    if value is None or value == "":
        return None
    text = str(value).strip().lower()
    if text in {"male", "m", "1"}:
        return GENDER_MALE
    if text in {"female", "f", "2"}:
        return GENDER_FEMALE
    return None


def transform_for_storage(data: dict, *, partial: bool = False) -> dict:
    """Clean resident input into column values.

    Unknown keys are dropped.  Gender accepts "male"/"female" or 1/2,
    purok/suffix/user_id become integers, and blank optional strings
    become None.  With ``partial`` only the keys present in ``data`` are
    returned (for updates).
    """
    keys = [k for k in RESIDENT_FIELDS if k in data] if partial else list(RESIDENT_FIELDS)
    cleaned: dict = {}
    errors: dict = {}
    for key in keys:
        value = data.get(key)
        if isinstance(value, str):
            value = value.strip()
        if key == "gender":
            cleaned[key] = _to_gender(value)
        elif key in ("purok", "suffix", "user_id"):
            cleaned[key] = _as_int(value) if value not in (None, "") else None
        elif key == "birth_date":
            if value in (None, ""):
                cleaned[key] = None
            else:
                parsed = _parse_date(value)
                if parsed is None:
                    errors[key] = "Birth date must be in YYYY-MM-DD format."
                elif parsed > date.today():
                    errors[key] = "Birth date cannot be in the future."
                cleaned[key] = parsed
        elif key in CATEGORY_FLAGS:
            cleaned[key] = _to_bool(value)
        elif key in OPTIONAL_TEXT_FIELDS:
            cleaned[key] = value or None
        else:
            cleaned[key] = value

    for required in ("first_name", "last_name"):
        if (not partial or required in cleaned) and not cleaned.get(required):
            errors[required] = f"{required.replace('_', ' ').capitalize()} is required."
    if cleaned.get("suffix") is not None and cleaned["suffix"] not in SUFFIX_OPTIONS:
        errors["suffix"] = "Unknown suffix."
    if errors:
        raise ValidationError("Invalid resident data.", fields=errors)
    return cleaned


def enrich_resident(record: dict | None, today: date | None = None) -> Optional[dict]:
    """Add derived display fields (age, zero-padded id, labels) to a resident row."""
    if record is None:
        return None
    enriched = dict(record)
    suffix_label = SUFFIX_OPTIONS.get(record.get("suffix") or 0, "")
    name_parts = [record.get("first_name"), record.get("middle_name"), record.get("last_name"), suffix_label]
    enriched.update(
        formatted_id=f"{record['id']:05d}",
        age=calculate_age(record.get("birth_date"), today),
        full_name=" ".join(p for p in name_parts if p),
        gender_name=GENDER_NAMES.get(record.get("gender"), "-"),
        suffix_label=suffix_label,
        special_categories=[
            label
            for flag, label in (("is_pwd", "PWD"), ("is_solo_parent", "SOLO_PARENT"), ("is_indigent", "INDIGENT"))
            if record.get(flag)
        ],
    )
    return enriched


class ResidentRepository:
    """Resident records on top of a storage backend."""

    def __init__(self, backend: ResidentBackend, users: UserRepository, *, max_page_size: int = 100):
        self.backend = backend
        self.users = users
        self.max_page_size = max_page_size

    def find_all(self, search_query: str = "", page: int = 1, limit: int = 50) -> dict:
        page = max(1, _as_int(page) or 1)
        limit = min(max(1, _as_int(limit) or 50), self.max_page_size)
        term = (search_query or "").strip()
        rows, total = self.backend.search(term, (page - 1) * limit, limit)
        return {
            "residents": [enrich_resident(r) for r in rows],
            "total": total,
            "page": page,
            "limit": limit,
        }

    def find_by_id(self, resident_id) -> Optional[dict]:
        resident_id = _as_int(resident_id)
        if resident_id is None:
            return None
        record = enrich_resident(self.backend.get(resident_id))
        if record and record.get("user_id"):
            account = self.users.get(record["user_id"])
            if account:
                record.update(
                    username=account.username,
                    is_password_changed=account.is_password_changed,
                    user_created_at=account.created_at,
                )
        return record

    def create(self, data: dict) -> dict:
        return enrich_resident(self.backend.insert(transform_for_storage(data)))

    def update(self, resident_id, data: dict) -> Optional[dict]:
        resident_id = _as_int(resident_id)
        if resident_id is None:
            return None
        return enrich_resident(self.backend.update(resident_id, transform_for_storage(data, partial=True)))

    def delete(self, resident_id) -> bool:
        resident_id = _as_int(resident_id)
        if resident_id is None:
            return False
        return self.backend.deactivate(resident_id)

    def list_active(self) -> list[dict]:
        return [enrich_resident(r) for r in self.backend.active_rows()]

    def find_by_user_id(self, user_id: int) -> Optional[dict]:
        return next((r for r in self.list_active() if r.get("user_id") == user_id), None)

    def get_stats(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        return {
            "total": self.backend.count_active(),
            "recent_count": self.backend.count_active(since=now - timedelta(days=RECENT_DAYS)),
        }


def _mock_path(filename: str) -> str:
    return os.path.join(current_app.config["MOCK_DATA_DIR"], filename)


def get_user_repository() -> UserRepository:
    if current_app.config.get("USE_MOCK_DATA"):
        return JsonUserRepository(_mock_path("users.json"))
    return SqlUserRepository()


def get_resident_repository() -> ResidentRepository:
    if current_app.config.get("USE_MOCK_DATA"):
        backend: ResidentBackend = JsonResidentBackend(_mock_path("residents.json"))
    else:
        backend = SqlResidentBackend()
    return ResidentRepository(
        backend,
        get_user_repository(),
        max_page_size=int(current_app.config.get("API_MAX_PAGE_SIZE", 100)),
    )
