from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from smartlias.app import create_app, seed_document_types
from smartlias.config import TestingConfig
from smartlias.constants import PASSWORD_CHANGED, ROLE_ADMIN, ROLE_RESIDENT
from smartlias.extensions import db
from smartlias.models import Resident, User


@pytest.fixture
def app(tmp_path):
    db_path = tmp_path / "test.sqlite"

    class TestConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{db_path}"
        WTF_CSRF_ENABLED = False
        MAIL_SUPPRESS_SEND = True
        AUTO_CREATE_DB = True
        MOCK_DATA_DIR = str(tmp_path / "data")
        UPLOAD_FOLDER = str(tmp_path / "uploads")
        SECURITY_HEADERS_ENABLED = False
        ERROR_REPORT_EMAIL = ""
        LOG_JSON = False
        SMS_PROVIDER = "console"

    app = create_app(TestConfig)
    return app


@pytest.fixture(autouse=True)
def _setup_db(app):
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    with app.app_context():
        yield db.session


@pytest.fixture
def document_types(db_session):
    seed_document_types()
    from smartlias.models import DocumentType

    return {t.name: t for t in DocumentType.query.all()}


@pytest.fixture
def make_user(db_session):
    def _make_user(username, mpin="123456", role=ROLE_RESIDENT, changed=PASSWORD_CHANGED, **fields):
        user = User(
            username=username,
            mpin_hash=generate_password_hash(mpin),
            role=role,
            is_password_changed=changed,
            first_name=fields.pop("first_name", username.split(".")[0].capitalize()),
            last_name=fields.pop("last_name", None),
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_admin(make_user):
    def _make_admin(username="admin.staff", mpin="010180"):
        return make_user(username, mpin, role=ROLE_ADMIN, first_name="Admin", last_name="Staff")

    return _make_admin


@pytest.fixture
def make_resident(db_session):
    def _make_resident(
        first_name="Juan",
        last_name="Dela Cruz",
        birth_date=date(1990, 3, 15),
        gender=1,
        address="123 Mabini St.",
        purok=1,
        contact_number="09171234567",
        **fields,
    ):
        resident = Resident(
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            gender=gender,
            address=address,
            purok=purok,
            contact_number=contact_number,
            **fields,
        )
        db_session.add(resident)
        db_session.commit()
        return resident

    return _make_resident


@pytest.fixture
def login(client):
    def _login(username, mpin):
        return client.post("/login", data={"username": username, "mpin": mpin}, follow_redirects=False)

    return _login


@pytest.fixture
def api_token(client):
    def _api_token(username, mpin):
        resp = client.post("/api/auth/login", json={"username": username, "pin": mpin})
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()["data"]["token"]

    return _api_token


@pytest.fixture
def auth_headers(api_token):
    def _auth_headers(username, mpin):
        return {"Authorization": f"Bearer {api_token(username, mpin)}"}

    return _auth_headers
