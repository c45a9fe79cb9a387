"""Pytest configuration and fixtures.

Environment variables are set at module level BEFORE any app code is
imported, because settings and the default engine are created at import time.
Each test gets its own SQLite file, blob directory and fake mailer.
"""

import os
import tempfile

_test_base_dir = tempfile.mkdtemp(prefix="todo_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_test_base_dir}/default.db"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_LOCAL_ROOT"] = f"{_test_base_dir}/storage"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["EMAIL_LOG_ONLY"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.database import Base, build_engine, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import access_token, otp, todo, user  # noqa: E402,F401
from app.models.user import User  # noqa: E402
from app.services import accounts  # noqa: E402
from app.services.email import get_mailer  # noqa: E402
from app.services.security import hash_password  # noqa: E402
from app.services.storage import LocalStorage, get_storage  # noqa: E402


class FakeMailer:
    """Records OTP mails instead of sending them; ``fail`` simulates a provider outage."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send_otp_email(self, to_email: str, code: str, display_name: str = "") -> bool:
        if self.fail:
            return False
        self.sent.append({"to": to_email, "code": code, "name": display_name})
        return True

    def last_code(self, email: str) -> str:
        for message in reversed(self.sent):
            if message["to"] == email:
                return message["code"]
        raise AssertionError(f"no OTP mail sent to {email}")


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "blobs"))


@pytest.fixture
def client(session_factory, mailer, storage):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a user directly in the database (activated by default)."""

    def _make(email: str = "owner@example.com", password: str = "secret1", activated: bool = True) -> User:
        user = User(
            email=email,
            hashed_password=hash_password(password),
            first_name="Test",
            last_name="User",
            company=None,
            is_activated=activated,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers(db, make_user):
    """Log a fresh activated user in and return (user, headers)."""

    def _login(email: str = "owner@example.com", password: str = "secret1"):
        user = make_user(email=email, password=password)
        token, _ = accounts.login(db, email, password)
        return user, {"Authorization": f"Bearer {token}"}

    return _login
