"""
Common test fixtures for the account service test suite.

Provides:
- Test ``Settings`` (in-memory SQLite, cheap password hashing, fixed keys)
- Recording fake mailer and fake GitHub provider
- FastAPI TestClient over a fresh app per test
- Helpers to register / log in users and to reach the DB directly
"""
import base64

import pytest
from fastapi.testclient import TestClient

from auth.github import GithubProfile
from core.config import Settings
from core.exceptions import InvalidInputError, UpstreamFailureError
from main import create_app

TEST_MASTER_KEY = base64.b64encode(b"k" * 32).decode()
TEST_SECRET_KEY = "a" * 64


def make_settings(**overrides) -> Settings:
    """Settings for tests; keyword arguments override single fields."""
    values = dict(
        database_url="sqlite://",
        secret_key=TEST_SECRET_KEY,
        master_encryption_key=TEST_MASTER_KEY,
        auto_create_tables=True,
        cookie_secure=True,
        frontend_url="http://frontend.test",
        password_hash_rounds=1000,
        rate_limit_strict="1000/minute",
        rate_limit_default="1000/minute",
        github_client_id="client-id",
        github_client_secret="client-secret",
        mail_host="",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeMailer:
    """Records every message instead of talking SMTP."""

    def __init__(self):
        self.outbox = []
        self.fail = False

    def _record(self, kind, **fields):
        if self.fail:
            raise UpstreamFailureError("Could not send email")
        self.outbox.append({"kind": kind, **fields})

    def send_password_reset_email(self, to, token, username):
        self._record("reset", to=to, token=token, username=username)

    def send_2fa_code(self, to, code):
        self._record("2fa", to=to, code=code)

    def test_connection(self):
        return True

    def last(self, kind):
        """Most recent message of *kind* (``reset`` or ``2fa``)."""
        for msg in reversed(self.outbox):
            if msg["kind"] == kind:
                return msg
        raise AssertionError(f"no {kind!r} mail sent")


class FakeGitHub:
    """Maps OAuth codes to canned profiles."""

    def __init__(self):
        self.profiles = {}

    def add(self, code, **profile):
        profile.setdefault("email", None)
        profile.setdefault("avatar_url", None)
        self.profiles[code] = GithubProfile(**profile)

    def authorize_url(self, state):
        return f"https://github.test/login/oauth/authorize?state={state}"

    def exchange_code_for_token(self, code):
        if code not in self.profiles:
            raise InvalidInputError("The code passed is incorrect or expired.")
        return f"token-{code}"

    def fetch_profile(self, access_token):
        return self.profiles[access_token[len("token-"):]]


# ---------------------------------------------------------------------------
# App / client
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def app(settings, mailer, github):
    return create_app(settings, mailer=mailer, github=github)


@pytest.fixture
def client(app):
    """TestClient over https so the Secure session cookie round-trips."""
    with TestClient(app, base_url="https://testserver") as c:
        yield c


@pytest.fixture
def db(app, client):
    """A session on the same in-memory database the app uses."""
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def register(client):
    def _register(username="alice", email="alice@x.com", password="pw1234"):
        res = client.post(
            "/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        assert res.status_code == 201, res.text
        return res.json()["user"]
    return _register


@pytest.fixture
def login(client):
    def _login(username="alice", password="pw1234"):
        res = client.post("/auth/login", json={"username": username, "password": password})
        assert res.status_code == 200, res.text
        return res.json()
    return _login


@pytest.fixture
def make_admin(db):
    """Promote an existing user straight in the database."""
    from models.user import User

    def _make_admin(username):
        user = db.query(User).filter(User.username == username).one()
        user.role = "admin"
        db.commit()
        return user
    return _make_admin
