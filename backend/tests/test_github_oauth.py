"""
Tests for GitHub login: the redirect / callback round trip over HTTP,
account linking in the store and the httpx client against a mock transport.
"""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth.github import API_URL, TOKEN_URL, GitHubOAuth, GithubProfile
from core.exceptions import ConflictError, InvalidInputError, UpstreamFailureError
from core.security import SESSION_COOKIE
from models.audit_log import AuditLog
from models.user import User
from store import CredentialStore, placeholder_email


def _start(client):
    res = client.get("/auth/github", follow_redirects=False)
    assert res.status_code == 307
    return parse_qs(urlparse(res.headers["location"]).query)["state"][0]


def _callback(client, code, state):
    return client.get(
        "/auth/github/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )


# ---------------------------------------------------------------------------
# Redirect / callback
# ---------------------------------------------------------------------------

class TestRedirect:

    def test_redirect_sets_state_cookie(self, client):
        res = client.get("/auth/github", follow_redirects=False)
        assert res.status_code == 307
        assert res.headers["location"].startswith("https://github.test/login/oauth/authorize")
        cookie = res.headers["set-cookie"].lower()
        assert cookie.startswith("oauthstate=")
        assert "httponly" in cookie
        assert "path=/auth/github" in cookie

    def test_state_is_random(self, client):
        assert _start(client) != _start(client)


class TestCallback:

    def test_new_account_created(self, client, github, db):
        github.add("c1", id="1001", login="octocat", email="Octo@Example.com",
                   avatar_url="https://avatars.test/1001")
        res = _callback(client, "c1", _start(client))

        assert res.status_code == 303
        assert res.headers["location"] == "http://frontend.test/profile"
        assert SESSION_COOKIE in client.cookies

        me = client.get("/users/me").json()
        assert me["username"] == "octocat"
        assert me["email"] == "octo@example.com"
        assert me["avatar_url"] == "https://avatars.test/1001"

        user = db.query(User).filter(User.github_id == "1001").one()
        assert user.password_hash is None
        actions = {row.action for row in db.query(AuditLog).all()}
        assert {"github_account_created", "github_login"} <= actions

    def test_state_mismatch(self, client, github):
        github.add("c1", id="1001", login="octocat")
        _start(client)
        res = _callback(client, "c1", "forged")
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid OAuth state"
        assert SESSION_COOKIE not in client.cookies

    def test_missing_state_cookie(self, client, github):
        github.add("c1", id="1001", login="octocat")
        res = _callback(client, "c1", "anything")
        assert res.status_code == 400

    def test_bad_code(self, client):
        res = _callback(client, "unknown", _start(client))
        assert res.status_code == 400
        assert res.json()["error"] == "VALIDATION_ERROR"

    def test_username_collision_gets_suffix(self, client, register, github):
        register(username="octocat", email="someone@x.com")
        github.add("c1", id="1001", login="octocat")
        _callback(client, "c1", _start(client))
        assert client.get("/users/me").json()["username"] == "octocat1"

    def test_missing_email_gets_placeholder(self, client, github):
        github.add("c1", id="1001", login="octocat")
        _callback(client, "c1", _start(client))
        assert client.get("/users/me").json()["email"] == placeholder_email("1001", "octocat")

    def test_taken_email_gets_placeholder(self, client, register, github):
        register(username="alice", email="octo@example.com")
        github.add("c1", id="1001", login="octocat", email="octo@example.com")
        _callback(client, "c1", _start(client))
        me = client.get("/users/me").json()
        assert me["username"] == "octocat"
        assert me["email"] == placeholder_email("1001", "octocat")

    def test_returning_user_is_linked_and_avatar_synced(self, client, github, db):
        github.add("c1", id="1001", login="octocat", avatar_url="https://avatars.test/old")
        _callback(client, "c1", _start(client))
        first_id = client.get("/users/me").json()["id"]

        github.add("c2", id="1001", login="octocat-renamed", avatar_url="https://avatars.test/new")
        _callback(client, "c2", _start(client))
        me = client.get("/users/me").json()
        assert me["id"] == first_id
        assert me["username"] == "octocat"
        assert me["avatar_url"] == "https://avatars.test/new"
        assert db.query(User).count() == 1

    def test_2fa_user_lands_on_verify_page(self, client, github, mailer, db):
        github.add("c1", id="1001", login="octocat", email="octo@example.com")
        _callback(client, "c1", _start(client))

        # GitHub-only accounts cannot pass the password check, so enable
        # email 2FA straight in the store
        user = db.query(User).filter(User.github_id == "1001").one()
        store = CredentialStore(db)
        store.enable_two_factor_config(store.create_two_factor_config(user.id, "email"))
        store.commit()

        res = _callback(client, "c1", _start(client))
        assert res.status_code == 303
        assert res.headers["location"] == "http://frontend.test/verify-2fa"
        assert client.get("/users/me").status_code == 403
        assert mailer.last("2fa")["to"] == "octo@example.com"

    def test_github_account_has_no_password_login(self, client, github):
        github.add("c1", id="1001", login="octocat")
        _callback(client, "c1", _start(client))
        client.post("/auth/logout")
        res = client.post("/auth/login", json={"username": "octocat", "password": ""})
        assert res.status_code == 400
        res = client.post("/auth/login", json={"username": "octocat", "password": "anything"})
        assert res.status_code == 401

    def test_placeholder_address_gets_no_reset_mail(self, client, github, mailer):
        github.add("c1", id="1001", login="octocat")
        _callback(client, "c1", _start(client))
        res = client.post("/auth/forgot-password", json={"email": "octocat"})
        assert res.status_code == 200
        assert mailer.outbox == []


# ---------------------------------------------------------------------------
# Store-level linking
# ---------------------------------------------------------------------------

class TestFindOrCreate:

    def test_gives_up_after_max_attempts(self, db):
        store = CredentialStore(db)
        for name in ("octo", "octo1", "octo2"):
            store.create_user(name, f"{name}@x.com")
        store.commit()

        profile = GithubProfile(id="7", login="octo", email=None, avatar_url=None)
        with pytest.raises(ConflictError):
            store.find_or_create_oauth_user(profile, max_attempts=3)

        user, created = store.find_or_create_oauth_user(profile, max_attempts=4)
        assert created is True
        assert user.username == "octo3"

    def test_existing_github_id_not_recreated(self, db):
        store = CredentialStore(db)
        profile = GithubProfile(id="7", login="octo", email="o@x.com", avatar_url=None)
        first, created = store.find_or_create_oauth_user(profile)
        store.commit()
        again, created_again = store.find_or_create_oauth_user(profile)
        assert created is True and created_again is False
        assert again.id == first.id


# ---------------------------------------------------------------------------
# httpx client
# ---------------------------------------------------------------------------

def _oauth(settings, handler):
    return GitHubOAuth(settings, transport=httpx.MockTransport(handler))


class TestGitHubClient:

    def test_authorize_url(self, settings):
        url = GitHubOAuth(settings).authorize_url("xyz")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://github.com/login/oauth/authorize?")
        assert query["client_id"] == ["client-id"]
        assert query["state"] == ["xyz"]
        assert query["scope"] == ["read:user user:email"]

    def test_not_configured(self, settings):
        settings.github_client_id = ""
        oauth = GitHubOAuth(settings)
        assert oauth.configured is False
        with pytest.raises(UpstreamFailureError):
            oauth.authorize_url("xyz")

    def test_exchange_code(self, settings):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={"access_token": "gho_abc", "token_type": "bearer"})

        assert _oauth(settings, handler).exchange_code_for_token("the-code") == "gho_abc"
        assert seen["url"] == TOKEN_URL
        assert "code=the-code" in seen["body"]
        assert "client_secret=client-secret" in seen["body"]

    def test_exchange_error_field(self, settings):
        def handler(request):
            return httpx.Response(200, json={
                "error": "bad_verification_code",
                "error_description": "The code passed is incorrect or expired.",
            })

        with pytest.raises(InvalidInputError) as exc:
            _oauth(settings, handler).exchange_code_for_token("old")
        assert exc.value.message == "The code passed is incorrect or expired."

    def test_exchange_http_failure(self, settings):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(UpstreamFailureError):
            _oauth(settings, handler).exchange_code_for_token("c")

    def test_exchange_network_failure(self, settings):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(UpstreamFailureError):
            _oauth(settings, handler).exchange_code_for_token("c")

    def test_profile_with_public_email(self, settings):
        def handler(request):
            assert request.headers["authorization"] == "Bearer gho_abc"
            return httpx.Response(200, json={
                "id": 1001, "login": "octocat", "email": "octo@example.com",
                "avatar_url": "https://avatars.test/1001",
            })

        profile = _oauth(settings, handler).fetch_profile("gho_abc")
        assert profile == GithubProfile(
            id="1001", login="octocat", email="octo@example.com",
            avatar_url="https://avatars.test/1001",
        )

    def test_profile_falls_back_to_primary_verified_email(self, settings):
        def handler(request):
            if request.url.path == "/user/emails":
                return httpx.Response(200, json=[
                    {"email": "old@example.com", "primary": False, "verified": True},
                    {"email": "unverified@example.com", "primary": True, "verified": False},
                    {"email": "main@example.com", "primary": True, "verified": True},
                ])
            return httpx.Response(200, json={"id": 1001, "login": "octocat", "email": None})

        profile = _oauth(settings, handler).fetch_profile("gho_abc")
        assert profile.email == "main@example.com"

    def test_profile_without_usable_email(self, settings):
        def handler(request):
            if request.url.path == "/user/emails":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json={"id": 1001, "login": "octocat"})

        assert _oauth(settings, handler).fetch_profile("gho_abc").email is None

    def test_profile_failure(self, settings):
        def handler(request):
            assert str(request.url).startswith(API_URL)
            return httpx.Response(401, json={"message": "Bad credentials"})

        with pytest.raises(UpstreamFailureError):
            _oauth(settings, handler).fetch_profile("expired")

    def test_incomplete_profile(self, settings):
        def handler(request):
            return httpx.Response(200, json={"login": "octocat", "email": "o@x.com"})

        with pytest.raises(UpstreamFailureError):
            _oauth(settings, handler).fetch_profile("gho_abc")
