"""
Tests for the user directory, self-service profile routes and the admin
router (role changes, account removal, audit trail).
"""
from models.audit_log import AuditLog
from models.user import User


def _as_admin(register, login, make_admin, username="root"):
    register(username=username, email=f"{username}@x.com")
    make_admin(username)
    login(username=username)


# ---------------------------------------------------------------------------
# /users
# ---------------------------------------------------------------------------

class TestUsers:

    def test_requires_session(self, client):
        res = client.get("/users")
        assert res.status_code == 401
        assert res.json()["error"] == "UNAUTHENTICATED"

    def test_list_users(self, client, register, login):
        register()
        register(username="bob", email="bob@x.com")
        login()
        body = client.get("/users").json()
        assert body["total"] == 2
        assert [u["username"] for u in body["users"]] == ["alice", "bob"]
        assert all("password_hash" not in u for u in body["users"])

    def test_list_paging(self, client, register, login):
        for name in ("alice", "bob", "carol"):
            register(username=name, email=f"{name}@x.com")
        login()
        body = client.get("/users", params={"offset": 1, "limit": 1}).json()
        assert body["total"] == 3
        assert [u["username"] for u in body["users"]] == ["bob"]

    def test_get_user_by_id(self, client, register, login):
        register()
        bob = register(username="bob", email="bob@x.com")
        login()
        res = client.get(f"/users/{bob['id']}")
        assert res.status_code == 200
        assert res.json()["username"] == "bob"

    def test_get_unknown_user(self, client, register, login):
        register()
        login()
        res = client.get("/users/9999")
        assert res.status_code == 404
        assert res.json()["error"] == "NOT_FOUND"


class TestProfile:

    def test_update_email(self, client, register, login, db):
        register()
        login()
        res = client.put("/users/me", json={"email": "New@X.com"})
        assert res.status_code == 200
        assert res.json()["email"] == "new@x.com"

        db.expire_all()
        assert db.query(User).filter(User.username == "alice").one().email == "new@x.com"

    def test_update_email_conflict(self, client, register, login):
        register()
        register(username="bob", email="bob@x.com")
        login()
        res = client.put("/users/me", json={"email": "bob@x.com"})
        assert res.status_code == 409
        assert res.json()["error"] == "CONFLICT"

    def test_update_email_invalid(self, client, register, login):
        register()
        login()
        res = client.put("/users/me", json={"email": "nope"})
        assert res.status_code == 400

    def test_same_email_is_noop(self, client, register, login):
        register()
        login()
        res = client.put("/users/me", json={"email": "alice@x.com"})
        assert res.status_code == 200

    def test_delete_me(self, client, register, login, db):
        register()
        login()
        res = client.delete("/users/me")
        assert res.status_code == 200
        assert "authToken" not in client.cookies
        assert db.query(User).count() == 0

        res = client.post("/auth/login", json={"username": "alice", "password": "pw1234"})
        assert res.status_code == 401

    def test_delete_me_removes_2fa(self, client, register, login, mailer, db):
        from models.two_factor import TwoFactorConfig

        register()
        login()
        client.post("/2fa/setup", json={"method": "email", "password": "pw1234"})
        client.post("/2fa/confirm", json={"code": mailer.last("2fa")["code"]})
        assert client.delete("/users/me").status_code == 200
        db.expire_all()
        assert db.query(TwoFactorConfig).count() == 0


# ---------------------------------------------------------------------------
# /admin
# ---------------------------------------------------------------------------

class TestAdminAccess:

    def test_plain_user_forbidden(self, client, register, login):
        bob = register(username="bob", email="bob@x.com")
        register()
        login()
        for method, path, kwargs in [
            ("PUT", f"/admin/users/{bob['id']}/role", {"json": {"role": "admin"}}),
            ("DELETE", f"/admin/users/{bob['id']}", {}),
            ("GET", "/admin/audit-logs", {}),
        ]:
            res = client.request(method, path, **kwargs)
            assert res.status_code == 403, path
            assert res.json()["error"] == "FORBIDDEN"

    def test_demoted_admin_rejected_before_token_expires(self, client, register, login, make_admin, db):
        _as_admin(register, login, make_admin)
        assert client.get("/admin/audit-logs").status_code == 200

        user = db.query(User).filter(User.username == "root").one()
        user.role = "user"
        db.commit()

        res = client.get("/admin/audit-logs")
        assert res.status_code == 403
        assert res.json()["message"] == "Admin access required"


class TestAdminRoles:

    def test_promote_user(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        res = client.put(f"/admin/users/{bob['id']}/role", json={"role": "admin"})
        assert res.status_code == 200
        assert res.json()["role"] == "admin"

    def test_invalid_role(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        res = client.put(f"/admin/users/{bob['id']}/role", json={"role": "superuser"})
        assert res.status_code == 400

    def test_cannot_change_own_role(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        me = client.get("/users/me").json()
        res = client.put(f"/admin/users/{me['id']}/role", json={"role": "user"})
        assert res.status_code == 400

    def test_unknown_user(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        res = client.put("/admin/users/9999/role", json={"role": "admin"})
        assert res.status_code == 404


class TestAdminUpdate:

    def test_set_email_password_and_role(self, client, register, login, make_admin, db):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        res = client.put(
            f"/admin/users/{bob['id']}",
            json={"email": "Bob2@X.com", "password": "newpass1", "role": "admin"},
        )
        assert res.status_code == 200
        body = res.json()
        assert body["email"] == "bob2@x.com"
        assert body["role"] == "admin"

        client.post("/auth/logout")
        assert client.post("/auth/login", json={"username": "bob", "password": "pw1234"}).status_code == 401
        assert login(username="bob", password="newpass1")["user"]["role"] == "admin"

        row = db.query(AuditLog).filter(AuditLog.action == "admin_update_user").one()
        assert row.detail == "fields=email,password,role"
        assert "newpass1" not in row.detail

    def test_partial_update_leaves_rest(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        body = client.put(f"/admin/users/{bob['id']}", json={"role": "admin"}).json()
        assert body["email"] == "bob@x.com"
        assert body["role"] == "admin"

    def test_password_change_drops_reset_links(self, client, register, login, make_admin, mailer):
        bob = register(username="bob", email="bob@x.com")
        client.post("/auth/forgot-password", json={"email": "bob@x.com"})
        token = mailer.last("reset")["token"]

        _as_admin(register, login, make_admin)
        client.put(f"/admin/users/{bob['id']}", json={"password": "newpass1"})
        res = client.post("/auth/reset-password", json={"token": token, "password": "other12"})
        assert res.status_code == 400

    def test_email_conflict(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        register(username="carol", email="carol@x.com")
        _as_admin(register, login, make_admin)
        res = client.put(f"/admin/users/{bob['id']}", json={"email": "carol@x.com"})
        assert res.status_code == 409

    def test_weak_password(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        res = client.put(f"/admin/users/{bob['id']}", json={"password": "abc"})
        assert res.status_code == 400
        assert res.json()["error"] == "VALIDATION_ERROR"

    def test_empty_body(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        assert client.put(f"/admin/users/{bob['id']}", json={}).status_code == 400

    def test_not_on_self(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        me = client.get("/users/me").json()
        res = client.put(f"/admin/users/{me['id']}", json={"email": "root2@x.com"})
        assert res.status_code == 400

    def test_unknown_user(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        assert client.put("/admin/users/9999", json={"role": "user"}).status_code == 404

    def test_plain_user_forbidden(self, client, register, login):
        bob = register(username="bob", email="bob@x.com")
        register()
        login()
        res = client.put(f"/admin/users/{bob['id']}", json={"role": "admin"})
        assert res.status_code == 403


class TestAdminDelete:

    def test_delete_user(self, client, register, login, make_admin, db):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        res = client.delete(f"/admin/users/{bob['id']}")
        assert res.status_code == 200
        assert client.get(f"/users/{bob['id']}").status_code == 404

    def test_cannot_delete_self(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        me = client.get("/users/me").json()
        assert client.delete(f"/admin/users/{me['id']}").status_code == 400

    def test_delete_unknown(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        assert client.delete("/admin/users/9999").status_code == 404


class TestAuditLogs:

    def test_newest_first_with_usernames(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        client.put(f"/admin/users/{bob['id']}/role", json={"role": "admin"})

        logs = client.get("/admin/audit-logs").json()["logs"]
        top = logs[0]
        assert top["action"] == "change_role"
        assert top["actor_username"] == "root"
        assert top["target_username"] == "bob"
        assert top["detail"] == "new_role=admin"

    def test_filter_by_action(self, client, register, login, make_admin):
        register()
        client.post("/auth/login", json={"username": "alice", "password": "bad"})
        _as_admin(register, login, make_admin)

        logs = client.get("/admin/audit-logs", params={"actions": "login_failed"}).json()["logs"]
        assert len(logs) == 1
        assert logs[0]["target_username"] == "alice"

    def test_filter_by_user(self, client, register, login, make_admin):
        alice = register()
        register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)

        logs = client.get("/admin/audit-logs", params={"user_ids": alice["id"]}).json()["logs"]
        assert {row["action"] for row in logs} == {"user_register"}

    def test_filter_by_time(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        past = client.get("/admin/audit-logs", params={"since": "2000-01-01T00:00:00"}).json()
        future = client.get("/admin/audit-logs", params={"since": "2999-01-01T00:00:00"}).json()
        assert len(past["logs"]) >= 2
        assert future["logs"] == []

    def test_limit(self, client, register, login, make_admin):
        _as_admin(register, login, make_admin)
        logs = client.get("/admin/audit-logs", params={"limit": 1}).json()["logs"]
        assert len(logs) == 1

    def test_deleted_account_keeps_trail(self, client, register, login, make_admin):
        bob = register(username="bob", email="bob@x.com")
        _as_admin(register, login, make_admin)
        client.delete(f"/admin/users/{bob['id']}")

        logs = client.get("/admin/audit-logs", params={"actions": "delete_user"}).json()["logs"]
        assert logs[0]["detail"] == f"user_id={bob['id']} username=bob"
        assert logs[0]["actor_username"] == "root"
