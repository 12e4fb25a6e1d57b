"""Tests for auth module (passwords, tokens, accounts and the REST routes)."""
import jwt
import pytest

from app.auth.passwords import hash_password, verify_password
from app.auth.schemas import UserStatus
from app.auth.tokens import TokenService
from app.config import AuthSettings
from app.errors import AuthError, ConflictError

from conftest import bearer, signup


class TestPasswords:
    def test_hash_is_not_plaintext(self):
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert hashed.startswith("$argon2id$")

    def test_verify(self):
        hashed = hash_password("secret123")
        assert verify_password(hashed, "secret123") is True
        assert verify_password(hashed, "wrong-pass") is False

    def test_verify_garbage_hash(self):
        assert verify_password("not-a-hash", "secret123") is False


class TestTokenService:
    def test_round_trip(self):
        tokens = TokenService("k", AuthSettings())
        assert tokens.verify_token(tokens.issue_token("user-1")) == "user-1"

    def test_expired_token(self):
        tokens = TokenService("k", AuthSettings(token_expire_days=-1))
        token = tokens.issue_token("user-1")
        with pytest.raises(AuthError, match="expired"):
            tokens.verify_token(token)

    def test_wrong_secret(self):
        token = TokenService("k1", AuthSettings()).issue_token("user-1")
        with pytest.raises(AuthError, match="invalid"):
            TokenService("k2", AuthSettings()).verify_token(token)

    def test_missing_subject(self):
        token = jwt.encode({"exp": 9999999999, "iat": 1, "iss": "neon-chat"}, "k", algorithm="HS256")
        with pytest.raises(AuthError):
            TokenService("k", AuthSettings()).verify_token(token)

    def test_empty_token(self):
        with pytest.raises(AuthError, match="No token"):
            TokenService("k", AuthSettings()).verify_token("")


class TestAuthService:
    def test_register_lowercases_and_hashes(self, services, register_user):
        token, user = register_user("  Alice_01 ")

        assert user.username == "alice_01"
        assert user.password_hash != "secret123"
        assert user.interested_in == ["everyone"]
        assert user.mola_balance == 50
        assert services.auth.resolve_token(token).id == user.id

    def test_duplicate_username_ignores_case(self, register_user):
        register_user("alice")
        with pytest.raises(ConflictError):
            register_user("ALICE")

    def test_login_sets_online(self, services, register_user):
        _, user = register_user("alice")
        assert user.status is UserStatus.OFFLINE

        token, logged_in = services.auth.login("Alice", "secret123")

        assert logged_in.status is UserStatus.ONLINE
        assert services.auth.resolve_token(token).id == user.id

    def test_login_wrong_password(self, services, register_user):
        register_user("alice")
        with pytest.raises(AuthError):
            services.auth.login("alice", "not-the-password")

    def test_login_unknown_user(self, services):
        with pytest.raises(AuthError):
            services.auth.login("nobody", "secret123")

    def test_deactivated_account(self, services, register_user):
        token, user = register_user("alice")
        services.auth.users.set_active(user.id, False)

        with pytest.raises(AuthError):
            services.auth.login("alice", "secret123")
        with pytest.raises(AuthError):
            services.auth.authenticate(token)

    def test_logout_sets_offline(self, services, register_user):
        _, user = register_user("alice")
        services.auth.login("alice", "secret123")
        services.auth.logout(user.id)
        assert services.auth.users.get(user.id).status is UserStatus.OFFLINE


class TestAuthEndpoints:
    def test_register_returns_sanitized_profile(self, api_client):
        body = signup(api_client, "BobTheBuilder", bio="hi", interests=["music", "art"])

        assert body["success"] is True
        assert body["token"]
        user = body["user"]
        assert user["username"] == "bobthebuilder"
        assert user["interests"] == ["music", "art"]
        assert user["interestedIn"] == ["everyone"]
        assert user["isPremium"] is False
        assert "password" not in user
        assert "password_hash" not in user
        assert "passwordHash" not in user

    @pytest.mark.parametrize("payload", [
        {"username": "ab", "password": "secret123", "age": 25, "gender": "male"},
        {"username": "bad name!", "password": "secret123", "age": 25, "gender": "male"},
        {"username": "carol", "password": "123", "age": 25, "gender": "male"},
        {"username": "carol", "password": "secret123", "age": 17, "gender": "male"},
        {"username": "carol", "password": "secret123", "age": 25, "gender": "robot"},
        {"username": "carol", "password": "secret123", "age": 25, "gender": "male", "bio": "x" * 141},
    ])
    def test_register_validation(self, api_client, payload):
        response = api_client.post("/api/auth/register", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Validation Error"
        assert body["errors"]

    def test_register_duplicate(self, api_client):
        signup(api_client, "alice")
        response = api_client.post("/api/auth/register", json={
            "username": "Alice", "password": "secret123", "age": 30, "gender": "female",
        })
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_login(self, api_client):
        signup(api_client, "alice")

        ok = api_client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
        assert ok.status_code == 200
        assert ok.json()["user"]["status"] == "online"

        bad = api_client.post("/api/auth/login", json={"username": "alice", "password": "nope123"})
        assert bad.status_code == 401
        assert bad.json() == {"success": False, "message": "Invalid credentials! Check your password"}

    def test_me_requires_token(self, api_client):
        response = api_client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_me_rejects_bad_token(self, api_client):
        response = api_client.get("/api/auth/me", headers=bearer("garbage"))
        assert response.status_code == 401

    def test_me(self, api_client):
        token = signup(api_client, "alice")["token"]
        response = api_client.get("/api/auth/me", headers=bearer(token))
        assert response.status_code == 200
        assert response.json()["user"]["username"] == "alice"

    def test_update_status(self, api_client):
        token = signup(api_client, "alice")["token"]

        response = api_client.put("/api/auth/status", json={"status": "busy"}, headers=bearer(token))
        assert response.status_code == 200
        assert response.json()["user"]["status"] == "busy"

        invalid = api_client.put("/api/auth/status", json={"status": "asleep"}, headers=bearer(token))
        assert invalid.status_code == 400

    def test_logout(self, api_client):
        token = signup(api_client, "alice")["token"]
        response = api_client.post("/api/auth/logout", headers=bearer(token))
        assert response.status_code == 200

        me = api_client.get("/api/auth/me", headers=bearer(token))
        assert me.json()["user"]["status"] == "offline"
