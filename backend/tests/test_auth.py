"""Tests for the authentication endpoints and token services."""

import pytest

from lumina.auth.jwt_service import InvalidTokenError, JWTService, TokenExpiredError
from lumina.auth.password import PasswordService

# Matches the password the seeder gives every user
PASSWORD = "correct-horse-battery"


@pytest.fixture
def user(client_seed):
    return client_seed.user("jane@example.com")


def login(client, email="jane@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


class TestJWTService:
    def test_round_trip(self):
        service = JWTService("k" * 32)
        pair = service.generate_token_pair(42)
        claims = service.decode_token(pair.access_token)
        assert claims.user_id == "42"
        assert claims.type == "access"
        assert claims.jti
        assert service.validate_refresh_token(pair.refresh_token).type == "refresh"

    def test_every_token_has_its_own_id(self):
        service = JWTService("k" * 32)
        first = service.decode_token(service.generate_token_pair(1).access_token)
        second = service.decode_token(service.generate_token_pair(1).access_token)
        assert first.jti != second.jti

    def test_wrong_secret(self):
        token = JWTService("a" * 32).generate_token_pair(1).access_token
        with pytest.raises(InvalidTokenError):
            JWTService("b" * 32).decode_token(token)

    def test_expired(self, monkeypatch):
        service = JWTService("k" * 32)
        monkeypatch.setattr(JWTService, "ACCESS_TOKEN_TTL", -10)
        token = service.generate_token_pair(1).access_token
        with pytest.raises(TokenExpiredError):
            service.decode_token(token)

    def test_access_token_is_not_a_refresh_token(self):
        service = JWTService("k" * 32)
        pair = service.generate_token_pair(1)
        with pytest.raises(InvalidTokenError):
            service.validate_refresh_token(pair.access_token)
        with pytest.raises(InvalidTokenError):
            service.validate_reset_token(pair.refresh_token)


class TestPasswordService:
    def test_hash_and_verify(self):
        service = PasswordService(rounds=4)
        hashed = service.hash("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert service.verify("s3cret-pass", hashed)
        assert not service.verify("wrong", hashed)
        assert not service.verify("s3cret-pass", None)
        assert not service.verify("s3cret-pass", "not-a-bcrypt-hash")


class TestLogin:
    def test_login(self, client, user):
        response = login(client)
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 900
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.json()["email"] == "jane@example.com"

    def test_email_is_case_insensitive(self, client, user):
        assert login(client, email="JANE@example.com").status_code == 200

    @pytest.mark.parametrize("email, password", [
        ("jane@example.com", "wrong-password"),
        ("nobody@example.com", PASSWORD),
    ])
    def test_bad_credentials_look_alike(self, client, user, email, password):
        response = login(client, email, password)
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    def test_refresh_token_cannot_authenticate_requests(self, client, user):
        tokens = login(client).json()
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
        assert response.status_code == 401


class TestRefresh:
    def test_refresh_rotates(self, client, user):
        tokens = login(client).json()
        refreshed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 200
        assert refreshed.json()["refresh_token"] != tokens["refresh_token"]

        replay = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json()["message"] == "Refresh token has been revoked"

    def test_garbage_refresh_token(self, client):
        response = client.post("/api/auth/refresh", json={"refresh_token": "nope"})
        assert response.status_code == 401


class TestLogout:
    def test_logout_revokes_the_access_token(self, client, user):
        headers = {"Authorization": f"Bearer {login(client).json()['access_token']}"}
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_logout_requires_a_user(self, client):
        assert client.post("/api/auth/logout").status_code == 401


class TestRegister:
    def test_register(self, client):
        response = client.post("/api/auth/register", json={
            "name": "Sam",
            "email": "Sam@Example.com",
            "password": "long-enough",
            "password_confirmation": "long-enough",
        })
        assert response.status_code == 201
        assert response.json()["email"] == "sam@example.com"
        assert response.json()["email_verified_at"] is None
        assert "password_hash" not in response.json()
        assert login(client, "sam@example.com", "long-enough").status_code == 200

    def test_register_validates(self, client, user):
        response = client.post("/api/auth/register", json={
            "name": "Jane",
            "email": "jane@example.com",
            "password": "short",
            "password_confirmation": "other",
        })
        assert response.status_code == 422
        assert response.json()["errors"] == {
            "email": ["The email has already been taken."],
            "password": ["The password field must be at least 8 characters."],
        }

    def test_confirmation_must_match(self, client):
        response = client.post("/api/auth/register", json={
            "name": "Sam",
            "email": "sam@example.com",
            "password": "long-enough",
            "password_confirmation": "different",
        })
        assert response.json()["errors"] == {"password": ["The password field confirmation does not match."]}


class TestMe:
    def test_me_lists_role_and_memberships(self, route_client, route_client_seed):
        acme = route_client_seed.organization("acme")
        admin, _ = route_client_seed.admin_and_member(acme)
        response = route_client.get("/api/auth/me", headers=route_client_seed.headers(admin))
        body = response.json()
        assert body["role"] is None
        assert [(o["slug"], o["role"]) for o in body["organizations"]] == [("acme", "admin")]

    def test_me_without_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"


class TestPasswordReset:
    def test_recover_and_reset(self, client, user, mailer):
        response = client.post("/api/auth/password/recover", json={"email": "jane@example.com"})
        assert response.status_code == 200
        assert "reset_token" not in response.json()
        assert mailer.sent[-1][0] == "jane@example.com"
        token = mailer.last_token()

        reset = client.post("/api/auth/password/reset", json={
            "token": token, "password": "brand-new-pass", "password_confirmation": "brand-new-pass",
        })
        assert reset.status_code == 200
        assert login(client, password="brand-new-pass").status_code == 200
        assert login(client).status_code == 401

    def test_reset_token_works_once(self, client, user, mailer):
        client.post("/api/auth/password/recover", json={"email": "jane@example.com"})
        payload = {
            "token": mailer.last_token(),
            "password": "brand-new-pass",
            "password_confirmation": "brand-new-pass",
        }
        assert client.post("/api/auth/password/reset", json=payload).status_code == 200
        replay = client.post("/api/auth/password/reset", json=payload)
        assert replay.status_code == 422
        assert replay.json()["errors"] == {"token": ["This password reset token is invalid."]}

    def test_unknown_email_gets_the_same_answer(self, client, user, mailer):
        known = client.post("/api/auth/password/recover", json={"email": "jane@example.com"})
        unknown = client.post("/api/auth/password/recover", json={"email": "nobody@example.com"})
        assert known.json() == unknown.json()
        assert len(mailer.sent) == 1

    def test_exposed_reset_token(self, make_client, seeder):
        client = make_client(expose_reset_tokens=True)
        seeder(client).user("jane@example.com")
        response = client.post("/api/auth/password/recover", json={"email": "jane@example.com"})
        assert response.json()["reset_token"]

    def test_access_token_cannot_reset(self, client, user):
        access = login(client).json()["access_token"]
        response = client.post("/api/auth/password/reset", json={
            "token": access, "password": "brand-new-pass", "password_confirmation": "brand-new-pass",
        })
        assert response.status_code == 422
