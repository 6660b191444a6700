# Overview: Pytest coverage for registration, login throttling, sessions and health.

"""
Authentication and session tests.

Login throttling is counted from security_events rows, so these tests
exercise it end to end through the HTTP layer.
"""

from datetime import timedelta

import pytest

from bizdesk.errors import ConflictError, ValidationError
from bizdesk.models import SecurityEvent, SessionToken
from bizdesk.models.security import EVENT_LOGIN_FAILED
from bizdesk.services import auth_service, login_throttle_service, maintenance_service, session_service
from bizdesk.services.auth_service import PasswordValidationError
from bizdesk.time_utils import utcnow

from conftest import TEST_PASSWORD, auth_headers


class TestRegistration:
    def test_register_returns_token(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Chioma",
            "email": "Chioma@Example.com",
            "password": TEST_PASSWORD,
            "business_name": "Chioma Crafts",
        })

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["user"]["email"] == "chioma@example.com"
        assert "password_hash" not in body["user"]

        me = client.get("/api/auth/me", headers=auth_headers(body["token"]))
        assert me.status_code == 200
        assert me.get_json()["user"]["business_name"] == "Chioma Crafts"

    def test_duplicate_email_conflicts(self, client, seller):
        resp = client.post("/api/auth/register", json={
            "name": "Ada Again",
            "email": "ADA@example.com",
            "password": TEST_PASSWORD,
        })
        assert resp.status_code == 409

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_weak_password_over_http(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Weak", "email": "weak@example.com", "password": "password",
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "weak_password"

    def test_create_user_validation(self, db_session, seller):
        with pytest.raises(ValidationError):
            auth_service.create_user("", "x@example.com", TEST_PASSWORD)
        with pytest.raises(ValidationError):
            auth_service.create_user("X", "not-an-email", TEST_PASSWORD)
        with pytest.raises(ConflictError):
            auth_service.create_user("X", "new@example.com", TEST_PASSWORD, phone=seller.phone)


class TestLogin:
    def test_login_by_email_or_phone(self, client, seller):
        by_email = client.post("/api/auth/login", json={"email": "ADA@example.com", "password": TEST_PASSWORD})
        assert by_email.status_code == 200
        assert by_email.get_json()["token"]

        by_phone = client.post("/api/auth/login", json={"phone": seller.phone, "password": TEST_PASSWORD})
        assert by_phone.status_code == 200

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "ada@example.com"}).status_code == 400

    def test_wrong_password(self, client, seller):
        resp = client.post("/api/auth/login", json={"email": seller.email, "password": "Wrong123!"})

        assert resp.status_code == 401
        assert resp.get_json()["code"] == "unauthorized"
        assert "warning" not in resp.get_json()

    def test_lockout_after_repeated_failures(self, client, seller):
        max_attempts = login_throttle_service.MAX_FAILED_ATTEMPTS
        for _ in range(max_attempts - 3):
            client.post("/api/auth/login", json={"email": seller.email, "password": "Wrong123!"})

        warned = client.post("/api/auth/login", json={"email": seller.email, "password": "Wrong123!"})
        assert warned.status_code == 401
        assert "2 attempts remaining" in warned.get_json()["warning"]

        for _ in range(2):
            last = client.post("/api/auth/login", json={"email": seller.email, "password": "Wrong123!"})
        assert last.status_code == 429

        # Correct password is refused while locked
        locked = client.post("/api/auth/login", json={"email": seller.email, "password": TEST_PASSWORD})
        assert locked.status_code == 429
        assert locked.get_json()["retry_after_seconds"] > 0

        status = client.get(f"/api/auth/lockout-status/{seller.email}").get_json()
        assert status["locked"] is True
        assert status["failed_attempts"] == max_attempts

    def test_success_resets_failure_count(self, client, seller):
        for _ in range(3):
            client.post("/api/auth/login", json={"email": seller.email, "password": "Wrong123!"})
        client.post("/api/auth/login", json={"email": seller.email, "password": TEST_PASSWORD})

        assert login_throttle_service.get_recent_failed_attempts(seller.email) == 0

    def test_old_failures_fall_out_of_window(self, db_session, seller):
        stale = utcnow() - login_throttle_service.LOCKOUT_WINDOW - timedelta(minutes=1)
        for _ in range(login_throttle_service.MAX_FAILED_ATTEMPTS):
            db_session.add(SecurityEvent(
                event_type=EVENT_LOGIN_FAILED,
                identifier=seller.email,
                success=False,
                occurred_at=stale,
            ))
        db_session.commit()

        assert login_throttle_service.is_account_locked(seller.email) == (False, None)

    def test_inactive_user_cannot_login(self, client, db_session, seller):
        seller.is_active = False
        db_session.commit()

        resp = client.post("/api/auth/login", json={"email": seller.email, "password": TEST_PASSWORD})
        assert resp.status_code == 401


class TestSessions:
    def test_logout_revokes_token(self, client, seller_headers):
        assert client.get("/api/auth/me", headers=seller_headers).status_code == 200

        assert client.post("/api/auth/logout", headers=seller_headers).status_code == 200

        assert client.get("/api/auth/me", headers=seller_headers).status_code == 401
        assert client.post("/api/auth/logout", headers=seller_headers).status_code == 401

    def test_logout_requires_token(self, client, db_session):
        assert client.post("/api/auth/logout").status_code == 401

    def test_deactivated_user_session_is_rejected(self, client, db_session, seller, seller_headers):
        seller.is_active = False
        db_session.commit()

        resp = client.get("/api/auth/me", headers=seller_headers)
        assert resp.status_code == 401

    def test_idle_session_expires(self, db_session, seller):
        session, token = session_service.create_session(seller.id)
        session.last_used_at = utcnow() - session_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_absolute_expiry(self, db_session, seller):
        session, token = session_service.create_session(seller.id)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_valid_session_scopes_to_owner(self, db_session, seller):
        _, token = session_service.create_session(seller.id)
        context = session_service.validate_session(token)
        assert context.owner_id == seller.id

    def test_use_refreshes_last_used_at(self, db_session, seller):
        session, token = session_service.create_session(seller.id)
        stale = utcnow() - timedelta(minutes=30)
        session.last_used_at = stale
        db_session.commit()

        assert session_service.validate_session(token) is not None
        db_session.expire_all()
        assert db_session.get(SessionToken, session.id).last_used_at > stale

    def test_revoke_all_and_cleanup(self, db_session, seller):
        for _ in range(3):
            session_service.create_session(seller.id)
        assert session_service.revoke_all_user_sessions(seller.id) == 3

        old = utcnow() - timedelta(days=31)
        for row in db_session.query(SessionToken).all():
            row.created_at = old
        db_session.commit()

        assert session_service.cleanup_expired_sessions() == 3


class TestMaintenance:
    def test_cleanup_security_events(self, db_session):
        db_session.add_all([
            SecurityEvent(event_type="LOGIN_FAILED", identifier="x", success=False,
                          occurred_at=utcnow() - timedelta(days=120)),
            SecurityEvent(event_type="LOGIN_FAILED", identifier="x", success=False, occurred_at=utcnow()),
        ])
        db_session.commit()

        assert maintenance_service.cleanup_security_events(retention_days=90) == 1
        assert db_session.query(SecurityEvent).count() == 1

    def test_retention_must_be_positive(self, db_session):
        with pytest.raises(ValidationError):
            maintenance_service.cleanup_security_events(retention_days=0)


class TestSystemRoutes:
    def test_health(self, client, db_session, seller):
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["users"] == 1

    def test_version(self, client):
        body = client.get("/version").get_json()
        assert body["api_version"]
        assert body["server_time"].endswith("Z")
