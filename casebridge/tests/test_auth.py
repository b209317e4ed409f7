"""
Authentication Tests
====================

Client and internal sign-in, internal sessions, token refresh and
revocation, password reset and email confirmation through the HTTP API.
"""

import pytest

from conftest import PASSWORD, client_headers, seed_firm, staff_headers


@pytest.fixture
def firm(db):
    return seed_firm(db)


class TestClientAccounts:
    def test_signup_then_login(self, api):
        response = api.post("/auth/signup", json={
            "email": "New.Client@Example.com",
            "password": PASSWORD,
            "first_name": "New",
            "last_name": "Client",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "new.client@example.com"
        assert body["email_confirmation_required"] is False

        headers = client_headers(api, "new.client@example.com")
        me = api.get("/auth/me", headers=headers).json()
        assert me["account_type"] == "client"
        assert me["home"] is None
        assert me["email_confirmed"] is True

    def test_duplicate_signup_conflicts(self, api, firm):
        response = api.post("/auth/signup", json={
            "email": firm.client.email, "password": PASSWORD, "first_name": "Again",
        })
        assert response.status_code == 409

    def test_short_password_rejected(self, api):
        response = api.post("/auth/signup", json={
            "email": "short@example.com", "password": "abc", "first_name": "Short",
        })
        assert response.status_code == 422

    def test_wrong_password(self, api, firm):
        response = api.post("/auth/login", json={"email": firm.client.email, "password": "nope-nope-nope"})
        assert response.status_code == 401

    def test_staff_cannot_use_client_login(self, api, firm):
        response = api.post("/auth/login", json={"email": firm.manager.email, "password": PASSWORD})
        assert response.status_code == 403
        assert "internal portal" in response.json()["detail"]

    def test_email_confirmation_required(self, api, monkeypatch):
        from casebridge.config import get_settings

        monkeypatch.setenv("REQUIRE_EMAIL_CONFIRMATION", "true")
        get_settings.cache_clear()

        response = api.post("/auth/signup", json={
            "email": "pending@example.com", "password": PASSWORD, "first_name": "Pending",
        })
        body = response.json()
        assert body["email_confirmation_required"] is True
        token = body["_dev_token"]

        blocked = api.post("/auth/login", json={"email": "pending@example.com", "password": PASSWORD})
        assert blocked.status_code == 403

        assert api.post("/auth/confirm-email", json={"token": token}).status_code == 200
        assert api.post("/auth/login", json={"email": "pending@example.com", "password": PASSWORD}).status_code == 200

        # Tokens are single use
        assert api.post("/auth/confirm-email", json={"token": token}).status_code == 422


class TestInternalLogin:
    @pytest.mark.parametrize("who,home", [
        ("admin", "/internal/dashboard"),
        ("manager", "/internal/case-manager/dashboard"),
        ("associate", "/internal/associate/dashboard"),
    ])
    def test_home_per_role(self, api, firm, who, home):
        user = getattr(firm, who)
        response = api.post("/auth/internal/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 200
        body = response.json()
        assert body["home"] == home
        assert body["session_id"]

    def test_client_cannot_use_internal_login(self, api, firm):
        response = api.post("/auth/internal/login", json={"email": firm.client.email, "password": PASSWORD})
        assert response.status_code == 403

    def test_suspended_staff_rejected(self, api, db, firm):
        from casebridge.db.models import UserStatus

        firm.associate.status = UserStatus.SUSPENDED
        db.commit()
        response = api.post("/auth/internal/login", json={"email": firm.associate.email, "password": PASSWORD})
        assert response.status_code == 403
        assert response.json()["detail"] == "Account suspended"

    def test_client_token_cannot_reach_internal_portal(self, api, firm):
        headers = client_headers(api, firm.client.email)
        assert api.get("/internal/matters", headers=headers).status_code == 403

    def test_missing_token(self, api):
        assert api.get("/internal/matters").status_code == 401

    def test_logout_ends_session(self, api, firm):
        headers = staff_headers(api, firm.manager.email)
        second = staff_headers(api, firm.manager.email)
        assert api.get("/internal/matters", headers=second).status_code == 200

        assert api.post("/auth/logout", headers=headers).status_code == 200
        # The logged-out token is revoked and every internal session is gone
        assert api.get("/auth/me", headers=headers).status_code == 401
        assert api.get("/internal/matters", headers=second).status_code == 401

    def test_expired_session_is_reported(self, api, db, firm):
        from datetime import datetime, timedelta

        from casebridge.db.models import InternalSession

        headers = staff_headers(api, firm.associate.email)
        session = db.query(InternalSession).filter(InternalSession.user_id == firm.associate.id).one()
        session.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        response = api.get("/internal/matters", headers=headers)
        assert response.status_code == 401
        assert response.json() == {"detail": "Session expired"}

        # Signing in again opens a fresh session
        assert api.get("/internal/matters", headers=staff_headers(api, firm.associate.email)).status_code == 200

    def test_internal_session_lookup(self, api, db, firm):
        from casebridge.auth import AuthService

        service = AuthService(db)
        assert service.get_internal_session(firm.associate.id) is None

        staff_headers(api, firm.associate.email)
        latest = staff_headers(api, firm.associate.email)
        session = service.get_internal_session(firm.associate.id)
        assert session is not None
        me = api.get("/auth/me", headers=latest).json()
        assert me["user_id"] == firm.associate.id

        assert service.clear_internal_sessions(firm.associate.id) == 2
        assert service.get_internal_session(firm.associate.id) is None


class TestRefresh:
    def test_refresh_rotates(self, api, firm):
        login = api.post("/auth/login", json={"email": firm.client.email, "password": PASSWORD}).json()

        response = api.post("/auth/refresh", json={"refresh_token": login["refresh_token"]})
        assert response.status_code == 200
        fresh = response.json()
        assert api.get("/auth/me", headers={"Authorization": f"Bearer {fresh['access_token']}"}).status_code == 200

        replay = api.post("/auth/refresh", json={"refresh_token": login["refresh_token"]})
        assert replay.status_code == 401

    def test_access_token_is_not_a_refresh_token(self, api, firm):
        login = api.post("/auth/login", json={"email": firm.client.email, "password": PASSWORD}).json()
        response = api.post("/auth/refresh", json={"refresh_token": login["access_token"]})
        assert response.status_code == 401


class TestPasswordReset:
    def test_unknown_email_gets_same_answer(self, api):
        response = api.post("/auth/forgot-password", json={"email": "nobody@example.com"})
        assert response.status_code == 200
        assert "_dev_token" not in response.json()

    def test_reset_flow(self, api, firm):
        response = api.post("/auth/forgot-password", json={"email": firm.client.email})
        token = response.json()["_dev_token"]

        new_password = "a-brand-new-password"
        assert api.post("/auth/reset-password", json={"token": token, "new_password": new_password}).status_code == 200
        assert api.post("/auth/login", json={"email": firm.client.email, "password": PASSWORD}).status_code == 401
        assert api.post("/auth/login", json={"email": firm.client.email, "password": new_password}).status_code == 200

        reused = api.post("/auth/reset-password", json={"token": token, "new_password": "yet-another-one"})
        assert reused.status_code == 422

    def test_reset_rejects_overlong_password(self, api, firm):
        token = api.post("/auth/forgot-password", json={"email": firm.client.email}).json()["_dev_token"]
        response = api.post("/auth/reset-password", json={"token": token, "new_password": "x" * 80})
        assert response.status_code == 422


class TestProfile:
    @pytest.mark.parametrize("who,login", [("client", client_headers), ("associate", staff_headers)])
    def test_update_own_profile(self, api, firm, who, login):
        headers = login(api, getattr(firm, who).email)

        response = api.patch("/auth/me", json={"first_name": "Ngozi", "phone": "+234 801 234 5678"}, headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert body["first_name"] == "Ngozi"
        assert body["phone"] == "+234 801 234 5678"
        assert body["name"].startswith("Ngozi ")
        # Untouched fields keep their values
        assert body["last_name"] == getattr(firm, who).last_name

        assert api.patch("/auth/me", json={"first_name": "  "}, headers=headers).status_code == 422
        assert api.patch("/auth/me", json={"phone": "123"}, headers=headers).status_code == 422
        assert api.patch("/auth/me", json={"phone": ""}, headers=headers).json()["phone"] is None

    def test_profile_needs_sign_in(self, api):
        assert api.patch("/auth/me", json={"first_name": "X"}).status_code == 401


class TestChangePassword:
    def test_wrong_current_password(self, api, firm):
        headers = client_headers(api, firm.client.email)
        response = api.post("/auth/change-password", json={
            "current_password": "not-my-password", "new_password": "a-brand-new-password",
        }, headers=headers)
        assert response.status_code == 422
        assert response.json()["detail"] == "Incorrect current password"
        assert api.post("/auth/login", json={"email": firm.client.email, "password": PASSWORD}).status_code == 200

    def test_client_changes_password(self, api, firm):
        headers = client_headers(api, firm.client.email)
        response = api.post("/auth/change-password", json={
            "current_password": PASSWORD, "new_password": "a-brand-new-password",
        }, headers=headers)
        assert response.status_code == 200

        assert api.post("/auth/login", json={"email": firm.client.email, "password": PASSWORD}).status_code == 401
        assert client_headers(api, firm.client.email, "a-brand-new-password")

    def test_staff_changes_password_and_it_is_audited(self, api, db, firm):
        from casebridge.db.models import AuditLog

        headers = staff_headers(api, firm.manager.email)
        response = api.post("/auth/change-password", json={
            "current_password": PASSWORD, "new_password": "another-strong-password",
        }, headers=headers)
        assert response.status_code == 200
        assert staff_headers(api, firm.manager.email, "another-strong-password")
        assert db.query(AuditLog).filter(
            AuditLog.actor_id == firm.manager.id, AuditLog.action == "password_changed",
        ).count() == 1

    def test_new_password_must_be_valid_and_different(self, api, firm):
        headers = client_headers(api, firm.client.email)
        same = api.post("/auth/change-password", json={"current_password": PASSWORD, "new_password": PASSWORD},
                        headers=headers)
        assert same.status_code == 422
        short = api.post("/auth/change-password", json={"current_password": PASSWORD, "new_password": "short"},
                         headers=headers)
        assert short.status_code == 422


class TestFirmRegistration:
    def _register(self, api, email="owner@newfirm.test"):
        return api.post("/auth/register-firm", json={
            "firm_name": "New Firm LLP",
            "first_name": "Olu",
            "last_name": "Owner",
            "email": email,
            "password": PASSWORD,
        })

    def test_registration_completes_without_confirmation(self, api):
        response = self._register(api)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "completed"
        assert body["firm_id"]

        headers = staff_headers(api, "owner@newfirm.test")
        me = api.get("/auth/me", headers=headers).json()
        assert me["internal_role"] == "admin_manager"
        assert me["firm_name"] == "New Firm LLP"

        stages = api.get("/internal/pipeline/stages", headers=headers).json()
        assert len(stages) == 8

    def test_registration_waits_for_confirmation(self, api, monkeypatch):
        from casebridge.config import get_settings

        monkeypatch.setenv("REQUIRE_EMAIL_CONFIRMATION", "true")
        get_settings.cache_clear()

        body = self._register(api).json()
        assert body["status"] == "pending"
        assert body["email_confirmation_required"] is True

        # A repeated submission while pending is not an error
        again = self._register(api)
        assert again.status_code == 201
        assert again.json()["registration_id"] == body["registration_id"]

        blocked = api.post("/auth/internal/login", json={"email": "owner@newfirm.test", "password": PASSWORD})
        assert blocked.status_code == 403

        confirmed = api.post("/auth/confirm-email", json={"token": body["_dev_token"]}).json()
        assert confirmed["firm_id"]
        staff_headers(api, "owner@newfirm.test")

    def test_email_of_existing_account_conflicts(self, api, firm):
        assert self._register(api, email=firm.client.email).status_code == 409


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["db"] is True
    assert body["queue"] == {"available": False}


def test_security_headers(api):
    response = api.get("/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
