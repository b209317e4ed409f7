"""
Firm Tests
==========

Invitations, staff administration, firm settings and pipeline admin.
"""

from datetime import datetime, timedelta

import pytest

from casebridge import firms
from casebridge.activity import list_audit_logs
from casebridge.db.models import (
    AuditLog, InternalRole, InternalSession, Invitation, InvitationStatus, UserStatus,
)
from casebridge.errors import ConflictError, NotFoundError, PermissionDeniedError

from conftest import PASSWORD, seed_firm, staff_headers


def _audit_actions(db, firm_id):
    return [entry.action for entry in db.query(AuditLog).filter(AuditLog.firm_id == firm_id)]


class TestInvitations:
    def test_create_stores_only_hash(self, db, seeded):
        invitation, token = firms.create_invitation(
            db, seeded.ctx(seeded.admin), "New.Lawyer@Firm-a.test", InternalRole.ASSOCIATE_LAWYER,
        )
        assert invitation.email == "new.lawyer@firm-a.test"
        assert invitation.status == InvitationStatus.PENDING
        assert invitation.token_hash != token
        assert invitation.expires_at > datetime.utcnow() + timedelta(days=6)
        assert "user_invited" in _audit_actions(db, seeded.firm.id)

    def test_new_invitation_supersedes_pending(self, db, seeded):
        admin = seeded.ctx(seeded.admin)
        first, _ = firms.create_invitation(db, admin, "twice@firm-a.test", InternalRole.ASSOCIATE_LAWYER)
        second, _ = firms.create_invitation(db, admin, "twice@firm-a.test", InternalRole.CASE_MANAGER)

        db.refresh(first)
        assert first.status == InvitationStatus.REVOKED
        assert second.status == InvitationStatus.PENDING

    def test_active_member_cannot_be_invited(self, db, seeded):
        with pytest.raises(ConflictError):
            firms.create_invitation(db, seeded.ctx(seeded.admin), seeded.manager.email, InternalRole.CASE_MANAGER)

    def test_suspended_member_cannot_be_invited(self, db, seeded):
        admin = seeded.ctx(seeded.admin)
        firms.update_staff_status(db, admin, seeded.associate.id, UserStatus.SUSPENDED)

        with pytest.raises(ConflictError) as exc:
            firms.create_invitation(db, admin, seeded.associate.email, InternalRole.ASSOCIATE_LAWYER)
        assert "change their status" in exc.value.detail
        assert db.query(Invitation).filter(Invitation.email == seeded.associate.email).count() == 0

        # Reactivation is the way back in
        firms.update_staff_status(db, admin, seeded.associate.id, UserStatus.ACTIVE)
        assert seeded.associate.status == UserStatus.ACTIVE

    def test_client_account_cannot_be_invited(self, db, seeded):
        with pytest.raises(ConflictError):
            firms.create_invitation(db, seeded.ctx(seeded.admin), seeded.client.email, InternalRole.ASSOCIATE_LAWYER)

    def test_case_manager_cannot_invite(self, db, seeded):
        with pytest.raises(PermissionDeniedError):
            firms.create_invitation(db, seeded.ctx(seeded.manager), "x@firm-a.test", InternalRole.ASSOCIATE_LAWYER)

    def test_accept_creates_confirmed_staff(self, db, seeded):
        _, token = firms.create_invitation(db, seeded.ctx(seeded.admin), "joiner@firm-a.test", InternalRole.CASE_MANAGER)

        details = firms.get_invite_details(db, token)
        assert details["firm_name"] == "Firm A"
        assert details["status"] == "pending"

        user = firms.accept_invitation(db, token, PASSWORD, "Jo", "Iner")
        assert user.firm_id == seeded.firm.id
        assert user.internal_role == InternalRole.CASE_MANAGER
        assert user.email_confirmed_at is not None
        assert firms.get_invite_details(db, token)["status"] == "accepted"
        assert "invitation_accepted" in _audit_actions(db, seeded.firm.id)

        with pytest.raises(ConflictError):
            firms.accept_invitation(db, token, PASSWORD, "Jo", "Iner")

    def test_expired_invitation_is_reported_and_persisted(self, db, seeded):
        invitation, token = firms.create_invitation(
            db, seeded.ctx(seeded.admin), "late@firm-a.test", InternalRole.ASSOCIATE_LAWYER,
        )
        invitation.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        assert firms.get_invite_details(db, token)["status"] == "expired"
        assert db.get(Invitation, invitation.id).status == InvitationStatus.EXPIRED
        with pytest.raises(ConflictError):
            firms.accept_invitation(db, token, PASSWORD, "Late", "Comer")

    def test_resend_expired_issues_new_token(self, db, seeded):
        admin = seeded.ctx(seeded.admin)
        invitation, old_token = firms.create_invitation(db, admin, "again@firm-a.test", InternalRole.ASSOCIATE_LAWYER)
        invitation.expires_at = datetime.utcnow() - timedelta(days=1)
        db.commit()

        invitation, new_token = firms.resend_invitation(db, admin, invitation.id)
        assert invitation.status == InvitationStatus.PENDING
        assert new_token != old_token
        with pytest.raises(NotFoundError):
            firms.get_invite_details(db, old_token)
        assert firms.get_invite_details(db, new_token)["status"] == "pending"

    def test_revoke_only_pending(self, db, seeded):
        admin = seeded.ctx(seeded.admin)
        invitation, _ = firms.create_invitation(db, admin, "gone@firm-a.test", InternalRole.ASSOCIATE_LAWYER)
        firms.revoke_invitation(db, admin, invitation.id)
        assert invitation.status == InvitationStatus.REVOKED
        with pytest.raises(ConflictError):
            firms.revoke_invitation(db, admin, invitation.id)
        with pytest.raises(ConflictError):
            firms.resend_invitation(db, admin, invitation.id)

    def test_other_firm_cannot_touch_invitation(self, db, seeded):
        other = seed_firm(db, domain="firm-b.test", name="Firm B")
        invitation, _ = firms.create_invitation(
            db, seeded.ctx(seeded.admin), "mine@firm-a.test", InternalRole.ASSOCIATE_LAWYER,
        )
        with pytest.raises(NotFoundError):
            firms.revoke_invitation(db, other.ctx(other.admin), invitation.id)


class TestStaff:
    def test_suspend_clears_sessions(self, db, seeded):
        from casebridge.auth import AuthService

        AuthService(db).create_internal_session(seeded.associate)
        firms.update_staff_status(db, seeded.ctx(seeded.admin), seeded.associate.id, UserStatus.SUSPENDED)

        assert seeded.associate.status == UserStatus.SUSPENDED
        assert db.query(InternalSession).filter(InternalSession.user_id == seeded.associate.id).count() == 0
        assert "user_suspended" in _audit_actions(db, seeded.firm.id)

    def test_cannot_change_own_status_or_role(self, db, seeded):
        admin = seeded.ctx(seeded.admin)
        with pytest.raises(PermissionDeniedError):
            firms.update_staff_status(db, admin, seeded.admin.id, UserStatus.SUSPENDED)
        with pytest.raises(PermissionDeniedError):
            firms.update_staff_role(db, admin, seeded.admin.id, InternalRole.CASE_MANAGER)

    def test_deactivation_is_permanent(self, db, seeded):
        admin = seeded.ctx(seeded.admin)
        firms.update_staff_status(db, admin, seeded.associate.id, UserStatus.DEACTIVATED)
        with pytest.raises(ConflictError):
            firms.update_staff_status(db, admin, seeded.associate.id, UserStatus.ACTIVE)

    def test_other_firm_staff_not_found(self, db, seeded):
        other = seed_firm(db, domain="firm-b.test", name="Firm B")
        with pytest.raises(NotFoundError):
            firms.update_staff_status(db, seeded.ctx(seeded.admin), other.associate.id, UserStatus.SUSPENDED)

    def test_role_change(self, db, seeded):
        firms.update_staff_role(db, seeded.ctx(seeded.admin), seeded.associate.id, InternalRole.CASE_MANAGER)
        assert seeded.associate.internal_role == InternalRole.CASE_MANAGER
        assert "user_role_changed" in _audit_actions(db, seeded.firm.id)

    def test_manager_cannot_manage_staff(self, db, seeded):
        with pytest.raises(PermissionDeniedError):
            firms.update_staff_role(db, seeded.ctx(seeded.manager), seeded.associate.id, InternalRole.CASE_MANAGER)


class TestFirmSettings:
    def test_update_firm(self, db, seeded):
        firm = firms.update_firm(db, seeded.ctx(seeded.admin), {"phone": "+234 1 555 0100"})
        assert firm.phone == "+234 1 555 0100"
        assert "firm_updated" in _audit_actions(db, seeded.firm.id)

    def test_only_admin_updates_firm(self, db, seeded):
        with pytest.raises(PermissionDeniedError):
            firms.update_firm(db, seeded.ctx(seeded.manager), {"name": "Hijacked"})

    def test_stage_and_template_admin(self, db, seeded):
        manager = seeded.ctx(seeded.manager)
        stage = firms.create_stage(db, manager, "Appeal", icon_name="Scale")
        assert stage.order_index == 8

        template = firms.create_task_template(db, manager, stage.id, "File notice of appeal", required_by_default=True)
        assert template.required_by_default is True

        with pytest.raises(PermissionDeniedError):
            firms.create_stage(db, seeded.ctx(seeded.associate), "Nope")


class TestStaffApi:
    def test_invite_and_accept_over_http(self, api, seeded):
        headers = staff_headers(api, seeded.admin.email)
        response = api.post("/internal/invitations", json={"email": "hire@firm-a.test", "role": "case_manager"},
                            headers=headers)
        assert response.status_code == 201
        token = response.json()["token"]
        assert token

        details = api.get(f"/auth/invitations/{token}").json()
        assert details["role"] == "case_manager"

        accepted = api.post("/auth/invitations/accept", json={
            "token": token, "password": PASSWORD, "first_name": "New", "last_name": "Hire",
        })
        assert accepted.status_code == 200
        assert accepted.json()["home"] == "/internal/case-manager/dashboard"

        staff = api.get("/internal/staff", headers=headers).json()
        assert "hire@firm-a.test" in [member["email"] for member in staff]

    def test_audit_logs_need_admin(self, api, seeded):
        manager = staff_headers(api, seeded.manager.email)
        assert api.get("/internal/audit-logs", headers=manager).status_code == 403

        admin = staff_headers(api, seeded.admin.email)
        logs = api.get("/internal/audit-logs", params={"action": "firm_registered"}, headers=admin).json()
        assert len(logs) == 1

    def test_suspended_staff_token_stops_working(self, api, seeded):
        admin = staff_headers(api, seeded.admin.email)
        associate = staff_headers(api, seeded.associate.email)
        response = api.patch(f"/internal/staff/{seeded.associate.id}/status", json={"status": "suspended"},
                             headers=admin)
        assert response.status_code == 200
        assert api.get("/internal/matters", headers=associate).status_code == 401


def test_list_audit_logs_filters_by_firm(db, seeded):
    other = seed_firm(db, domain="firm-b.test", name="Firm B")
    assert [e.firm_id for e in list_audit_logs(db, seeded.firm.id)] == [seeded.firm.id]
    assert len(list_audit_logs(db, other.firm.id, action="firm_registered")) == 1


def test_job_status_needs_admin(api, seeded):
    manager = staff_headers(api, seeded.manager.email)
    assert api.get("/internal/jobs/sync", headers=manager).status_code == 403

    admin = staff_headers(api, seeded.admin.email)
    assert api.get("/internal/jobs/sync", headers=admin).json()["status"] == "unknown"
