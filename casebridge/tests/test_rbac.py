"""
RBAC Tests
==========

Role matrix, inheritance, matter visibility and the route guard.
"""

from types import SimpleNamespace

import pytest

from casebridge.db.models import InternalRole, UserStatus
from casebridge.rbac import (
    Action,
    Resource,
    can_assign_matters,
    can_manage_team,
    can_view_audit_logs,
    is_admin,
    can_edit_matter,
    can_view_matter,
    check_route_access,
    is_case_manager_or_higher,
    resolve_user_home,
    role_has_equal_or_higher_privilege,
    role_has_permission,
    role_inherits_from,
)


def _profile(role, firm_id="firm-1", user_id="u-1", status=UserStatus.ACTIVE):
    return SimpleNamespace(user_id=user_id, firm_id=firm_id, internal_role=role, status=status)


def _matter(firm_id="firm-1", associate=None, manager=None):
    return SimpleNamespace(
        id="m-1", firm_id=firm_id, assigned_associate_id=associate, assigned_case_manager_id=manager,
    )


class TestRoleMatrix:
    def test_associate_direct_grants(self):
        assert role_has_permission(InternalRole.ASSOCIATE_LAWYER, Resource.MATTER, Action.EDIT)
        assert role_has_permission(InternalRole.ASSOCIATE_LAWYER, "document", "delete")
        assert not role_has_permission(InternalRole.ASSOCIATE_LAWYER, Resource.MATTER, Action.VIEW_ALL)
        assert not role_has_permission(InternalRole.ASSOCIATE_LAWYER, Resource.AUDIT_LOG, Action.VIEW)

    def test_case_manager_inherits_associate(self):
        assert role_has_permission(InternalRole.CASE_MANAGER, Resource.CASE_LOG, Action.VIEW)
        assert role_has_permission(InternalRole.CASE_MANAGER, Resource.MATTER, Action.OVERRIDE_LOCK)
        assert not role_has_permission(InternalRole.CASE_MANAGER, Resource.BILLING, Action.MANAGE)

    def test_admin_has_everything_below(self):
        for resource, action in [
            (Resource.MATTER, Action.DELETE),
            (Resource.USER, Action.SUSPEND),
            (Resource.WORKFLOW, Action.MANAGE),
            (Resource.NOTE, Action.CREATE),
        ]:
            assert role_has_permission(InternalRole.ADMIN_MANAGER, resource, action)

    def test_unknown_role_and_pairs(self):
        assert not role_has_permission("paralegal", Resource.MATTER, Action.VIEW)
        assert not role_has_permission(None, Resource.MATTER, Action.VIEW)
        assert not role_has_permission(InternalRole.ADMIN_MANAGER, "spaceship", "fly")

    def test_legacy_aliases(self):
        assert role_has_permission("admin", Resource.FIRM, Action.MANAGE)
        assert role_has_permission("associate", Resource.MATTER, Action.VIEW)

    def test_inheritance_and_levels(self):
        assert role_inherits_from(InternalRole.ADMIN_MANAGER, InternalRole.ASSOCIATE_LAWYER)
        assert not role_inherits_from(InternalRole.ASSOCIATE_LAWYER, InternalRole.CASE_MANAGER)
        assert role_inherits_from(InternalRole.CASE_MANAGER, InternalRole.CASE_MANAGER)
        assert role_inherits_from("associate", InternalRole.ASSOCIATE_LAWYER)
        assert not role_inherits_from("nobody", "nobody")
        assert role_has_equal_or_higher_privilege(InternalRole.CASE_MANAGER, InternalRole.CASE_MANAGER)
        assert not role_has_equal_or_higher_privilege(InternalRole.ASSOCIATE_LAWYER, InternalRole.CASE_MANAGER)
        assert is_case_manager_or_higher(_profile(InternalRole.ADMIN_MANAGER))
        assert not is_case_manager_or_higher(_profile(InternalRole.ASSOCIATE_LAWYER))


@pytest.mark.parametrize("role,assign,team,audit,admin,manager", [
    (InternalRole.ADMIN_MANAGER, True, True, True, True, True),
    (InternalRole.CASE_MANAGER, True, False, False, False, True),
    (InternalRole.ASSOCIATE_LAWYER, False, False, False, False, False),
    ("admin", True, True, True, True, True),
])
def test_single_purpose_checks(role, assign, team, audit, admin, manager):
    profile = _profile(role)
    assert can_assign_matters(profile) == assign
    assert can_manage_team(profile) == team
    assert can_view_audit_logs(profile) == audit
    assert is_admin(profile) == admin
    assert is_case_manager_or_higher(profile) == manager


class TestMatterAccess:
    def test_manager_sees_every_firm_matter(self):
        manager = _profile(InternalRole.CASE_MANAGER)
        assert can_view_matter(manager, _matter())
        assert can_edit_matter(manager, _matter())
        assert not can_view_matter(manager, _matter(firm_id="firm-2"))

    def test_associate_needs_assignment(self):
        associate = _profile(InternalRole.ASSOCIATE_LAWYER, user_id="assoc")
        assert not can_view_matter(associate, _matter())
        assert can_view_matter(associate, _matter(associate="assoc"))
        assert can_edit_matter(associate, _matter(associate="assoc"))

    def test_no_profile(self):
        assert not can_view_matter(None, _matter())


class TestRouteGuard:
    def test_order_of_checks(self):
        assert check_route_access(None).reason == "not authenticated"
        assert check_route_access(_profile(None)).reason == "internal users only"
        suspended = _profile(InternalRole.ADMIN_MANAGER, status=UserStatus.SUSPENDED)
        assert check_route_access(suspended).reason == "account not active"

    def test_required_role_by_inheritance(self):
        admin = _profile(InternalRole.ADMIN_MANAGER)
        associate = _profile(InternalRole.ASSOCIATE_LAWYER)
        assert check_route_access(admin, required_role=InternalRole.CASE_MANAGER).allowed
        assert not check_route_access(associate, required_role="case_manager").allowed
        assert check_route_access(associate, required_role=InternalRole.ASSOCIATE_LAWYER).allowed

    def test_required_role_from_several(self):
        wanted = [InternalRole.ADMIN_MANAGER, InternalRole.CASE_MANAGER]
        assert check_route_access(_profile(InternalRole.CASE_MANAGER), required_role=wanted).allowed
        assert check_route_access(_profile(InternalRole.ADMIN_MANAGER), required_role=tuple(wanted)).allowed

        denied = check_route_access(_profile(InternalRole.ASSOCIATE_LAWYER), required_role=wanted)
        assert not denied.allowed
        assert denied.reason == "requires role admin_manager, case_manager"

    def test_permission_variants(self):
        manager = _profile(InternalRole.CASE_MANAGER)
        assert check_route_access(manager, required_permission="matter:assign").allowed
        assert not check_route_access(manager, required_permission="audit_log:view").allowed
        assert check_route_access(manager, required_any=["audit_log:view", "report:view_workload"]).allowed

        result = check_route_access(manager, required_all=["matter:assign", "billing:manage", "firm:manage"])
        assert not result.allowed
        assert result.missing == ["billing:manage", "firm:manage"]


@pytest.mark.parametrize("role,home", [
    (InternalRole.ADMIN_MANAGER, "/internal/dashboard"),
    (InternalRole.CASE_MANAGER, "/internal/case-manager/dashboard"),
    (InternalRole.ASSOCIATE_LAWYER, "/internal/associate/dashboard"),
    ("admin", "/internal/dashboard"),
    (None, "/auth/unauthorized"),
])
def test_resolve_user_home(role, home):
    assert resolve_user_home(_profile(role)) == home


def test_resolve_user_home_edge_cases():
    assert resolve_user_home(None) == "/internal/login"
    assert resolve_user_home(_profile(InternalRole.CASE_MANAGER, status=UserStatus.DEACTIVATED)) == "/auth/locked"
