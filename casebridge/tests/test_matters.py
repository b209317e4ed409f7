"""
Matter Tests
============

Client intake, the status state machine, assignment and claiming,
pipeline stages, statements and internal comments.
"""

import pytest

from casebridge import matters
from casebridge.activity import get_client_timeline, get_matter_timeline
from casebridge.auth import auth_context_for_user
from casebridge.db.models import (
    CaseAssignment, CaseReportStatus, InternalRole, Matter, MatterLifecycle, MatterStatus, MatterTask,
    TaskStatus,
)
from casebridge.errors import (
    ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from casebridge.matter_tasks import create_task, set_task_status

from conftest import add_staff, client_headers, make_matter, seed_firm, staff_headers


def _report(db, seeded, title="Unpaid invoices", firm_id=None):
    return matters.submit_case_report(
        db, seeded.ctx(seeded.client), "commercial", title, "Customer refuses to pay",
        jurisdiction="Lagos", preferred_firm_id=firm_id,
    )


class TestTransitions:
    @pytest.mark.parametrize("current,target,allowed", [
        (MatterStatus.PENDING_REVIEW, MatterStatus.IN_REVIEW, True),
        (MatterStatus.PENDING_REVIEW, MatterStatus.IN_PROGRESS, False),
        (MatterStatus.IN_REVIEW, MatterStatus.AWAITING_DOCUMENTS, True),
        (MatterStatus.AWAITING_DOCUMENTS, MatterStatus.IN_REVIEW, True),
        (MatterStatus.ASSIGNED, MatterStatus.IN_PROGRESS, True),
        (MatterStatus.IN_PROGRESS, MatterStatus.ON_HOLD, True),
        (MatterStatus.ON_HOLD, MatterStatus.COMPLETED, False),
        (MatterStatus.COMPLETED, MatterStatus.CLOSED, True),
        (MatterStatus.CLOSED, MatterStatus.IN_PROGRESS, False),
        (MatterStatus.REJECTED, MatterStatus.IN_REVIEW, False),
    ])
    def test_table(self, current, target, allowed):
        assert matters.can_transition(current, target) is allowed

    def test_lifecycle_mapping(self):
        assert matters.lifecycle_for(MatterStatus.AWAITING_DOCUMENTS) == MatterLifecycle.UNDER_REVIEW
        assert matters.lifecycle_for(MatterStatus.ON_HOLD) == MatterLifecycle.IN_PROGRESS
        assert matters.lifecycle_for(MatterStatus.REJECTED) == MatterLifecycle.CLOSED


class TestIntake:
    def test_submit_and_review_and_accept(self, db, seeded):
        report = _report(db, seeded, firm_id=seeded.firm.id)
        assert report.status == CaseReportStatus.SUBMITTED

        manager = seeded.ctx(seeded.manager)
        assert [r.id for r in matters.list_intake_queue(db, manager)] == [report.id]

        matters.start_review(db, manager, report.id)
        assert report.status == CaseReportStatus.UNDER_REVIEW

        matter = matters.accept_case_report(db, manager, report.id, seeded.associate.id)
        assert report.status == CaseReportStatus.ACCEPTED
        assert matter.status == MatterStatus.ASSIGNED
        assert matter.lifecycle_state == MatterLifecycle.IN_PROGRESS
        assert matter.client_id == seeded.client.id
        assert matter.assigned_associate_id == seeded.associate.id
        # The accepting case manager takes the case-manager seat
        assert matter.assigned_case_manager_id == seeded.manager.id
        assert matter.current_stage_id is not None

        assert matters.list_intake_queue(db, manager) == []

    def test_accept_requires_review_first(self, db, seeded):
        report = _report(db, seeded)
        with pytest.raises(InvalidTransitionError):
            matters.accept_case_report(db, seeded.ctx(seeded.manager), report.id, seeded.associate.id)

    def test_reject_needs_reason(self, db, seeded):
        report = _report(db, seeded)
        manager = seeded.ctx(seeded.manager)
        with pytest.raises(ValidationFailedError):
            matters.reject_case_report(db, manager, report.id, "")

        matters.reject_case_report(db, manager, report.id, "Outside our practice areas")
        assert report.status == CaseReportStatus.REJECTED
        assert report.rejection_reason == "Outside our practice areas"
        with pytest.raises(InvalidTransitionError):
            matters.start_review(db, manager, report.id)

    def test_report_for_another_firm_is_hidden(self, db, seeded):
        other = seed_firm(db, domain="firm-b.test", name="Firm B")
        report = _report(db, seeded, firm_id=other.firm.id)

        assert matters.list_intake_queue(db, seeded.ctx(seeded.manager)) == []
        with pytest.raises(NotFoundError):
            matters.get_intake_report(db, seeded.ctx(seeded.manager), report.id)
        assert len(matters.list_intake_queue(db, other.ctx(other.manager))) == 1

    def test_associate_cannot_see_queue(self, db, seeded):
        with pytest.raises(PermissionDeniedError):
            matters.list_intake_queue(db, seeded.ctx(seeded.associate))

    def test_staff_cannot_submit_report(self, db, seeded):
        with pytest.raises(PermissionDeniedError):
            matters.submit_case_report(db, seeded.ctx(seeded.manager), "family", "Title", "Body")

    def test_unknown_preferred_firm(self, db, seeded):
        with pytest.raises(NotFoundError):
            _report(db, seeded, firm_id="no-such-firm")


class TestStatus:
    def test_walk_to_closed(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)
        matters.change_matter_status(db, manager, matter.id, MatterStatus.IN_PROGRESS)
        matters.change_matter_status(db, manager, matter.id, MatterStatus.COMPLETED, note="Judgment delivered")
        matters.change_matter_status(db, manager, matter.id, MatterStatus.CLOSED)

        assert matter.status == MatterStatus.CLOSED
        assert matter.lifecycle_state == MatterLifecycle.CLOSED
        assert matter.closed_at is not None

        actions = [entry["action"] for entry in get_matter_timeline(db, matter)]
        assert "case_closed" in actions
        assert actions.count("status_changed") >= 3

    def test_illegal_transition(self, db, seeded):
        matter = make_matter(db, seeded)
        with pytest.raises(InvalidTransitionError):
            matters.change_matter_status(db, seeded.ctx(seeded.manager), matter.id, MatterStatus.COMPLETED)

    def test_associate_cannot_change_status(self, db, seeded):
        matter = make_matter(db, seeded)
        with pytest.raises(PermissionDeniedError):
            matters.change_matter_status(db, seeded.ctx(seeded.associate), matter.id, MatterStatus.IN_PROGRESS)

    def test_close_from_any_open_status(self, db, seeded):
        matter = make_matter(db, seeded, assign=False)
        matters.close_matter(db, seeded.ctx(seeded.manager), matter.id, note="Client withdrew")
        assert matter.status == MatterStatus.CLOSED
        with pytest.raises(InvalidTransitionError):
            matters.close_matter(db, seeded.ctx(seeded.manager), matter.id)

    def test_client_timeline_hides_actors(self, db, seeded):
        matter = make_matter(db, seeded)
        entries = get_client_timeline(db, matter)
        assert entries
        assert all("actor_id" not in entry for entry in entries)


class TestAssignment:
    def test_assign_moves_to_assigned(self, db, seeded):
        matter = make_matter(db, seeded)
        assert matter.status == MatterStatus.ASSIGNED
        active = db.query(CaseAssignment).filter(
            CaseAssignment.matter_id == matter.id, CaseAssignment.is_active.is_(True),
        ).count()
        assert active == 2

    def test_same_associate_twice_conflicts(self, db, seeded):
        matter = make_matter(db, seeded)
        with pytest.raises(ConflictError):
            matters.assign_matter(db, seeded.ctx(seeded.admin), matter.id, seeded.associate.id)

    def test_reassign_ends_previous_assignment(self, db, seeded):
        matter = make_matter(db, seeded)
        second = add_staff(db, seeded.firm, "second@firm-a.test", InternalRole.ASSOCIATE_LAWYER, "Second", "Lawyer")

        matters.assign_matter(db, seeded.ctx(seeded.manager), matter.id, second.id)
        assert matter.assigned_associate_id == second.id

        history = db.query(CaseAssignment).filter(CaseAssignment.assigned_to_id == seeded.associate.id).one()
        assert history.is_active is False
        assert history.unassigned_at is not None

        # The previous associate loses access
        with pytest.raises(PermissionDeniedError):
            matters.get_matter(db, seeded.ctx(seeded.associate), matter.id)

    def test_client_cannot_be_assigned(self, db, seeded):
        matter = make_matter(db, seeded, assign=False)
        with pytest.raises(ValidationFailedError):
            matters.assign_matter(db, seeded.ctx(seeded.manager), matter.id, seeded.client.id)

    def test_claim(self, db, seeded):
        matter = make_matter(db, seeded, assign=False)
        manager = seeded.ctx(seeded.manager)
        matters.claim_matter(db, manager, matter.id)
        assert matter.assigned_case_manager_id == seeded.manager.id

        # Claiming again is a no-op
        matters.claim_matter(db, manager, matter.id)

    def test_case_manager_can_take_over_claim(self, db, seeded):
        matter = make_matter(db, seeded)
        second = add_staff(db, seeded.firm, "cm2@firm-a.test", InternalRole.CASE_MANAGER, "Other", "Manager")
        profile = auth_context_for_user(second, session_id="s")

        # Case managers hold matter:override_lock, so the seat changes hands
        matters.claim_matter(db, profile, matter.id)
        assert matter.assigned_case_manager_id == second.id


class TestVisibility:
    def test_other_firm_matter_is_not_found(self, db, seeded):
        other = seed_firm(db, domain="firm-b.test", name="Firm B")
        matter = make_matter(db, seeded)
        with pytest.raises(NotFoundError):
            matters.get_matter(db, other.ctx(other.admin), matter.id)

    def test_unassigned_associate_is_denied(self, db, seeded):
        matter = make_matter(db, seeded, assign=False)
        with pytest.raises(PermissionDeniedError):
            matters.get_matter(db, seeded.ctx(seeded.associate), matter.id)

    def test_associate_lists_only_own_matters(self, db, seeded):
        mine = make_matter(db, seeded, title="Mine")
        make_matter(db, seeded, assign=False, title="Not mine")
        listed = matters.list_matters(db, seeded.ctx(seeded.associate))
        assert [m.id for m in listed] == [mine.id]
        assert len(matters.list_matters(db, seeded.ctx(seeded.manager))) == 2

    def test_client_only_sees_own_matter(self, db, seeded):
        matter = make_matter(db, seeded)
        from conftest import add_client

        stranger = add_client(db, "stranger@example.com")
        with pytest.raises(NotFoundError):
            matters.get_client_matter(db, auth_context_for_user(stranger), matter.id)


class TestArchiveDelete:
    def test_archive_only_terminal(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)
        with pytest.raises(ConflictError):
            matters.archive_matter(db, manager, matter.id)

        matters.close_matter(db, manager, matter.id)
        matters.archive_matter(db, manager, matter.id)
        assert matter.archived_at is not None
        assert matters.list_matters(db, manager) == []
        assert len(matters.list_matters(db, manager, archived=True)) == 1

    def test_delete_removes_children(self, db, seeded):
        matter = make_matter(db, seeded)
        create_task(db, seeded.ctx(seeded.associate), matter.id, "Draft brief")
        matter_id = matter.id

        with pytest.raises(PermissionDeniedError):
            matters.delete_matter(db, seeded.ctx(seeded.manager), matter_id)

        matters.delete_matter(db, seeded.ctx(seeded.admin), matter_id)
        assert db.get(Matter, matter_id) is None
        assert db.query(MatterTask).filter(MatterTask.matter_id == matter_id).count() == 0
        assert db.query(CaseAssignment).filter(CaseAssignment.matter_id == matter_id).count() == 0


class TestStages:
    def test_advance_to_next_stage(self, db, seeded):
        matter = make_matter(db, seeded)
        stages = matters.list_stages(db, seeded.ctx(seeded.manager), matter.id)
        assert matter.current_stage_id == stages[0].id

        matters.advance_stage(db, seeded.ctx(seeded.manager), matter.id)
        assert matter.current_stage_id == stages[1].id

        history = matters.list_stage_history(db, seeded.ctx(seeded.manager), matter.id)
        assert history[0].from_stage_id == stages[0].id
        assert history[0].forced is False

    def test_required_task_blocks_until_done(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)
        task = create_task(db, manager, matter.id, "Engagement letter", required_for_stage_completion=True)

        with pytest.raises(ConflictError):
            matters.advance_stage(db, manager, matter.id)

        set_task_status(db, manager, matter.id, task.id, TaskStatus.COMPLETED)
        matters.advance_stage(db, manager, matter.id)

    def test_force_records_override(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)
        create_task(db, manager, matter.id, "Engagement letter", required_for_stage_completion=True)

        matters.advance_stage(db, manager, matter.id, force=True)
        history = matters.list_stage_history(db, manager, matter.id)
        assert history[0].forced is True

    def test_jump_to_named_stage_and_final_stage(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)
        stages = matters.list_stages(db, manager, matter.id)

        matters.advance_stage(db, manager, matter.id, to_stage_id=stages[-1].id)
        with pytest.raises(ConflictError):
            matters.advance_stage(db, manager, matter.id)
        with pytest.raises(NotFoundError):
            matters.advance_stage(db, manager, matter.id, to_stage_id="missing")

    def test_client_stage_tracker(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)
        client = seeded.ctx(seeded.client)
        stages = matters.list_stages(db, manager, matter.id)

        progress = matters.get_client_stage_progress(db, client, matter.id)
        assert progress["current_stage_id"] == stages[0].id
        assert [s["state"] for s in progress["stages"]][:2] == ["current", "upcoming"]
        assert progress["progress_percent"] == round(100 / len(stages))

        matters.advance_stage(db, manager, matter.id)
        progress = matters.get_client_stage_progress(db, client, matter.id)
        assert progress["current_stage_name"] == stages[1].name
        assert [s["state"] for s in progress["stages"]][:3] == ["completed", "current", "upcoming"]

        matters.advance_stage(db, manager, matter.id, to_stage_id=stages[-1].id)
        assert matters.get_client_stage_progress(db, client, matter.id)["progress_percent"] == 100

        other = seed_firm(db, domain="firm-b.test", name="Firm B")
        with pytest.raises(NotFoundError):
            matters.get_client_stage_progress(db, other.ctx(other.client), matter.id)


class TestStatementsAndComments:
    def test_statements_are_versioned(self, db, seeded):
        matter = make_matter(db, seeded)
        associate = seeded.ctx(seeded.associate)
        matters.save_case_statement(db, associate, matter.id, "First draft")
        matters.save_case_statement(db, associate, matter.id, "Second draft")

        versions = matters.list_case_statements(db, associate, matter.id)
        assert [s.version for s in versions] == [2, 1]
        assert versions[0].content == "Second draft"

        with pytest.raises(ValidationFailedError):
            matters.save_case_statement(db, associate, matter.id, "   ")

    def test_comments(self, db, seeded):
        matter = make_matter(db, seeded)
        manager = seeded.ctx(seeded.manager)

        with pytest.raises(PermissionDeniedError):
            matters.add_comment(db, seeded.ctx(seeded.associate), matter.id, "Can I comment?")

        comment = matters.add_comment(db, manager, matter.id, "  Check limitation period  ")
        listed = matters.list_comments(db, seeded.ctx(seeded.associate), matter.id)
        assert listed[0]["body"] == "Check limitation period"
        assert listed[0]["author_name"] == seeded.manager.name

        with pytest.raises(PermissionDeniedError):
            matters.delete_comment(db, seeded.ctx(seeded.admin), matter.id, comment.id)
        matters.delete_comment(db, manager, matter.id, comment.id)
        assert matters.list_comments(db, manager, matter.id) == []


class TestMatterApi:
    def test_intake_to_matter_over_http(self, api, seeded):
        client = client_headers(api, seeded.client.email)
        report = api.post("/client/case-reports", json={
            "category": "property", "title": "Boundary dispute", "description": "Neighbour built a fence",
            "preferred_firm_id": seeded.firm.id,
        }, headers=client)
        assert report.status_code == 201
        report_id = report.json()["id"]

        manager = staff_headers(api, seeded.manager.email)
        assert api.post(f"/internal/intake/{report_id}/review", headers=manager).status_code == 200
        accepted = api.post(f"/internal/intake/{report_id}/accept", json={"associate_id": seeded.associate.id},
                            headers=manager)
        assert accepted.status_code == 200
        matter = accepted.json()
        assert matter["status"] == "assigned"

        mine = api.get("/client/matters", headers=client).json()
        assert [m["id"] for m in mine] == [matter["id"]]
        assert "assigned_associate_id" not in mine[0]

    def test_bad_transition_is_409(self, api, db, seeded):
        matter = make_matter(db, seeded)
        headers = staff_headers(api, seeded.manager.email)
        response = api.post(f"/internal/matters/{matter.id}/status", json={"status": "closed"}, headers=headers)
        assert response.status_code == 409

    def test_delete_returns_204(self, api, db, seeded):
        matter = make_matter(db, seeded)
        headers = staff_headers(api, seeded.admin.email)
        assert api.delete(f"/internal/matters/{matter.id}", headers=headers).status_code == 204
        assert api.get(f"/internal/matters/{matter.id}", headers=headers).status_code == 404

    def test_timeline_needs_case_log_permission(self, api, db, seeded):
        matter = make_matter(db, seeded)
        headers = staff_headers(api, seeded.associate.email)
        timeline = api.get(f"/internal/matters/{matter.id}/timeline", headers=headers)
        assert timeline.status_code == 200
        assert timeline.json()[0]["action"]
