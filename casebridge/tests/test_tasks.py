"""Tests for matter tasks and template-driven task generation."""

import pytest

from casebridge import matter_tasks, matters
from casebridge.db.models import Notification, TaskPriority, TaskStatus
from casebridge.errors import NotFoundError, PermissionDeniedError, ValidationFailedError

from conftest import client_headers, make_matter, seed_firm, staff_headers


@pytest.fixture
def matter(db, seeded):
    return make_matter(db, seeded)


def test_create_defaults_to_current_stage(db, seeded, matter):
    task = matter_tasks.create_task(db, seeded.ctx(seeded.associate), matter.id, "Draft demand letter")
    assert task.stage_id == matter.current_stage_id
    assert task.status == TaskStatus.PENDING
    assert task.priority == TaskPriority.MEDIUM
    assert task.is_client_visible is False


def test_assignee_is_notified(db, seeded, matter):
    matter_tasks.create_task(
        db, seeded.ctx(seeded.manager), matter.id, "Review pleadings", assigned_to_id=seeded.associate.id,
    )
    notes = db.query(Notification).filter(Notification.user_id == seeded.associate.id,
                                          Notification.event_type == "task_assigned").all()
    assert len(notes) == 1
    assert notes[0].matter_id == matter.id


def test_assignee_must_be_firm_staff(db, seeded, matter):
    other = seed_firm(db, domain="firm-b.test", name="Firm B")
    with pytest.raises(ValidationFailedError):
        matter_tasks.create_task(db, seeded.ctx(seeded.manager), matter.id, "T", assigned_to_id=other.associate.id)
    with pytest.raises(ValidationFailedError):
        matter_tasks.create_task(db, seeded.ctx(seeded.manager), matter.id, "T", assigned_to_id=seeded.client.id)


def test_stage_must_belong_to_pipeline(db, seeded, matter):
    with pytest.raises(ValidationFailedError):
        matter_tasks.create_task(db, seeded.ctx(seeded.manager), matter.id, "T", stage_id="elsewhere")


def test_completion_timestamp_follows_status(db, seeded, matter):
    associate = seeded.ctx(seeded.associate)
    task = matter_tasks.create_task(db, associate, matter.id, "File affidavit")

    matter_tasks.set_task_status(db, associate, matter.id, task.id, TaskStatus.COMPLETED)
    assert task.completed_at is not None

    matter_tasks.update_task(db, associate, matter.id, task.id, {"status": TaskStatus.IN_PROGRESS})
    assert task.completed_at is None


def test_update_rejects_unknown_fields(db, seeded, matter):
    associate = seeded.ctx(seeded.associate)
    task = matter_tasks.create_task(db, associate, matter.id, "File affidavit")
    with pytest.raises(ValidationFailedError):
        matter_tasks.update_task(db, associate, matter.id, task.id, {"matter_id": "x"})
    with pytest.raises(ValidationFailedError):
        matter_tasks.update_task(db, associate, matter.id, task.id, {"title": ""})


def test_unassigned_associate_cannot_edit(db, seeded):
    matter = make_matter(db, seeded, assign=False)
    with pytest.raises(PermissionDeniedError):
        matter_tasks.create_task(db, seeded.ctx(seeded.associate), matter.id, "Sneaky")


def test_toggle_and_client_listing(db, seeded, matter):
    associate = seeded.ctx(seeded.associate)
    hidden = matter_tasks.create_task(db, associate, matter.id, "Internal research")
    shown = matter_tasks.create_task(db, associate, matter.id, "Sign retainer", is_client_visible=True)

    client = seeded.ctx(seeded.client)
    assert [t.id for t in matter_tasks.list_client_tasks(db, client, matter.id)] == [shown.id]

    matter_tasks.toggle_task_client_visibility(db, associate, matter.id, hidden.id)
    assert {t.id for t in matter_tasks.list_client_tasks(db, client, matter.id)} == {hidden.id, shown.id}


def test_delete(db, seeded, matter):
    associate = seeded.ctx(seeded.associate)
    task = matter_tasks.create_task(db, associate, matter.id, "Temporary")
    matter_tasks.delete_task(db, associate, matter.id, task.id)
    with pytest.raises(NotFoundError):
        matter_tasks.delete_task(db, associate, matter.id, task.id)


def test_my_tasks_hides_completed(db, seeded, matter):
    manager = seeded.ctx(seeded.manager)
    first = matter_tasks.create_task(db, manager, matter.id, "One", assigned_to_id=seeded.associate.id)
    matter_tasks.create_task(db, manager, matter.id, "Two", assigned_to_id=seeded.associate.id)
    matter_tasks.set_task_status(db, manager, matter.id, first.id, TaskStatus.COMPLETED)

    associate = seeded.ctx(seeded.associate)
    assert [t.title for t in matter_tasks.list_my_tasks(db, associate)] == ["Two"]
    assert len(matter_tasks.list_my_tasks(db, associate, include_completed=True)) == 2


class TestGeneration:
    def test_generates_from_current_stage_templates(self, db, seeded, matter):
        created = matter_tasks.generate_stage_tasks(db, seeded.ctx(seeded.manager), matter.id)
        titles = {t.title for t in created}
        assert titles == {"Verify client identity", "Collect engagement letter"}
        assert all(t.required_for_stage_completion for t in created)

        visible = [t.title for t in created if t.is_client_visible]
        assert visible == ["Collect engagement letter"]

    def test_second_run_skips_existing_titles(self, db, seeded, matter):
        manager = seeded.ctx(seeded.manager)
        matter_tasks.create_task(db, manager, matter.id, "Verify client identity")

        created = matter_tasks.generate_stage_tasks(db, manager, matter.id)
        assert [t.title for t in created] == ["Collect engagement letter"]
        assert matter_tasks.generate_stage_tasks(db, manager, matter.id) == []

    def test_generated_required_tasks_gate_the_stage(self, db, seeded, matter):
        from casebridge.errors import ConflictError

        manager = seeded.ctx(seeded.manager)
        matter_tasks.generate_stage_tasks(db, manager, matter.id)
        with pytest.raises(ConflictError):
            matters.advance_stage(db, manager, matter.id)

    def test_explicit_stage(self, db, seeded, matter):
        manager = seeded.ctx(seeded.manager)
        stages = matters.list_stages(db, manager, matter.id)
        created = matter_tasks.generate_stage_tasks(db, manager, matter.id, stages[5].id)
        assert [t.title for t in created] == ["Prepare trial bundle"]
        assert created[0].priority == TaskPriority.URGENT


def test_task_api(api, db, seeded):
    matter = make_matter(db, seeded)
    headers = staff_headers(api, seeded.associate.email)

    created = api.post(f"/internal/matters/{matter.id}/tasks", json={
        "title": "Serve writ", "priority": "high", "is_client_visible": True,
    }, headers=headers)
    assert created.status_code == 201
    task_id = created.json()["id"]

    done = api.post(f"/internal/matters/{matter.id}/tasks/{task_id}/status", json={"status": "completed"},
                    headers=headers)
    assert done.json()["completed_at"] is not None

    client = client_headers(api, seeded.client.email)
    client_tasks = api.get(f"/client/matters/{matter.id}/tasks", headers=client).json()
    assert client_tasks[0]["title"] == "Serve writ"
    assert "assigned_to_id" not in client_tasks[0]

    generated = api.post(f"/internal/matters/{matter.id}/tasks/generate", json={}, headers=headers)
    assert len(generated.json()) == 2

    assert api.delete(f"/internal/matters/{matter.id}/tasks/{task_id}", headers=headers).status_code == 204
