"""
Court Report Tests
==================

Filing court reports, the status side effects of the first and closing
reports, attachments and matter updates.
"""

import pytest

from casebridge import court_reports
from casebridge.activity import get_client_timeline
from casebridge.db.models import MatterStatus, Notification
from casebridge.errors import ConflictError, PermissionDeniedError, ValidationFailedError

from conftest import add_staff, client_headers, make_matter, staff_headers


def test_first_report_starts_work(db, seeded):
    matter = make_matter(db, seeded)
    associate = seeded.ctx(seeded.associate)

    result = court_reports.submit_court_report(db, associate, matter.id, "Hearing adjourned to 3 March")
    assert result["is_first_report"] is True
    assert matter.status == MatterStatus.IN_PROGRESS

    second = court_reports.submit_court_report(db, associate, matter.id, "Witness cross-examined")
    assert second["is_first_report"] is False
    assert matter.status == MatterStatus.IN_PROGRESS

    listed = court_reports.list_court_reports(db, associate, matter.id)
    assert [r["is_first_report"] for r in listed] == [False, True]
    assert listed[0]["author_name"] == seeded.associate.name


def test_case_managers_are_notified(db, seeded):
    matter = make_matter(db, seeded)
    court_reports.submit_court_report(db, seeded.ctx(seeded.associate), matter.id, "Motion granted")

    notified = {
        n.user_id for n in db.query(Notification).filter(Notification.event_type == "court_report_submitted")
    }
    assert notified == {seeded.manager.id, seeded.admin.id}


def test_close_case_report(db, seeded):
    matter = make_matter(db, seeded)
    court_reports.submit_court_report(db, seeded.ctx(seeded.associate), matter.id, "Judgment entered", close_case=True)
    assert matter.status == MatterStatus.CLOSED
    assert matter.closed_at is not None

    with pytest.raises(ConflictError):
        court_reports.submit_court_report(db, seeded.ctx(seeded.associate), matter.id, "Too late")

    actions = [entry["action"] for entry in get_client_timeline(db, matter)]
    assert "court_report_submitted" in actions
    assert "case_closed" in actions


def test_unassigned_matter_rejects_report(db, seeded):
    matter = make_matter(db, seeded, assign=False)
    with pytest.raises(ConflictError):
        court_reports.submit_court_report(db, seeded.ctx(seeded.manager), matter.id, "Nothing yet")


def test_empty_report(db, seeded):
    matter = make_matter(db, seeded)
    with pytest.raises(ValidationFailedError):
        court_reports.submit_court_report(db, seeded.ctx(seeded.associate), matter.id, "  ")


def test_attachment_only_by_author_or_manager(db, seeded):
    from casebridge.db.models import InternalRole

    matter = make_matter(db, seeded)
    result = court_reports.submit_court_report(db, seeded.ctx(seeded.associate), matter.id, "Filed exhibits")

    attachment = court_reports.add_court_report_attachment(
        db, seeded.ctx(seeded.associate), result["report_id"], "exhibit A.pdf", b"%PDF-1.4 test",
    )
    assert attachment.file_name == "exhibit_A.pdf"
    assert attachment.file_size == len(b"%PDF-1.4 test")
    assert attachment.file_type == "application/pdf"

    url = court_reports.court_report_attachment_url(db, seeded.ctx(seeded.manager), attachment.id)
    assert url.startswith("/storage/court-reports/")

    # Another associate on the same firm is neither author nor assigned
    stranger = add_staff(db, seeded.firm, "other@firm-a.test", InternalRole.ASSOCIATE_LAWYER)
    with pytest.raises(PermissionDeniedError):
        court_reports.add_court_report_attachment(
            db, seeded.ctx(stranger), result["report_id"], "x.pdf", b"x",
        )


class TestUpdates:
    def test_client_sees_only_visible_updates(self, db, seeded):
        matter = make_matter(db, seeded)
        associate = seeded.ctx(seeded.associate)
        court_reports.create_matter_update(db, associate, matter.id, "Internal", "Strategy notes")
        shared = court_reports.create_matter_update(
            db, associate, matter.id, "Hearing outcome", "We won the interlocutory motion", client_visible=True,
        )

        assert len(court_reports.list_matter_updates(db, associate, matter.id)) == 2
        client_view = court_reports.list_client_updates(db, seeded.ctx(seeded.client), matter.id)
        assert [u.id for u in client_view] == [shared.id]
        assert shared.author_role == "associate_lawyer"

        note = db.query(Notification).filter(
            Notification.user_id == seeded.client.id, Notification.event_type == "associate_update",
        ).one()
        assert note.payload["title"] == "Hearing outcome"

    def test_update_attachment_is_a_matter_document(self, db, seeded):
        matter = make_matter(db, seeded)
        associate = seeded.ctx(seeded.associate)
        update = court_reports.create_matter_update(db, associate, matter.id, "Filing", "Copy attached")

        document = court_reports.add_update_attachment(
            db, associate, matter.id, update.id, "notice.txt", b"notice", "text/plain",
        )
        assert document.update_id == update.id
        assert document.matter_id == matter.id


def test_court_report_api(api, db, seeded):
    matter = make_matter(db, seeded)
    headers = staff_headers(api, seeded.associate.email)

    response = api.post(f"/internal/matters/{matter.id}/court-reports", json={"content": "Mention only"},
                        headers=headers)
    assert response.status_code == 201
    body = response.json()
    assert body["is_first_report"] is True

    upload = api.post(
        f"/internal/court-reports/{body['report_id']}/attachments",
        files={"file": ("order.txt", b"court order", "text/plain")},
        headers=headers,
    )
    assert upload.status_code == 201

    listed = api.get(f"/internal/matters/{matter.id}/court-reports", headers=headers).json()
    assert listed[0]["attachments"][0]["file_name"] == "order.txt"

    client = client_headers(api, seeded.client.email)
    assert api.get(f"/client/matters/{matter.id}", headers=client).json()["status"] == "in_progress"

    reports = api.get(f"/client/matters/{matter.id}/court-reports", headers=client)
    assert reports.status_code == 200
    shared = reports.json()
    assert shared[0]["content"] == "Mention only"
    assert shared[0]["author_name"] == "Bola Associate"
    assert "author_id" not in shared[0]
    attachment = shared[0]["attachments"][0]
    assert attachment["file_name"] == "order.txt"
    assert api.get(attachment["url"]).content == b"court order"

    assert api.get(f"/client/matters/{matter.id}/court-reports", headers=headers).status_code == 403


def test_client_court_reports_only_for_own_matter(db, seeded):
    from casebridge.errors import NotFoundError
    from conftest import add_client

    matter = make_matter(db, seeded)
    court_reports.submit_court_report(db, seeded.ctx(seeded.associate), matter.id, "Directions given")

    listed = court_reports.list_client_court_reports(db, seeded.ctx(seeded.client), matter.id)
    assert [r["content"] for r in listed] == ["Directions given"]
    assert listed[0]["is_first_report"] is True

    stranger = add_client(db, "stranger@example.com")
    with pytest.raises(NotFoundError):
        court_reports.list_client_court_reports(db, seeded.ctx(stranger), matter.id)
