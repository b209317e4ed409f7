"""Tests for client/firm messaging and meeting requests."""

from datetime import datetime, timedelta

import pytest

from casebridge import matters, messaging
from casebridge.db.models import MeetingStatus, Notification
from casebridge.errors import (
    ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)

from conftest import add_client, client_headers, make_matter, staff_headers


def _tomorrow():
    return datetime.utcnow() + timedelta(days=1)


def _events(db, user_id, event_type):
    return db.query(Notification).filter(
        Notification.user_id == user_id, Notification.event_type == event_type,
    ).all()


class TestMessages:
    def test_client_message_notifies_assigned_lawyers(self, db, seeded):
        matter = make_matter(db, seeded)
        message = messaging.send_message(db, seeded.ctx(seeded.client), matter.id, "  When is the hearing?  ")
        assert message.message_body == "When is the hearing?"
        assert message.sender_role == "client"

        assert len(_events(db, seeded.associate.id, "client_message")) == 1
        assert len(_events(db, seeded.manager.id, "client_message")) == 1
        assert _events(db, seeded.admin.id, "client_message") == []

    def test_thread_is_shared(self, db, seeded):
        matter = make_matter(db, seeded)
        messaging.send_message(db, seeded.ctx(seeded.client), matter.id, "Question")
        messaging.send_message(db, seeded.ctx(seeded.associate), matter.id, "Answer")

        staff_view = messaging.list_messages(db, seeded.ctx(seeded.manager), matter.id)
        client_view = messaging.list_messages(db, seeded.ctx(seeded.client), matter.id)
        assert [m["message_body"] for m in staff_view] == ["Question", "Answer"]
        assert client_view == staff_view
        assert staff_view[1]["sender_name"] == seeded.associate.name

    def test_empty_message(self, db, seeded):
        matter = make_matter(db, seeded)
        with pytest.raises(ValidationFailedError):
            messaging.send_message(db, seeded.ctx(seeded.client), matter.id, "   ")

    def test_other_client_gets_not_found(self, db, seeded):
        from casebridge.auth import auth_context_for_user

        matter = make_matter(db, seeded)
        stranger = auth_context_for_user(add_client(db, "stranger@example.com"))
        with pytest.raises(NotFoundError):
            messaging.send_message(db, stranger, matter.id, "Hello?")


class TestMeetings:
    def test_request_accept_complete(self, db, seeded):
        matter = make_matter(db, seeded)
        meeting = messaging.request_meeting(db, seeded.ctx(seeded.client), matter.id, "video", _tomorrow(), "Prefer mornings")
        assert meeting.status == MeetingStatus.REQUESTED
        assert meeting.lawyer_user_id == seeded.associate.id
        assert len(_events(db, seeded.associate.id, "meeting_update")) == 1

        associate = seeded.ctx(seeded.associate)
        assert [m.id for m in messaging.list_my_meetings(db, associate)] == [meeting.id]

        messaging.respond_to_meeting(db, associate, meeting.id, accept=True, note="See you then")
        assert meeting.status == MeetingStatus.ACCEPTED
        assert meeting.response_note == "See you then"

        with pytest.raises(InvalidTransitionError):
            messaging.respond_to_meeting(db, associate, meeting.id, accept=False)

        messaging.complete_meeting(db, associate, meeting.id)
        assert meeting.status == MeetingStatus.COMPLETED
        assert len(_events(db, seeded.client.id, "meeting_update")) == 2

    def test_complete_requires_accepted(self, db, seeded):
        matter = make_matter(db, seeded)
        meeting = messaging.request_meeting(db, seeded.ctx(seeded.client), matter.id, "phone", _tomorrow())
        with pytest.raises(InvalidTransitionError):
            messaging.complete_meeting(db, seeded.ctx(seeded.associate), meeting.id)

    @pytest.mark.parametrize("meeting_type,start", [
        ("carrier_pigeon", timedelta(days=1)),
        ("video", timedelta(days=-1)),
    ])
    def test_request_validation(self, db, seeded, meeting_type, start):
        matter = make_matter(db, seeded)
        with pytest.raises(ValidationFailedError):
            messaging.request_meeting(
                db, seeded.ctx(seeded.client), matter.id, meeting_type, datetime.utcnow() + start,
            )

    def test_needs_assigned_lawyer(self, db, seeded):
        matter = make_matter(db, seeded, assign=False)
        with pytest.raises(ConflictError):
            messaging.request_meeting(db, seeded.ctx(seeded.client), matter.id, "video", _tomorrow())

    def test_closed_matter(self, db, seeded):
        matter = make_matter(db, seeded)
        matters.close_matter(db, seeded.ctx(seeded.manager), matter.id)
        with pytest.raises(ConflictError):
            messaging.request_meeting(db, seeded.ctx(seeded.client), matter.id, "video", _tomorrow())

    def test_staff_cannot_request(self, db, seeded):
        matter = make_matter(db, seeded)
        with pytest.raises(PermissionDeniedError):
            messaging.request_meeting(db, seeded.ctx(seeded.associate), matter.id, "video", _tomorrow())

    def test_client_cancels(self, db, seeded):
        matter = make_matter(db, seeded)
        client = seeded.ctx(seeded.client)
        meeting = messaging.request_meeting(db, client, matter.id, "in_person", _tomorrow())
        messaging.cancel_meeting(db, client, meeting.id)
        assert meeting.status == MeetingStatus.CANCELLED

        with pytest.raises(InvalidTransitionError):
            messaging.cancel_meeting(db, client, meeting.id)
        with pytest.raises(NotFoundError):
            messaging.cancel_meeting(db, seeded.ctx(seeded.associate), meeting.id)


def test_messaging_api(api, db, seeded):
    matter = make_matter(db, seeded)
    client = client_headers(api, seeded.client.email)
    staff = staff_headers(api, seeded.associate.email)

    sent = api.post(f"/client/matters/{matter.id}/messages", json={"body": "Any news?"}, headers=client)
    assert sent.status_code == 201
    assert sent.json()["sender_name"] == seeded.client.name

    reply = api.post(f"/internal/matters/{matter.id}/messages", json={"body": "Hearing is Monday"}, headers=staff)
    assert reply.status_code == 201
    thread = api.get(f"/client/matters/{matter.id}/messages", headers=client).json()
    assert [m["sender_role"] for m in thread] == ["client", "associate_lawyer"]

    start = (datetime.utcnow() + timedelta(days=2)).isoformat()
    meeting = api.post(f"/client/matters/{matter.id}/meetings",
                       json={"meeting_type": "video", "proposed_start": start}, headers=client)
    assert meeting.status_code == 201
    meeting_id = meeting.json()["id"]

    accepted = api.post(f"/internal/meetings/{meeting_id}/respond", json={"accept": True}, headers=staff)
    assert accepted.json()["status"] == "accepted"
    assert api.get("/client/meetings", params={"status": "accepted"}, headers=client).json()[0]["id"] == meeting_id
