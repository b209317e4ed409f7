"""
Case messaging between a client and the firm, and client meeting requests.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext
from .db.models import CaseMeeting, CaseMessage, Matter, MeetingStatus, User
from .errors import ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationFailedError
from .matters import TERMINAL_STATUSES, get_client_matter, get_matter
from .notifications import notify, notify_client, notify_users, staff_matter_link
from .realtime import queue_matter_change

logger = logging.getLogger(__name__)

MEETING_TYPES = ("in_person", "video", "phone")


def _matter_for(db: Session, auth: AuthContext, matter_id: str) -> Matter:
    if auth.is_client:
        return get_client_matter(db, auth, matter_id)
    return get_matter(db, auth, matter_id)


# =============================================================================
# MESSAGES
# =============================================================================

def list_messages(db: Session, auth: AuthContext, matter_id: str, limit: int = 200) -> List[Dict[str, Any]]:
    matter = _matter_for(db, auth, matter_id)
    rows = (
        db.query(CaseMessage, User)
        .outerjoin(User, User.id == CaseMessage.sender_id)
        .filter(CaseMessage.matter_id == matter.id)
        .order_by(CaseMessage.created_at.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": message.id,
            "matter_id": message.matter_id,
            "sender_id": message.sender_id,
            "sender_name": sender.name if sender else None,
            "sender_role": message.sender_role,
            "message_body": message.message_body,
            "created_at": message.created_at,
        }
        for message, sender in rows
    ]


def send_message(db: Session, auth: AuthContext, matter_id: str, body: str) -> CaseMessage:
    matter = _matter_for(db, auth, matter_id)
    if not body or not body.strip():
        raise ValidationFailedError("Message cannot be empty")

    message = CaseMessage(
        matter_id=matter.id,
        sender_id=auth.user_id,
        sender_role=auth.role_label,
        message_body=body.strip(),
    )
    db.add(message)
    db.flush()

    preview = message.message_body[:140]
    if auth.is_client:
        notify_users(
            db,
            [matter.assigned_associate_id, matter.assigned_case_manager_id],
            "client_message",
            "New client message",
            f"{auth.name}: {preview}",
            matter=matter,
        )
    else:
        notify_client(db, matter, "associate_update", "New message from your lawyer", preview)

    queue_matter_change(db, matter.id, message, "INSERT", client_visible=True)
    db.commit()
    return message


# =============================================================================
# MEETINGS
# =============================================================================

def _get_meeting(db: Session, meeting_id: str) -> CaseMeeting:
    meeting = db.query(CaseMeeting).filter(CaseMeeting.id == meeting_id).first()
    if not meeting:
        raise NotFoundError("Meeting", meeting_id)
    return meeting


def _notify_lawyer(db: Session, matter: Matter, meeting: CaseMeeting, message: str) -> None:
    if not meeting.lawyer_user_id:
        return
    notify(
        db, meeting.lawyer_user_id, "meeting_update", "Meeting update", message,
        link=staff_matter_link(matter.id),
        matter_id=matter.id,
        firm_id=matter.firm_id,
        metadata={"meeting_id": meeting.id, "status": meeting.status.value},
    )


def _touch(db: Session, matter: Matter, meeting: CaseMeeting) -> None:
    queue_matter_change(db, matter.id, meeting, "UPDATE", client_visible=True)


def request_meeting(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    meeting_type: str,
    proposed_start: datetime,
    client_note: Optional[str] = None,
) -> CaseMeeting:
    if not auth.is_client:
        raise PermissionDeniedError("Only clients can request meetings")
    matter = get_client_matter(db, auth, matter_id)
    if matter.status in TERMINAL_STATUSES:
        raise ConflictError("Meetings cannot be requested on a closed matter")
    if not matter.assigned_associate_id:
        raise ConflictError("No lawyer has been assigned to this matter yet")
    if meeting_type not in MEETING_TYPES:
        raise ValidationFailedError(f"meeting_type must be one of {', '.join(MEETING_TYPES)}")
    if proposed_start <= datetime.utcnow():
        raise ValidationFailedError("Proposed start must be in the future")

    meeting = CaseMeeting(
        matter_id=matter.id,
        client_id=auth.user_id,
        lawyer_user_id=matter.assigned_associate_id,
        meeting_type=meeting_type,
        proposed_start=proposed_start,
        client_note=client_note,
        status=MeetingStatus.REQUESTED,
    )
    db.add(meeting)
    db.flush()

    _notify_lawyer(
        db, matter, meeting,
        f"{auth.name} requested a {meeting_type.replace('_', ' ')} meeting on "
        f"{proposed_start.strftime('%Y-%m-%d %H:%M')}",
    )
    queue_matter_change(db, matter.id, meeting, "INSERT", client_visible=True)
    db.commit()
    return meeting


def list_meetings(db: Session, auth: AuthContext, matter_id: str) -> List[CaseMeeting]:
    matter = _matter_for(db, auth, matter_id)
    return (
        db.query(CaseMeeting)
        .filter(CaseMeeting.matter_id == matter.id)
        .order_by(CaseMeeting.proposed_start.asc())
        .all()
    )


def list_my_meetings(db: Session, auth: AuthContext, status: Optional[MeetingStatus] = None) -> List[CaseMeeting]:
    query = db.query(CaseMeeting)
    if auth.is_client:
        query = query.filter(CaseMeeting.client_id == auth.user_id)
    else:
        query = query.filter(CaseMeeting.lawyer_user_id == auth.user_id)
    if status:
        query = query.filter(CaseMeeting.status == status)
    return query.order_by(CaseMeeting.proposed_start.asc()).all()


def _staff_meeting(db: Session, auth: AuthContext, meeting_id: str):
    meeting = _get_meeting(db, meeting_id)
    matter = get_matter(db, auth, meeting.matter_id)
    if meeting.lawyer_user_id != auth.user_id and not auth.is_case_manager_or_higher:
        raise PermissionDeniedError("Only the meeting's lawyer or a case manager can do this")
    return meeting, matter


def respond_to_meeting(
    db: Session,
    auth: AuthContext,
    meeting_id: str,
    accept: bool,
    note: Optional[str] = None,
) -> CaseMeeting:
    meeting, matter = _staff_meeting(db, auth, meeting_id)
    target = MeetingStatus.ACCEPTED if accept else MeetingStatus.DECLINED
    if meeting.status != MeetingStatus.REQUESTED:
        raise InvalidTransitionError(meeting.status.value, target.value, what="meeting")

    meeting.status = target
    meeting.response_note = note
    meeting.responded_by_id = auth.user_id

    when = meeting.proposed_start.strftime("%Y-%m-%d %H:%M")
    message = f"Your meeting on {when} was {target.value}"
    if note:
        message = f"{message}: {note}"
    notify_client(db, matter, "meeting_update", "Meeting update", message)
    _touch(db, matter, meeting)
    db.commit()
    return meeting


def complete_meeting(db: Session, auth: AuthContext, meeting_id: str) -> CaseMeeting:
    meeting, matter = _staff_meeting(db, auth, meeting_id)
    if meeting.status != MeetingStatus.ACCEPTED:
        raise InvalidTransitionError(meeting.status.value, MeetingStatus.COMPLETED.value, what="meeting")

    meeting.status = MeetingStatus.COMPLETED
    notify_client(db, matter, "meeting_update", "Meeting completed", "Your meeting has been marked as completed")
    _touch(db, matter, meeting)
    db.commit()
    return meeting


def cancel_meeting(db: Session, auth: AuthContext, meeting_id: str) -> CaseMeeting:
    meeting = _get_meeting(db, meeting_id)
    if not auth.is_client or meeting.client_id != auth.user_id:
        raise NotFoundError("Meeting", meeting_id)
    if meeting.status not in (MeetingStatus.REQUESTED, MeetingStatus.ACCEPTED):
        raise InvalidTransitionError(meeting.status.value, MeetingStatus.CANCELLED.value, what="meeting")

    matter = db.query(Matter).filter(Matter.id == meeting.matter_id).first()
    meeting.status = MeetingStatus.CANCELLED
    _notify_lawyer(db, matter, meeting, f"{auth.name} cancelled the meeting on {meeting.proposed_start:%Y-%m-%d %H:%M}")
    _touch(db, matter, meeting)
    db.commit()
    return meeting
