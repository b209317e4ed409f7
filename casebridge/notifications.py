"""
Notifications
=============

In-app notifications (rows pushed on the user's realtime channel) and
optional email delivery through the job queue, governed by per-user,
per-event preferences.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import (
    AccountType, InternalRole, Matter, MatterStatus, Notification,
    NotificationChannel, NotificationPreference, User, UserStatus,
)
from .errors import NotFoundError, ValidationFailedError
from .realtime import queue_change, queue_row_change

logger = logging.getLogger(__name__)

EVENT_TYPES = (
    "court_report_submitted",
    "case_reassigned",
    "deadline_approaching",
    "document_uploaded",
    "case_flagged",
    "associate_update",
    "case_status_changed",
    "case_assigned",
    "task_assigned",
    "client_message",
    "meeting_update",
    "invoice_issued",
    "case_report_update",
)

_CASE_MANAGER_TITLES = {
    "court_report_submitted": "Court report submitted",
    "case_reassigned": "Case reassigned",
    "deadline_approaching": "Deadline approaching",
    "document_uploaded": "Document uploaded",
    "case_flagged": "Case flagged",
    "client_message": "New client message",
}

# Status values that no longer need deadline reminders
_DEADLINE_DONE_STATUSES = (MatterStatus.COMPLETED, MatterStatus.CLOSED, MatterStatus.REJECTED)


def staff_matter_link(matter_id: str) -> str:
    return f"/internal/matters/{matter_id}"


def client_matter_link(matter_id: str) -> str:
    return f"/client/matters/{matter_id}"


def get_preference(db: Session, user_id: str, event_type: str) -> Dict[str, bool]:
    pref = db.query(NotificationPreference).filter(
        NotificationPreference.user_id == user_id,
        NotificationPreference.event_type == event_type,
    ).first()
    if not pref:
        return {"in_app_enabled": True, "email_enabled": False}
    return {"in_app_enabled": bool(pref.in_app_enabled), "email_enabled": bool(pref.email_enabled)}


def notify(
    db: Session,
    user_id: str,
    event_type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
    matter_id: Optional[str] = None,
    firm_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    """
    Notify one user, honouring their preferences for the event type.

    Returns the in-app notification, or None if in-app delivery is disabled.
    """
    pref = get_preference(db, user_id, event_type)
    payload = {"title": title, "message": message, "link": link}
    if metadata:
        payload["metadata"] = metadata

    notification = None
    if pref["in_app_enabled"]:
        notification = Notification(
            user_id=user_id,
            firm_id=firm_id,
            matter_id=matter_id,
            event_type=event_type,
            channel=NotificationChannel.IN_APP,
            payload=payload,
        )
        db.add(notification)
        db.flush()
        queue_row_change(db, f"user:{user_id}", notification, "INSERT")

    if pref["email_enabled"]:
        user = db.query(User).filter(User.id == user_id).first()
        if user:
            from .jobs.queue import enqueue_job
            from .jobs.tasks import task_send_notification_email

            db.add(Notification(
                user_id=user_id,
                firm_id=firm_id,
                matter_id=matter_id,
                event_type=event_type,
                channel=NotificationChannel.EMAIL,
                payload=payload,
                read_at=datetime.utcnow(),
            ))
            enqueue_job(task_send_notification_email, user.email, title, message, link)

    return notification


def firm_case_managers(db: Session, firm_id: str) -> List[User]:
    return db.query(User).filter(
        User.firm_id == firm_id,
        User.account_type == AccountType.STAFF,
        User.status == UserStatus.ACTIVE,
        User.internal_role.in_([InternalRole.CASE_MANAGER, InternalRole.ADMIN_MANAGER]),
    ).all()


def notify_case_managers(
    db: Session,
    firm_id: str,
    event_type: str,
    matter: Optional[Matter] = None,
    triggered_by: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
) -> List[Notification]:
    """Notify every active case manager and admin manager of a firm except the actor."""
    title = _CASE_MANAGER_TITLES.get(event_type, event_type.replace("_", " ").capitalize())
    if message is None:
        message = f"{title}: {matter.title}" if matter else title
    link = staff_matter_link(matter.id) if matter else None

    created = []
    for manager in firm_case_managers(db, firm_id):
        if manager.id == triggered_by:
            continue
        n = notify(
            db, manager.id, event_type, title, message,
            link=link,
            matter_id=matter.id if matter else None,
            firm_id=firm_id,
            metadata=metadata,
        )
        if n is not None:
            created.append(n)
    return created


def notify_users(
    db: Session,
    user_ids: Iterable[Optional[str]],
    event_type: str,
    title: str,
    message: str,
    matter: Optional[Matter] = None,
    exclude: Optional[str] = None,
    link: Optional[str] = None,
) -> List[Notification]:
    created = []
    for user_id in dict.fromkeys(u for u in user_ids if u and u != exclude):
        n = notify(
            db, user_id, event_type, title, message,
            link=link or (staff_matter_link(matter.id) if matter else None),
            matter_id=matter.id if matter else None,
            firm_id=matter.firm_id if matter else None,
        )
        if n is not None:
            created.append(n)
    return created


def notify_client(db: Session, matter: Matter, event_type: str, title: str, message: str) -> Optional[Notification]:
    if not matter.client_id:
        return None
    return notify(
        db, matter.client_id, event_type, title, message,
        link=client_matter_link(matter.id),
        matter_id=matter.id,
    )


# =============================================================================
# INBOX
# =============================================================================

def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.channel == NotificationChannel.IN_APP,
    )
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: str) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.channel == NotificationChannel.IN_APP,
        Notification.read_at.is_(None),
    ).count()


def mark_read(db: Session, user_id: str, notification_id: str) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if not notification:
        raise NotFoundError("Notification", notification_id)
    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
        queue_row_change(db, f"user:{user_id}", notification, "UPDATE")
    db.commit()
    return notification


def mark_all_read(db: Session, user_id: str) -> int:
    count = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read_at.is_(None),
    ).update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    if count:
        queue_change(db, f"user:{user_id}", "notifications", "UPDATE", {"all_read": True})
    db.commit()
    return count


def get_preferences(db: Session, user_id: str) -> List[Dict[str, Any]]:
    stored = {
        p.event_type: p
        for p in db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).all()
    }
    result = []
    for event_type in EVENT_TYPES:
        pref = stored.get(event_type)
        result.append({
            "event_type": event_type,
            "in_app_enabled": pref.in_app_enabled if pref else True,
            "email_enabled": pref.email_enabled if pref else False,
        })
    return result


def update_preference(
    db: Session,
    user_id: str,
    event_type: str,
    in_app_enabled: Optional[bool] = None,
    email_enabled: Optional[bool] = None,
) -> NotificationPreference:
    if event_type not in EVENT_TYPES:
        raise ValidationFailedError(f"Unknown event type: {event_type}")
    pref = db.query(NotificationPreference).filter(
        NotificationPreference.user_id == user_id,
        NotificationPreference.event_type == event_type,
    ).first()
    if not pref:
        pref = NotificationPreference(user_id=user_id, event_type=event_type, in_app_enabled=True, email_enabled=False)
        db.add(pref)
    if in_app_enabled is not None:
        pref.in_app_enabled = in_app_enabled
    if email_enabled is not None:
        pref.email_enabled = email_enabled
    db.commit()
    return pref


# =============================================================================
# DEADLINE SWEEP
# =============================================================================

def check_approaching_deadlines(db: Session, now: Optional[datetime] = None) -> int:
    """
    Notify about matters whose deadline is inside the warning window.

    Each deadline is announced once; moving the deadline re-arms the reminder.
    Returns the number of matters notified.
    """
    now = now or datetime.utcnow()
    horizon = now + timedelta(days=get_settings().deadline_warning_days)

    matters = db.query(Matter).filter(
        Matter.deadline.isnot(None),
        Matter.deadline >= now,
        Matter.deadline <= horizon,
        Matter.archived_at.is_(None),
        ~Matter.status.in_(_DEADLINE_DONE_STATUSES),
    ).all()

    notified = 0
    for matter in matters:
        if matter.deadline_notified_for == matter.deadline:
            continue
        due = matter.deadline.strftime("%Y-%m-%d %H:%M")
        metadata = {"deadline": matter.deadline.isoformat()}
        notify_case_managers(
            db, matter.firm_id, "deadline_approaching", matter,
            metadata=metadata,
            message=f"{matter.title} is due on {due}",
        )
        if matter.assigned_associate_id:
            notify(
                db, matter.assigned_associate_id, "deadline_approaching",
                "Deadline approaching", f"{matter.title} is due on {due}",
                link=staff_matter_link(matter.id),
                matter_id=matter.id,
                firm_id=matter.firm_id,
                metadata=metadata,
            )
        matter.deadline_notified_for = matter.deadline
        notified += 1

    db.commit()
    if notified:
        logger.info(f"Deadline sweep notified {notified} matter(s)")
    return notified
