"""
Background tasks executed by the RQ worker (or inline without Redis).

Tasks take plain arguments so they can be serialized onto the queue.
"""

import logging
from typing import Optional

from ..db.session import get_db_session
from .. import email_utils

logger = logging.getLogger(__name__)


def task_send_email(to_email: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
    return email_utils.send_email(to_email, subject, html_body, text_body)


def task_send_invitation_email(to_email: str, token: str, firm_name: str, role: str) -> bool:
    sent = email_utils.send_invitation_email(to_email, token, firm_name, role)
    if not sent:
        raise RuntimeError(f"Invitation email to {to_email} failed")
    return sent


def task_send_email_confirmation(to_email: str, token: str, user_name: Optional[str] = None, internal: bool = False) -> bool:
    return email_utils.send_email_confirmation(to_email, token, user_name, internal=internal)


def task_send_password_reset(to_email: str, token: str, user_name: Optional[str] = None, internal: bool = False) -> bool:
    return email_utils.send_password_reset_email(to_email, token, user_name, internal=internal)


def task_send_notification_email(to_email: str, title: str, message: str, link: Optional[str] = None) -> bool:
    return email_utils.send_notification_email(to_email, title, message, link)


def task_check_deadlines() -> int:
    """Run the deadline_approaching sweep."""
    from ..notifications import check_approaching_deadlines

    with get_db_session() as db:
        count = check_approaching_deadlines(db)
    logger.info(f"task_check_deadlines notified {count} matter(s)")
    return count


def task_cleanup_tokens() -> int:
    """Drop expired blacklist entries and internal sessions."""
    from datetime import datetime
    from ..db.models import InternalSession
    from ..token_blacklist import remove_expired_blacklist_entries

    with get_db_session() as db:
        removed = remove_expired_blacklist_entries(db)
        removed += db.query(InternalSession).filter(InternalSession.expires_at < datetime.utcnow()).delete()
    return removed
