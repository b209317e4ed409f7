"""
Activity: case logs, firm audit logs and matter timelines.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .db.models import AuditLog, CaseLog, Matter, User
from .realtime import queue_matter_change

logger = logging.getLogger(__name__)

# Actions a client may see on their own matter timeline
CLIENT_TIMELINE_ACTIONS = {
    "case_created",
    "status_changed",
    "case_assigned",
    "court_report_submitted",
    "case_closed",
    "stage_changed",
}

# Detail keys that are safe to show to the client
_CLIENT_DETAIL_KEYS = {"from", "to", "stage_name", "is_first_report"}


def client_timeline_entry(entry: CaseLog) -> Dict[str, Any]:
    """A case log entry as the client sees it: no actor, no internal notes."""
    return {
        "id": entry.id,
        "action": entry.action,
        "details": {k: v for k, v in (entry.details or {}).items() if k in _CLIENT_DETAIL_KEYS},
        "created_at": entry.created_at,
    }


def log_case_action(
    db: Session,
    matter: Matter,
    actor_id: Optional[str],
    action: str,
    details: Optional[Dict[str, Any]] = None,
) -> CaseLog:
    entry = CaseLog(matter_id=matter.id, actor_id=actor_id, action=action, details=details or {})
    db.add(entry)
    db.flush()
    queue_matter_change(
        db, matter.id, entry, "INSERT",
        client_visible=action in CLIENT_TIMELINE_ACTIONS,
        client_record=client_timeline_entry(entry),
    )
    return entry


def log_audit(
    db: Session,
    firm_id: Optional[str],
    actor_id: Optional[str],
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    entry = AuditLog(
        firm_id=firm_id,
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details or {},
    )
    db.add(entry)
    db.flush()
    logger.info(f"audit firm={firm_id} actor={actor_id} action={action} target={target_type}:{target_id}")
    return entry


def _actor_names(db: Session, actor_ids) -> Dict[str, str]:
    ids = {a for a in actor_ids if a}
    if not ids:
        return {}
    return {u.id: u.name for u in db.query(User).filter(User.id.in_(ids)).all()}


def get_matter_timeline(db: Session, matter: Matter, limit: int = 200) -> List[Dict[str, Any]]:
    """Full case log for staff, newest first."""
    logs = (
        db.query(CaseLog)
        .filter(CaseLog.matter_id == matter.id)
        .order_by(CaseLog.created_at.desc())
        .limit(limit)
        .all()
    )
    names = _actor_names(db, (entry.actor_id for entry in logs))
    return [
        {
            "id": entry.id,
            "action": entry.action,
            "actor_id": entry.actor_id,
            "actor_name": names.get(entry.actor_id),
            "details": entry.details or {},
            "created_at": entry.created_at,
        }
        for entry in logs
    ]


def get_client_timeline(db: Session, matter: Matter) -> List[Dict[str, Any]]:
    """Client-safe subset of the case log: no actors, no internal notes."""
    logs = (
        db.query(CaseLog)
        .filter(CaseLog.matter_id == matter.id, CaseLog.action.in_(CLIENT_TIMELINE_ACTIONS))
        .order_by(CaseLog.created_at.desc())
        .all()
    )
    return [client_timeline_entry(entry) for entry in logs]


def list_audit_logs(
    db: Session,
    firm_id: str,
    action: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLog]:
    query = db.query(AuditLog).filter(AuditLog.firm_id == firm_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.created_at.desc()).limit(limit).all()
