"""
Firm reporting: matter statistics, staff performance and associate workload.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import AuthContext, AuthService
from .db.models import (
    AccountType, CaseReport, CaseReportStatus, CourtReport, InternalRole, Matter,
    MatterLifecycle, MatterStatus, MatterTask, TaskStatus, User, UserStatus,
)
from .rbac import Action, Resource

logger = logging.getLogger(__name__)


def _active_staff(db: Session, firm_id: str, role: Optional[InternalRole] = None) -> List[User]:
    query = db.query(User).filter(
        User.firm_id == firm_id,
        User.account_type == AccountType.STAFF,
        User.status == UserStatus.ACTIVE,
    )
    if role:
        query = query.filter(User.internal_role == role)
    return query.all()


def _count_by(rows) -> Dict[str, int]:
    return {key: count for key, count in rows if key}


def get_firm_reporting_stats(db: Session, auth: AuthContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    AuthService(db).require_permission(auth, Resource.REPORT, Action.VIEW_ANALYTICS)
    now = now or datetime.utcnow()
    firm_id = auth.firm_id

    matters = db.query(Matter.status, Matter.lifecycle_state).filter(
        Matter.firm_id == firm_id,
        Matter.archived_at.is_(None),
    ).all()
    by_status = Counter(status.value for status, _ in matters)
    by_lifecycle = Counter(lifecycle for _, lifecycle in matters)

    intake_queue = db.query(CaseReport).filter(
        CaseReport.status.in_([CaseReportStatus.SUBMITTED, CaseReportStatus.UNDER_REVIEW]),
        (CaseReport.preferred_firm_id == firm_id) | (CaseReport.preferred_firm_id.is_(None)),
    ).count()

    overdue_tasks = (
        db.query(MatterTask)
        .join(Matter, Matter.id == MatterTask.matter_id)
        .filter(
            Matter.firm_id == firm_id,
            MatterTask.due_date.isnot(None),
            MatterTask.due_date < now,
            MatterTask.status != TaskStatus.COMPLETED,
        )
        .count()
    )

    active_per_user = Counter()
    closed_per_user = Counter()
    for associate_id, manager_id, lifecycle in db.query(
        Matter.assigned_associate_id, Matter.assigned_case_manager_id, Matter.lifecycle_state,
    ).filter(Matter.firm_id == firm_id):
        for user_id in {associate_id, manager_id} - {None}:
            if lifecycle == MatterLifecycle.IN_PROGRESS:
                active_per_user[user_id] += 1
            elif lifecycle == MatterLifecycle.CLOSED:
                closed_per_user[user_id] += 1

    reports_per_user = _count_by(
        db.query(CourtReport.author_id, func.count(CourtReport.id))
        .join(Matter, Matter.id == CourtReport.matter_id)
        .filter(Matter.firm_id == firm_id)
        .group_by(CourtReport.author_id)
    )
    tasks_per_user = _count_by(
        db.query(MatterTask.assigned_to_id, func.count(MatterTask.id))
        .join(Matter, Matter.id == MatterTask.matter_id)
        .filter(Matter.firm_id == firm_id, MatterTask.status == TaskStatus.COMPLETED)
        .group_by(MatterTask.assigned_to_id)
    )

    staff_performance = [
        {
            "user_id": member.id,
            "name": member.name,
            "role": member.internal_role.value if member.internal_role else None,
            "active_matters": active_per_user[member.id],
            "closed_matters": closed_per_user[member.id],
            "court_reports_submitted": reports_per_user.get(member.id, 0),
            "tasks_completed": tasks_per_user.get(member.id, 0),
        }
        for member in _active_staff(db, firm_id)
    ]
    staff_performance.sort(key=lambda row: (-row["active_matters"], row["name"]))

    return {
        "total_matters": len(matters),
        "active_matters": by_lifecycle[MatterLifecycle.IN_PROGRESS],
        "pending_matters": by_lifecycle[MatterLifecycle.SUBMITTED] + by_lifecycle[MatterLifecycle.UNDER_REVIEW],
        "closed_matters": by_lifecycle[MatterLifecycle.CLOSED],
        "by_status": {status.value: by_status.get(status.value, 0) for status in MatterStatus},
        "intake_queue": intake_queue,
        "overdue_tasks": overdue_tasks,
        "staff_performance": staff_performance,
    }


def get_workload(db: Session, auth: AuthContext) -> List[Dict[str, Any]]:
    """Active matter count per associate, least loaded first."""
    AuthService(db).require_permission(auth, Resource.REPORT, Action.VIEW_WORKLOAD)

    counts = _count_by(
        db.query(Matter.assigned_associate_id, func.count(Matter.id))
        .filter(
            Matter.firm_id == auth.firm_id,
            Matter.lifecycle_state == MatterLifecycle.IN_PROGRESS,
            Matter.archived_at.is_(None),
        )
        .group_by(Matter.assigned_associate_id)
    )
    workload = [
        {"user_id": a.id, "name": a.name, "active_matters": counts.get(a.id, 0)}
        for a in _active_staff(db, auth.firm_id, InternalRole.ASSOCIATE_LAWYER)
    ]
    workload.sort(key=lambda row: (row["active_matters"], row["name"]))
    return workload
