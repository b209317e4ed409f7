"""
Matter tasks, including generation from stage task templates.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext
from .db.models import (
    AccountType, CaseStage, Matter, MatterTask, TaskPriority, TaskStatus, TaskTemplate, User, UserStatus,
)
from .errors import NotFoundError, ValidationFailedError
from .activity import log_case_action
from .matters import get_client_matter, get_editable_matter, get_matter
from .notifications import notify, staff_matter_link
from .realtime import matter_channel, queue_change, queue_matter_change, queue_matter_delete

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "title", "description", "priority", "status", "required_for_stage_completion",
    "stage_id", "assigned_to_id", "due_date", "is_client_visible",
}


def _publish(db: Session, matter: Matter, task: MatterTask, event_name: str, was_visible: bool = False) -> None:
    queue_matter_change(db, matter.id, task, event_name, client_visible=bool(task.is_client_visible))
    if was_visible and not task.is_client_visible:
        # Hidden from the client again: drop it from their view
        queue_change(db, matter_channel(matter.id), "matter_tasks", "DELETE", {"id": task.id})


def _check_assignee(db: Session, matter: Matter, user_id: Optional[str]) -> None:
    if user_id is None:
        return
    user = db.query(User).filter(User.id == user_id).first()
    if (
        not user
        or user.firm_id != matter.firm_id
        or user.account_type != AccountType.STAFF
        or user.status != UserStatus.ACTIVE
    ):
        raise ValidationFailedError("Tasks can only be assigned to active staff of the firm")


def _check_stage(db: Session, matter: Matter, stage_id: Optional[str]) -> None:
    if stage_id is None:
        return
    exists = db.query(CaseStage).filter(
        CaseStage.id == stage_id,
        CaseStage.pipeline_id == matter.pipeline_id,
    ).first()
    if not exists:
        raise ValidationFailedError("Stage does not belong to this matter's pipeline")


def _notify_assignee(db: Session, auth: AuthContext, matter: Matter, task: MatterTask) -> None:
    if not task.assigned_to_id or task.assigned_to_id == auth.user_id:
        return
    notify(
        db, task.assigned_to_id, "task_assigned", "Task assigned",
        f"{task.title} on \"{matter.title}\"",
        link=staff_matter_link(matter.id),
        matter_id=matter.id,
        firm_id=matter.firm_id,
        metadata={"task_id": task.id},
    )


def _apply_status(task: MatterTask, status: TaskStatus) -> None:
    task.status = status
    task.completed_at = datetime.utcnow() if status == TaskStatus.COMPLETED else None


def _get_task(db: Session, matter: Matter, task_id: str) -> MatterTask:
    task = db.query(MatterTask).filter(MatterTask.id == task_id, MatterTask.matter_id == matter.id).first()
    if not task:
        raise NotFoundError("Task", task_id)
    return task


def list_tasks(db: Session, auth: AuthContext, matter_id: str, stage_id: Optional[str] = None) -> List[MatterTask]:
    matter = get_matter(db, auth, matter_id)
    query = db.query(MatterTask).filter(MatterTask.matter_id == matter.id)
    if stage_id:
        query = query.filter(MatterTask.stage_id == stage_id)
    return query.order_by(MatterTask.created_at.asc()).all()


def list_client_tasks(db: Session, auth: AuthContext, matter_id: str) -> List[MatterTask]:
    matter = get_client_matter(db, auth, matter_id)
    return (
        db.query(MatterTask)
        .filter(MatterTask.matter_id == matter.id, MatterTask.is_client_visible.is_(True))
        .order_by(MatterTask.created_at.asc())
        .all()
    )


def list_my_tasks(db: Session, auth: AuthContext, include_completed: bool = False) -> List[MatterTask]:
    query = (
        db.query(MatterTask)
        .join(Matter, Matter.id == MatterTask.matter_id)
        .filter(MatterTask.assigned_to_id == auth.user_id, Matter.firm_id == auth.firm_id)
    )
    if not include_completed:
        query = query.filter(MatterTask.status != TaskStatus.COMPLETED)
    return query.order_by(MatterTask.due_date.is_(None), MatterTask.due_date.asc()).all()


def create_task(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    title: str,
    description: Optional[str] = None,
    priority: TaskPriority = TaskPriority.MEDIUM,
    stage_id: Optional[str] = None,
    assigned_to_id: Optional[str] = None,
    due_date: Optional[datetime] = None,
    is_client_visible: bool = False,
    required_for_stage_completion: bool = False,
) -> MatterTask:
    matter = get_editable_matter(db, auth, matter_id)
    if not title:
        raise ValidationFailedError("Title is required")
    _check_assignee(db, matter, assigned_to_id)
    _check_stage(db, matter, stage_id)

    task = MatterTask(
        matter_id=matter.id,
        stage_id=stage_id or matter.current_stage_id,
        title=title,
        description=description,
        priority=priority,
        status=TaskStatus.PENDING,
        required_for_stage_completion=required_for_stage_completion,
        assigned_to_id=assigned_to_id,
        due_date=due_date,
        is_client_visible=is_client_visible,
        created_by_id=auth.user_id,
    )
    db.add(task)
    db.flush()

    log_case_action(db, matter, auth.user_id, "task_created", {"task_id": task.id, "title": title})
    _notify_assignee(db, auth, matter, task)
    _publish(db, matter, task, "INSERT")
    db.commit()
    return task


def update_task(db: Session, auth: AuthContext, matter_id: str, task_id: str, changes: Dict[str, Any]) -> MatterTask:
    matter = get_editable_matter(db, auth, matter_id)
    task = _get_task(db, matter, task_id)

    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationFailedError(f"Unknown task fields: {', '.join(sorted(unknown))}")
    if "title" in changes and not changes["title"]:
        raise ValidationFailedError("Title cannot be empty")
    if "assigned_to_id" in changes:
        _check_assignee(db, matter, changes["assigned_to_id"])
    if "stage_id" in changes:
        _check_stage(db, matter, changes["stage_id"])

    reassigned = "assigned_to_id" in changes and changes["assigned_to_id"] != task.assigned_to_id
    was_visible = bool(task.is_client_visible)
    for key, value in changes.items():
        if key == "status":
            _apply_status(task, value)
        else:
            setattr(task, key, value)

    if reassigned:
        _notify_assignee(db, auth, matter, task)
    _publish(db, matter, task, "UPDATE", was_visible)
    db.commit()
    return task


def set_task_status(db: Session, auth: AuthContext, matter_id: str, task_id: str, status: TaskStatus) -> MatterTask:
    matter = get_editable_matter(db, auth, matter_id)
    task = _get_task(db, matter, task_id)
    _apply_status(task, status)
    _publish(db, matter, task, "UPDATE")
    db.commit()
    return task


def toggle_task_client_visibility(db: Session, auth: AuthContext, matter_id: str, task_id: str) -> MatterTask:
    matter = get_editable_matter(db, auth, matter_id)
    task = _get_task(db, matter, task_id)
    was_visible = bool(task.is_client_visible)
    task.is_client_visible = not was_visible
    _publish(db, matter, task, "UPDATE", was_visible)
    db.commit()
    return task


def delete_task(db: Session, auth: AuthContext, matter_id: str, task_id: str) -> None:
    matter = get_editable_matter(db, auth, matter_id)
    task = _get_task(db, matter, task_id)
    queue_matter_delete(db, matter.id, "matter_tasks", task.id, client_visible=bool(task.is_client_visible))
    db.delete(task)
    db.commit()


def generate_stage_tasks(db: Session, auth: AuthContext, matter_id: str, stage_id: Optional[str] = None) -> List[MatterTask]:
    """
    Create tasks from a stage's templates (the current stage by default).

    Templates whose title already exists as a task for this matter and stage
    are skipped. Returns only the created tasks.
    """
    matter = get_editable_matter(db, auth, matter_id)
    stage_id = stage_id or matter.current_stage_id
    if not stage_id:
        raise ValidationFailedError("Matter has no current stage")
    _check_stage(db, matter, stage_id)

    templates = db.query(TaskTemplate).filter(TaskTemplate.stage_id == stage_id).all()
    existing = {
        title for (title,) in db.query(MatterTask.title).filter(
            MatterTask.matter_id == matter.id,
            MatterTask.stage_id == stage_id,
        )
    }

    created = []
    for template in templates:
        if template.title in existing:
            continue
        task = MatterTask(
            matter_id=matter.id,
            stage_id=stage_id,
            title=template.title,
            description=template.description,
            priority=template.default_priority,
            status=TaskStatus.PENDING,
            required_for_stage_completion=bool(template.required_by_default),
            is_client_visible=bool(template.is_client_visible_by_default),
            created_by_id=auth.user_id,
        )
        db.add(task)
        existing.add(template.title)
        created.append(task)

    if created:
        db.flush()
        for task in created:
            _publish(db, matter, task, "INSERT")
        log_case_action(db, matter, auth.user_id, "task_created", {
            "stage_id": stage_id,
            "generated": len(created),
        })
    db.commit()
    logger.info(f"Generated {len(created)} task(s) for matter {matter.id} stage {stage_id}")
    return created
