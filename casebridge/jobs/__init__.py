"""
Job Queue Package
=================

Background job processing with Redis Queue (RQ).
"""

from .queue import enqueue_job, get_job_status, get_queue_stats
from .tasks import (
    task_send_email,
    task_send_invitation_email,
    task_send_email_confirmation,
    task_send_password_reset,
    task_send_notification_email,
    task_check_deadlines,
    task_cleanup_tokens,
)

__all__ = [
    # Queue management
    "enqueue_job", "get_job_status", "get_queue_stats",
    # Tasks
    "task_send_email",
    "task_send_invitation_email",
    "task_send_email_confirmation",
    "task_send_password_reset",
    "task_send_notification_email",
    "task_check_deadlines",
    "task_cleanup_tokens",
]
