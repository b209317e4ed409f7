"""
Job Queue Management
====================

Redis Queue (RQ) integration for background jobs.

When REDIS_URL is not configured (development, tests) or Redis cannot be
reached, jobs run inline in the calling process.
"""

import logging
from typing import Optional, Dict, Any, Callable
from datetime import datetime

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from ..config import get_settings

logger = logging.getLogger(__name__)

# Queue names
QUEUE_DEFAULT = "default"
QUEUE_HIGH = "high"
QUEUE_LOW = "low"
QUEUE_NAMES = [QUEUE_HIGH, QUEUE_DEFAULT, QUEUE_LOW]


def get_redis_connection() -> Optional[Redis]:
    """Get Redis connection, or None when Redis is not configured"""
    redis_url = get_settings().redis_url
    if not redis_url:
        return None
    return Redis.from_url(redis_url)


def get_queue(queue_name: str = QUEUE_DEFAULT) -> Optional[Queue]:
    """Get RQ queue by name"""
    conn = get_redis_connection()
    if conn is None:
        return None
    return Queue(queue_name, connection=conn)


def enqueue_job(
    func: Callable,
    *args,
    queue_name: str = QUEUE_DEFAULT,
    job_id: Optional[str] = None,
    timeout: int = 300,
    retry: int = 3,
    meta: Optional[Dict[str, Any]] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Enqueue a job for async processing.

    Args:
        func: Function to execute (must be importable by the worker)
        *args: Positional arguments for function
        queue_name: Queue to use (default/high/low)
        job_id: Optional custom job ID
        timeout: Job timeout in seconds
        retry: Number of retries on failure
        meta: Custom metadata for job
        **kwargs: Keyword arguments for function

    Returns:
        Dict with job_id and status
    """
    def _run_sync(reason: str) -> Dict[str, Any]:
        logger.info(f"Running job {func.__name__} inline ({reason})")
        try:
            result = func(*args, **kwargs)
            return {"job_id": job_id or "sync", "status": "done", "result": result}
        except Exception as e:
            logger.error(f"Inline job {func.__name__} failed: {e}")
            return {"job_id": job_id or "sync", "status": "failed", "error": str(e)}

    queue = get_queue(queue_name)
    if queue is None:
        return _run_sync("REDIS_URL not configured")

    retry_policy = Retry(max=retry, interval=[10, 30, 60]) if retry > 0 else None

    try:
        job = queue.enqueue(
            func,
            *args,
            job_id=job_id,
            job_timeout=timeout,
            retry=retry_policy,
            meta=meta or {},
            **kwargs
        )
    except Exception as e:
        return _run_sync(f"RQ enqueue failed: {e}")

    return {
        "job_id": job.id,
        "status": job.get_status(),
        "queue": queue_name,
        "enqueued_at": datetime.utcnow().isoformat()
    }


def get_job_status(job_id: str) -> Dict[str, Any]:
    """
    Get job status and result.

    Returns:
        Dict with status, result or error
    """
    conn = get_redis_connection()
    if conn is None:
        return {"job_id": job_id, "status": "unknown", "error": "Job queue not configured"}

    try:
        job = Job.fetch(job_id, connection=conn)
    except Exception as e:
        return {"job_id": job_id, "status": "not_found", "error": str(e)}

    result = {
        "job_id": job_id,
        "status": job.get_status(),
        "meta": job.meta,
        "enqueued_at": job.enqueued_at.isoformat() if job.enqueued_at else None,
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
    }
    if job.is_finished:
        result["result"] = job.result
    elif job.is_failed:
        result["error"] = str(job.exc_info) if job.exc_info else "Unknown error"
    return result


def get_queue_stats() -> Dict[str, Any]:
    """Get statistics for all queues"""
    conn = get_redis_connection()
    if conn is None:
        return {"available": False}

    stats = {"available": True, "queues": {}}
    try:
        for queue_name in QUEUE_NAMES:
            queue = Queue(queue_name, connection=conn)
            stats["queues"][queue_name] = {
                "length": len(queue),
                "failed": queue.failed_job_registry.count,
            }
    except Exception as e:
        logger.warning(f"Queue stats unavailable: {e}")
        return {"available": False, "error": str(e)}
    return stats
