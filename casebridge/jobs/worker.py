"""
RQ Worker
=========

Worker process for executing background jobs.

Usage:
    python -m casebridge.jobs.worker --queues high default low
"""

import logging

from redis import Redis
from rq import Worker

from ..config import get_settings
from .queue import QUEUE_NAMES

logger = logging.getLogger(__name__)


def start_worker(
    queues: list = None,
    burst: bool = False,
    logging_level: str = "INFO"
):
    """
    Start an RQ worker.

    Args:
        queues: List of queue names to listen to
        burst: Run in burst mode (exit when queues are empty)
        logging_level: Logging level
    """
    logging.basicConfig(
        level=getattr(logging, logging_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    redis_url = get_settings().redis_url
    if not redis_url:
        logger.error("REDIS_URL is not configured; jobs run inline and no worker is needed")
        return

    if queues is None:
        queues = list(QUEUE_NAMES)

    conn = Redis.from_url(redis_url)
    worker = Worker(queues, connection=conn, worker_ttl=420)

    logger.info(f"Starting worker on queues: {queues}")
    worker.work(burst=burst)


def run_worker_cli():
    """CLI entry point for worker"""
    import argparse

    parser = argparse.ArgumentParser(description="RQ worker for CaseBridge")
    parser.add_argument("--queues", "-q", nargs="+", default=list(QUEUE_NAMES), help="Queues to listen to")
    parser.add_argument("--burst", "-b", action="store_true", help="Run in burst mode")
    parser.add_argument("--log-level", "-l", default="INFO", help="Logging level")

    args = parser.parse_args()
    start_worker(queues=args.queues, burst=args.burst, logging_level=args.log_level)


if __name__ == "__main__":
    run_worker_cli()
