#!/usr/bin/env python3
"""
Run the deadline_approaching sweep.

With --cleanup it also drops expired revoked tokens and internal sessions.
Meant for cron; with REDIS_URL set, --enqueue hands the jobs to the RQ
worker instead.
"""

import argparse
import logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the CaseBridge deadline sweep.")
    parser.add_argument("--enqueue", action="store_true", help="Queue the jobs instead of running them inline")
    parser.add_argument("--cleanup", action="store_true", help="Also clean up expired tokens and sessions")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    from casebridge.db.session import init_db
    from casebridge.jobs.queue import enqueue_job
    from casebridge.jobs.tasks import task_check_deadlines, task_cleanup_tokens

    init_db()

    if args.enqueue:
        enqueue_job(task_check_deadlines, queue_name="low")
        if args.cleanup:
            enqueue_job(task_cleanup_tokens, queue_name="low")
        print("Jobs queued.")
        return 0

    notified = task_check_deadlines()
    print(f"Deadline warnings sent for {notified} matter(s).")
    if args.cleanup:
        removed = task_cleanup_tokens()
        print(f"Removed {removed} expired token/session row(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
