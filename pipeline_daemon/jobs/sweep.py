"""Fail jobs left running (or queued) by a daemon that died mid-task.

    python -m pipeline_daemon.jobs.sweep --ttl-minutes 30 --dry-run
"""

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pipeline_daemon.config import load_settings
from pipeline_daemon.db.project_api import ProjectApi
from pipeline_daemon.db.supabase_client import create_supabase
from pipeline_daemon.db.supabase_project_api import SupabaseProjectApi
from pipeline_daemon.jobs.models import JobStatus
from pipeline_daemon.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

DEFAULT_TTL_MINUTES = 15
DEFAULT_LIMIT = 200


async def sweep_stale_jobs(
    api: ProjectApi,
    ttl_minutes: int = DEFAULT_TTL_MINUTES,
    limit: int = DEFAULT_LIMIT,
    dry_run: bool = False,
    include_queued: bool = False,
    project_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """Mark stale jobs as failed.

    Returns:
        Ids of the jobs that were (or, with ``dry_run``, would be) failed.
    """
    statuses = [JobStatus.RUNNING]
    if include_queued:
        statuses.append(JobStatus.QUEUED)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=ttl_minutes)

    stale = await api.find_stale_jobs(statuses, cutoff, limit, project_id=project_id)
    swept = []
    for job in stale:
        if not dry_run:
            await api.set_job_status(job.id, JobStatus.FAILED)
        swept.append(job.id)
    logger.info(
        "Stale job sweep",
        count=len(swept),
        dry_run=dry_run,
        ttl_minutes=ttl_minutes,
        include_queued=include_queued,
        project_id=project_id,
    )
    return swept


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Fail stale daemon jobs")
    parser.add_argument("--ttl-minutes", type=int, default=DEFAULT_TTL_MINUTES)
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--include-queued", action="store_true")
    parser.add_argument("--project-id", default=None)
    args = parser.parse_args(argv)

    settings = load_settings()
    setup_logging(settings)
    api = SupabaseProjectApi(create_supabase(settings), settings.daemon_id, settings.storage_bucket)
    swept = asyncio.run(
        sweep_stale_jobs(
            api,
            ttl_minutes=args.ttl_minutes,
            limit=args.limit,
            dry_run=args.dry_run,
            include_queued=args.include_queued,
            project_id=args.project_id,
        )
    )
    for job_id in swept:
        print(job_id)


if __name__ == "__main__":
    main()
