"""Queue helpers: lazy job creation and bounded claiming."""

from typing import Container, List

from pipeline_daemon.db.project_api import ProjectApi
from pipeline_daemon.jobs.job_types import PER_LANGUAGE_JOB_TYPES, job_type_for_status
from pipeline_daemon.jobs.models import Job, Project
from pipeline_daemon.logging_config import get_logger

logger = get_logger(__name__)


async def ensure_jobs_for_projects(api: ProjectApi, projects: List[Project]) -> int:
    """Create a queued job for each project that needs one. Returns jobs created.

    Errors are logged per project and never raised.
    """
    created = 0
    for project in projects:
        job_type = job_type_for_status(project.status)
        if job_type is None or job_type in PER_LANGUAGE_JOB_TYPES:
            continue
        try:
            if await api.job_exists_for(project.id, job_type):
                continue
            await api.create_job(project.id, project.user_id, job_type)
            created += 1
            logger.info(
                "Job created", project_id=project.id, type=job_type.value, status=project.status.value
            )
        except Exception as exc:
            logger.error(
                "Failed to ensure job", project_id=project.id, type=job_type.value, error=str(exc)
            )
    return created


async def claim_next_jobs(
    api: ProjectApi, limit: int, busy_projects: Container[str] = ()
) -> List[Job]:
    """Claim up to ``limit`` queued jobs, one at a time.

    Jobs for projects in ``busy_projects`` and a second job for a project
    already claimed in this batch are skipped.
    """
    if limit <= 0:
        return []
    claimed: List[Job] = []
    claimed_projects = set()
    for job in await api.find_queued_jobs(limit):
        if len(claimed) >= limit:
            break
        if job.project_id in busy_projects or job.project_id in claimed_projects:
            continue
        if await api.claim_job(job.id):
            claimed.append(job)
            claimed_projects.add(job.project_id)
    return claimed
