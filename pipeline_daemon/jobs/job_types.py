"""Mapping between project pipeline statuses and queue job types."""

from typing import Container, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pipeline_daemon.jobs.models import Job, JobType, ProjectStatus

# (status, job type) pairs the daemon executes.
LEGAL_STATUS_TYPE_PAIRS: List[Tuple[ProjectStatus, JobType]] = [
    (ProjectStatus.NEW, JobType.SCRIPT),
    (ProjectStatus.PROCESS_SCRIPT, JobType.SCRIPT),
    (ProjectStatus.PROCESS_AUDIO, JobType.AUDIO),
    (ProjectStatus.PROCESS_TRANSCRIPTION, JobType.TRANSCRIPTION),
    (ProjectStatus.PROCESS_METADATA, JobType.METADATA),
    (ProjectStatus.PROCESS_CAPTIONS_VIDEO, JobType.CAPTIONS_VIDEO),
    (ProjectStatus.PROCESS_IMAGES_GENERATION, JobType.IMAGES),
    (ProjectStatus.PROCESS_VIDEO_PARTS_GENERATION, JobType.VIDEO_PARTS),
    (ProjectStatus.PROCESS_VIDEO_MAIN, JobType.VIDEO_MAIN),
]

_TYPE_BY_STATUS: Dict[ProjectStatus, JobType] = dict(LEGAL_STATUS_TYPE_PAIRS)

_STATUS_BY_TYPE: Dict[JobType, ProjectStatus] = {
    job_type: status
    for status, job_type in LEGAL_STATUS_TYPE_PAIRS
    if status is not ProjectStatus.NEW
}

ELIGIBLE_STATUSES: FrozenSet[ProjectStatus] = frozenset(_TYPE_BY_STATUS)

# Job types whose jobs are created per language by the previous stage.
PER_LANGUAGE_JOB_TYPES: FrozenSet[JobType] = frozenset({JobType.TRANSCRIPTION})


def job_type_for_status(status: ProjectStatus) -> Optional[JobType]:
    """Job type that advances a project in ``status``, or None if nothing runs."""
    return _TYPE_BY_STATUS.get(status)


def status_for_job_type(job_type: JobType) -> ProjectStatus:
    """Pipeline status a job type belongs to."""
    return _STATUS_BY_TYPE[job_type]


def is_legal_pair(status: ProjectStatus, job_type: JobType) -> bool:
    return _TYPE_BY_STATUS.get(status) is job_type


def claimable_jobs(
    jobs: Iterable[Job],
    project_statuses: Mapping[str, ProjectStatus],
    busy_projects: Container[str],
    limit: int,
) -> List[Job]:
    """Queued jobs that could be claimed right now, oldest first.

    A job qualifies when its type matches its project's current status and
    the project has no running job. Jobs left behind by a project that has
    moved on are skipped instead of blocking the head of the queue.
    """
    selected: List[Job] = []
    for job in jobs:
        if len(selected) >= limit:
            break
        status = project_statuses.get(job.project_id)
        job_type = job.job_type
        if status is None or job_type is None or not is_legal_pair(status, job_type):
            continue
        if job.project_id in busy_projects:
            continue
        selected.append(job)
    return selected
