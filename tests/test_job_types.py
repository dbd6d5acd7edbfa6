import pytest

from pipeline_daemon.jobs.job_types import (
    ELIGIBLE_STATUSES,
    LEGAL_STATUS_TYPE_PAIRS,
    PER_LANGUAGE_JOB_TYPES,
    claimable_jobs,
    is_legal_pair,
    job_type_for_status,
    status_for_job_type,
)
from pipeline_daemon.jobs.models import Job, JobType, ProjectStatus


@pytest.mark.parametrize(
    "status,expected",
    [
        (ProjectStatus.NEW, JobType.SCRIPT),
        (ProjectStatus.PROCESS_SCRIPT, JobType.SCRIPT),
        (ProjectStatus.PROCESS_AUDIO, JobType.AUDIO),
        (ProjectStatus.PROCESS_TRANSCRIPTION, JobType.TRANSCRIPTION),
        (ProjectStatus.PROCESS_METADATA, JobType.METADATA),
        (ProjectStatus.PROCESS_CAPTIONS_VIDEO, JobType.CAPTIONS_VIDEO),
        (ProjectStatus.PROCESS_IMAGES_GENERATION, JobType.IMAGES),
        (ProjectStatus.PROCESS_VIDEO_PARTS_GENERATION, JobType.VIDEO_PARTS),
        (ProjectStatus.PROCESS_VIDEO_MAIN, JobType.VIDEO_MAIN),
    ],
)
def test_job_type_for_actionable_status(status, expected):
    assert job_type_for_status(status) is expected


@pytest.mark.parametrize(
    "status",
    [
        ProjectStatus.PROCESS_SCRIPT_VALIDATE,
        ProjectStatus.PROCESS_AUDIO_VALIDATE,
        ProjectStatus.DONE,
        ProjectStatus.ERROR,
        ProjectStatus.CANCELLED,
        ProjectStatus.PAUSED,
    ],
)
def test_non_actionable_statuses_map_to_none(status):
    assert job_type_for_status(status) is None
    assert status not in ELIGIBLE_STATUSES


def test_every_status_is_mapped():
    for status in ProjectStatus:
        job_type_for_status(status)


def test_inverse_mapping_matches_pairs():
    for job_type in JobType:
        status = status_for_job_type(job_type)
        assert job_type_for_status(status) is job_type
    assert status_for_job_type(JobType.SCRIPT) is ProjectStatus.PROCESS_SCRIPT


def test_legal_pairs():
    for status, job_type in LEGAL_STATUS_TYPE_PAIRS:
        assert is_legal_pair(status, job_type)
    assert not is_legal_pair(ProjectStatus.PROCESS_AUDIO, JobType.METADATA)


def test_transcription_is_per_language():
    assert PER_LANGUAGE_JOB_TYPES == frozenset({JobType.TRANSCRIPTION})


def test_claimable_jobs_skips_mismatched_unknown_and_busy():
    statuses = {
        "p1": ProjectStatus.PROCESS_METADATA,
        "p2": ProjectStatus.PROCESS_SCRIPT,
        "p3": ProjectStatus.PROCESS_METADATA,
    }
    jobs = [
        Job(id="j1", project_id="p1", type="transcription"),
        Job(id="j2", project_id="p1", type="thumbnail"),
        Job(id="j3", project_id="p3", type="metadata"),
        Job(id="j4", project_id="missing", type="script"),
        Job(id="j5", project_id="p2", type="script"),
        Job(id="j6", project_id="p1", type="metadata"),
    ]

    selected = claimable_jobs(jobs, statuses, {"p3"}, limit=5)

    assert [job.id for job in selected] == ["j5", "j6"]
    assert [job.id for job in claimable_jobs(jobs, statuses, set(), limit=1)] == ["j3"]
