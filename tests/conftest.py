"""Shared fakes: an in-memory ProjectApi and a recording Generators."""

import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from pipeline_daemon.config import Settings
from pipeline_daemon.db.project_api import ProjectApi, UploadedAsset
from pipeline_daemon.generation import placeholders
from pipeline_daemon.generation.base import GenerationResult, Generators, VoiceoverResult
from pipeline_daemon.jobs.dispatcher import PhaseDispatcher
from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.job_types import ELIGIBLE_STATUSES, claimable_jobs, is_legal_pair
from pipeline_daemon.jobs.models import (
    AssetKind,
    CreationSnapshot,
    FinalVoiceover,
    Job,
    JobStatus,
    JobType,
    LanguageProgressRow,
    Project,
    ProjectStatus,
    TranscriptionSnapshot,
)
from pipeline_daemon.phases.base import PhaseContext
from pipeline_daemon.storage.workspace import ProjectWorkspace, WorkspaceStore


class FakeProjectApi(ProjectApi):
    status_retry_delay = 0

    def __init__(self):
        self.projects: Dict[str, Project] = {}
        self.jobs: Dict[str, Job] = {}
        self.snapshots: Dict[str, CreationSnapshot] = {}
        self.progress: Dict[str, Dict[str, LanguageProgressRow]] = {}
        self.scripts: Dict[Tuple[str, str], str] = {}
        self.final_voiceovers: Dict[str, Dict[str, FinalVoiceover]] = {}
        self.status_calls: List[Tuple[str, ProjectStatus, Optional[str], Optional[dict]]] = []
        self.job_status_calls: List[Tuple[str, JobStatus]] = []
        self.assets: List[dict] = []
        self.status_write_attempts = 0
        self.fail_status_writes = 0
        self.fail_progress_writes = False
        self.fail_progress_reads = False
        self.fail_flag_writes: Set[str] = set()
        self.fail_fetch = False
        self.healthy = True
        self._job_seq = 0

    # -- Test helpers ----------------------------------------------------------

    def add_project(
        self,
        project_id: str,
        status: ProjectStatus,
        languages: List[str],
        user_id: str = "user-1",
        **snapshot_fields: Any,
    ) -> Project:
        project = Project(id=project_id, status=status, languages=languages, user_id=user_id)
        self.projects[project_id] = project
        self.snapshots[project_id] = CreationSnapshot(
            user_id=user_id, languages=languages, **snapshot_fields
        )
        self.progress[project_id] = {
            code: LanguageProgressRow(language_code=code) for code in project.languages
        }
        return project

    def add_job(
        self,
        project_id: str,
        job_type: str,
        status: JobStatus = JobStatus.QUEUED,
        payload: Optional[dict] = None,
        updated_at: Optional[datetime] = None,
    ) -> Job:
        self._job_seq += 1
        job = Job(
            id=f"job-{self._job_seq}",
            project_id=project_id,
            user_id=self.projects[project_id].user_id if project_id in self.projects else None,
            type=job_type,
            status=status,
            payload=payload or {},
            updated_at=updated_at,
        )
        self.jobs[job.id] = job
        return job

    def set_flags(self, project_id: str, language: str, **fields: Any) -> None:
        row = self.progress[project_id].get(language) or LanguageProgressRow(language_code=language)
        self.progress[project_id][language] = row.model_copy(update=fields)

    def row(self, project_id: str, language: str) -> LanguageProgressRow:
        return self.progress[project_id][language]

    def statuses(self, project_id: str) -> List[ProjectStatus]:
        return [call[1] for call in self.status_calls if call[0] == project_id]

    # -- Queue -------------------------------------------------------------------

    async def fetch_eligible_projects(self, limit: int) -> List[Project]:
        if self.fail_fetch:
            raise ConnectionError("fetch failed")
        eligible = [p for p in self.projects.values() if p.status in ELIGIBLE_STATUSES]
        return [p.model_copy() for p in eligible[:limit]]

    async def create_job(self, project_id, user_id, job_type, payload=None):
        return self.add_job(project_id, job_type.value, payload=payload).id

    async def job_exists_for(self, project_id: str, job_type: JobType) -> bool:
        return any(
            job.project_id == project_id
            and job.type == job_type.value
            and job.status in (JobStatus.QUEUED, JobStatus.RUNNING)
            for job in self.jobs.values()
        )

    async def find_queued_jobs(self, limit: int) -> List[Job]:
        queued = [job for job in self.jobs.values() if job.status == JobStatus.QUEUED]
        statuses = {pid: project.status for pid, project in self.projects.items()}
        busy = {job.project_id for job in self.jobs.values() if job.status == JobStatus.RUNNING}
        return [job.model_copy() for job in claimable_jobs(queued, statuses, busy, limit)]

    async def claim_job(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.QUEUED:
            return False
        project = self.projects.get(job.project_id)
        if project is not None and job.job_type and not is_legal_pair(project.status, job.job_type):
            return False
        if any(
            other.project_id == job.project_id and other.status == JobStatus.RUNNING
            for other in self.jobs.values()
        ):
            return False
        job.status = JobStatus.RUNNING
        return True

    async def find_stale_jobs(self, statuses, older_than, limit, project_id=None):
        stale = []
        for job in self.jobs.values():
            stamp = job.updated_at or job.created_at
            if stamp.tzinfo is None:
                stamp = stamp.replace(tzinfo=timezone.utc)
            if job.status in statuses and stamp < older_than:
                if project_id is None or job.project_id == project_id:
                    stale.append(job)
        return stale[:limit]

    # -- Status writes -----------------------------------------------------------

    async def _write_status(self, project_id, status, message, extra):
        self.status_write_attempts += 1
        if self.fail_status_writes > 0:
            self.fail_status_writes -= 1
            raise ConnectionError("status write failed")
        self.status_calls.append((project_id, status, message, extra))
        if project_id in self.projects:
            self.projects[project_id] = self.projects[project_id].model_copy(update={"status": status})

    async def _write_job_status(self, job_id, status):
        self.job_status_calls.append((job_id, status))
        if job_id in self.jobs:
            self.jobs[job_id].status = status

    # -- Project state -------------------------------------------------------------

    async def get_project(self, project_id):
        project = self.projects.get(project_id)
        return project.model_copy() if project else None

    async def get_creation_snapshot(self, project_id):
        return self.snapshots[project_id]

    async def get_transcription_snapshot(self, project_id):
        return TranscriptionSnapshot(final_voiceovers=dict(self.final_voiceovers.get(project_id, {})))

    async def get_script_text(self, project_id, language_code):
        return self.scripts.get((project_id, language_code))

    async def upsert_script(self, project_id, language_code, text):
        self.scripts[(project_id, language_code)] = text

    # -- Progress ------------------------------------------------------------------

    async def fetch_progress_rows(self, project_id):
        if self.fail_progress_reads:
            raise ConnectionError("progress read failed")
        return [row.model_copy() for row in self.progress.get(project_id, {}).values()]

    async def update_language_progress(self, project_id, language_code, **fields):
        if self.fail_progress_writes:
            raise ConnectionError("progress write failed")
        if language_code in self.fail_flag_writes and "disabled" not in fields:
            # One-shot failure of a flag write; failure records still land.
            self.fail_flag_writes.discard(language_code)
            raise ConnectionError("progress write failed")
        self.progress.setdefault(project_id, {})
        self.set_flags(project_id, language_code, **fields)

    # -- Assets / health -------------------------------------------------------------

    async def upload_asset(self, project_id, local_path, kind, language_code=None, is_final=False):
        asset_id = f"asset-{len(self.assets) + 1}"
        storage_path = f"{project_id}/{kind.value}/{os.path.basename(local_path)}"
        self.assets.append(
            {
                "id": asset_id,
                "project_id": project_id,
                "kind": kind,
                "language_code": language_code,
                "local_path": local_path,
                "is_final": is_final,
            }
        )
        if kind == AssetKind.AUDIO and is_final and language_code:
            self.final_voiceovers.setdefault(project_id, {})[language_code] = FinalVoiceover(
                local_path=local_path, storage_path=storage_path, asset_id=asset_id
            )
        return UploadedAsset(asset_id=asset_id, storage_path=storage_path, url=f"https://cdn/{storage_path}")

    async def check_health(self, target):
        return self.healthy


class FakeGenerators(Generators):
    """Writes minimal artifacts and records every call."""

    def __init__(self, default_blocks: int = 4, dummy: bool = False):
        self.calls: List[Tuple[str, Optional[str], Dict[str, Any]]] = []
        self.failures: Dict[Tuple[str, str], str] = {}
        self.before_call: Optional[Callable[[str, Optional[str]], Any]] = None
        self.default_blocks = default_blocks
        self.dummy = dummy

    @property
    def dummy_workspace(self) -> bool:
        return self.dummy

    def fail(self, method: str, language: str, message: str = "boom") -> None:
        self.failures[(method, language)] = message

    def called(self, method: str) -> List[Optional[str]]:
        return [language for name, language, _ in self.calls if name == method]

    async def _record(self, method: str, language: Optional[str], **kwargs) -> None:
        self.calls.append((method, language, kwargs))
        if self.before_call is not None:
            result = self.before_call(method, language)
            if hasattr(result, "__await__"):
                await result
        message = self.failures.get((method, language))
        if message:
            raise GenerationError(message, log_path=f"/logs/{method}-{language}.log", command=f"npm run {method}")

    async def generate_script(self, ws, language_code, prompt, duration_seconds=None, guidance=None):
        await self._record("generate_script", language_code, prompt=prompt)
        return f"script for {prompt}"

    async def translate_script(self, ws, text, source_language, target_language):
        await self._record("translate_script", target_language, source=source_language)
        return f"[{target_language}] {text}"

    async def generate_voiceover(self, ws, language_code, text, voice, provider, style=None, take_count=1):
        await self._record(
            "generate_voiceover", language_code, voice=voice, provider=provider, style=style
        )
        run_dir = os.path.join(ws.language_dir(language_code), "audio", "run")
        outputs = []
        for take in range(1, take_count + 1):
            outputs.append(
                placeholders.write_text_placeholder(os.path.join(run_dir, f"take-{take}.wav"), "RIFF")
            )
        return VoiceoverResult(run_dir=run_dir, outputs=outputs, log_path="/logs/audio.log")

    async def transcribe(self, ws, language_code, audio_path):
        await self._record("transcribe", language_code, audio_path=audio_path)
        output = os.path.join(ws.language_dir(language_code), "transcript.txt")
        placeholders.write_text_placeholder(output, "one two three four five")
        return GenerationResult(output_path=output, log_path="/logs/transcription.log")

    async def generate_metadata(self, ws, language_code, transcript_path, target_block_count=None):
        await self._record("generate_metadata", language_code, target_block_count=target_block_count)
        output = ws.metadata_path(language_code)
        placeholders.write_fake_blocks(output, target_block_count or self.default_blocks)
        return GenerationResult(output_path=output, log_path="/logs/metadata.log")

    async def render_captions(self, ws, language_code, metadata_path, preset):
        await self._record("render_captions", language_code, preset=preset)
        output = ws.captions_overlay_path(language_code)
        placeholders.write_text_placeholder(output, "captions")
        return GenerationResult(output_path=output, log_path="/logs/captions.log")

    async def generate_images(self, ws, metadata_path, style_prompt=None):
        await self._record("generate_images", None, metadata_path=metadata_path)
        images_dir = ws.images_dir()
        for index in range(1, 3):
            placeholders.write_text_placeholder(os.path.join(images_dir, f"{index:03d}.png"), "png")
        return GenerationResult(output_path=images_dir, log_path="/logs/images.log")

    async def render_video_parts(self, ws, language_code, metadata_path, images_dir):
        await self._record("render_video_parts", language_code, images_dir=images_dir)
        output = placeholders.write_dummy_main_video(ws.language_dir(language_code))
        return GenerationResult(output_path=output, log_path="/logs/video-parts.log")

    async def render_final_video(
        self, ws, language_code, main_video_path, audio_path,
        captions_path=None, include_music=True, add_overlay=True,
    ):
        await self._record(
            "render_final_video",
            language_code,
            captions_path=captions_path,
            include_music=include_music,
            add_overlay=add_overlay,
        )
        output = placeholders.write_dummy_merged_video(ws.language_dir(language_code))
        return GenerationResult(output_path=output, log_path="/logs/video.log")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        projects_workspace=str(tmp_path / "projects"),
        script_workspace=str(tmp_path / "script"),
        script_workspace_v2=str(tmp_path / "script-v2"),
        script_caption_workspace=str(tmp_path / "script-caption"),
        max_concurrency=2,
        interval_ms=50,
    )


@pytest.fixture
def api() -> FakeProjectApi:
    return FakeProjectApi()


@pytest.fixture
def generators() -> FakeGenerators:
    return FakeGenerators()


@pytest.fixture
def workspaces(settings) -> WorkspaceStore:
    return WorkspaceStore(settings.projects_workspace)


@pytest.fixture
def ctx(api, generators, settings, workspaces) -> PhaseContext:
    return PhaseContext(api=api, generators=generators, settings=settings, workspaces=workspaces)


@pytest.fixture
def dispatcher(ctx) -> PhaseDispatcher:
    return PhaseDispatcher(ctx)


@pytest.fixture
def workspace_for(workspaces) -> Callable[[str], ProjectWorkspace]:
    return workspaces.for_project
