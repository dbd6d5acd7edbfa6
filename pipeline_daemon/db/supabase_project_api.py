"""ProjectApi backed by Supabase tables and storage.

The supabase client is synchronous; every call runs in the default thread
executor so the scheduler loop is never blocked on network I/O.
"""

import asyncio
import functools
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from supabase import Client

from pipeline_daemon.db.project_api import ProjectApi, UploadedAsset
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
from pipeline_daemon.logging_config import get_logger

logger = get_logger(__name__)

PROJECTS = "projects"
JOBS = "jobs"
SNAPSHOTS = "project_creation_snapshots"
PROGRESS = "project_language_progress"
SCRIPTS = "project_scripts"
ASSETS = "project_assets"
CLAIM_FUNCTION = "claim_daemon_job"
QUEUE_SCAN_LIMIT = 200

MIME_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}


def guess_mime_type(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    return MIME_TYPES.get(ext, "application/octet-stream")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseProjectApi(ProjectApi):
    def __init__(self, client: Client, daemon_id: str, bucket: str = "project-assets"):
        self._client = client
        self._daemon_id = daemon_id
        self._bucket = bucket

    async def _run(self, fn: Callable, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _table(self, name: str):
        return self._client.table(name)

    # -- Queue ---------------------------------------------------------------

    async def fetch_eligible_projects(self, limit: int) -> List[Project]:
        query = (
            self._table(PROJECTS)
            .select("id,status,languages,user_id")
            .in_("status", [status.value for status in ELIGIBLE_STATUSES])
            .order("updated_at")
            .limit(limit)
        )
        result = await self._run(query.execute)
        return [Project.model_validate(row) for row in result.data or []]

    async def create_job(
        self,
        project_id: str,
        user_id: Optional[str],
        job_type: JobType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        job_id = str(uuid.uuid4())
        row = {
            "id": job_id,
            "project_id": project_id,
            "user_id": user_id,
            "type": job_type.value,
            "status": JobStatus.QUEUED.value,
            "payload": payload or {},
        }
        await self._run(self._table(JOBS).insert(row).execute)
        return job_id

    async def job_exists_for(self, project_id: str, job_type: JobType) -> bool:
        query = (
            self._table(JOBS)
            .select("id")
            .eq("project_id", project_id)
            .eq("type", job_type.value)
            .in_("status", [JobStatus.QUEUED.value, JobStatus.RUNNING.value])
            .limit(1)
        )
        result = await self._run(query.execute)
        return bool(result.data)

    async def find_queued_jobs(self, limit: int) -> List[Job]:
        """Oldest claimable queued jobs.

        Scans a window of queued jobs and keeps those whose type matches the
        project's status and whose project has no running job.
        """
        if limit <= 0:
            return []
        query = (
            self._table(JOBS)
            .select("*")
            .eq("status", JobStatus.QUEUED.value)
            .order("created_at")
            .limit(max(limit, QUEUE_SCAN_LIMIT))
        )
        result = await self._run(query.execute)
        jobs = [Job.model_validate(row) for row in result.data or []]
        if not jobs:
            return []

        project_ids = sorted({job.project_id for job in jobs})
        projects = await self._run(
            self._table(PROJECTS).select("id,status").in_("id", project_ids).execute
        )
        statuses = {}
        for row in projects.data or []:
            try:
                statuses[row["id"]] = ProjectStatus(row["status"])
            except ValueError:
                continue

        running = await self._run(
            self._table(JOBS)
            .select("project_id")
            .eq("status", JobStatus.RUNNING.value)
            .in_("project_id", project_ids)
            .execute
        )
        busy = {row["project_id"] for row in running.data or []}
        return claimable_jobs(jobs, statuses, busy, limit)

    async def claim_job(self, job_id: str) -> bool:
        job_rows = await self._run(
            self._table(JOBS).select("id,project_id,type").eq("id", job_id).limit(1).execute
        )
        if not job_rows.data:
            return False
        job = job_rows.data[0]

        project_rows = await self._run(
            self._table(PROJECTS).select("status").eq("id", job["project_id"]).limit(1).execute
        )
        if not project_rows.data:
            return False
        try:
            status = ProjectStatus(project_rows.data[0]["status"])
            job_type = JobType(job["type"])
        except ValueError:
            return False
        if not is_legal_pair(status, job_type):
            logger.info(
                "Claim rejected: job type does not match project status",
                job_id=job_id,
                project_id=job["project_id"],
                status=status.value,
                type=job_type.value,
            )
            return False

        # The running-job check and the queued -> running flip happen in one
        # transaction inside the database function.
        claimed = await self._run(
            self._client.rpc(
                CLAIM_FUNCTION, {"p_job_id": job_id, "p_daemon_id": self._daemon_id}
            ).execute
        )
        return bool(claimed.data)

    async def find_stale_jobs(
        self,
        statuses: List[JobStatus],
        older_than: datetime,
        limit: int,
        project_id: Optional[str] = None,
    ) -> List[Job]:
        query = (
            self._table(JOBS)
            .select("*")
            .in_("status", [status.value for status in statuses])
            .lt("updated_at", older_than.isoformat())
        )
        if project_id:
            query = query.eq("project_id", project_id)
        result = await self._run(query.order("updated_at").limit(limit).execute)
        return [Job.model_validate(row) for row in result.data or []]

    # -- Status writes ---------------------------------------------------------

    async def _write_status(
        self,
        project_id: str,
        status: ProjectStatus,
        message: Optional[str],
        extra: Optional[Dict[str, Any]],
    ) -> None:
        update = {
            "status": status.value,
            "status_message": message,
            "status_extra": extra or {},
            "updated_at": _now_iso(),
        }
        await self._run(self._table(PROJECTS).update(update).eq("id", project_id).execute)

    async def _write_job_status(self, job_id: str, status: JobStatus) -> None:
        update = {"status": status.value, "updated_at": _now_iso()}
        await self._run(self._table(JOBS).update(update).eq("id", job_id).execute)

    # -- Project state -----------------------------------------------------------

    async def get_project(self, project_id: str) -> Optional[Project]:
        result = await self._run(
            self._table(PROJECTS)
            .select("id,status,languages,user_id")
            .eq("id", project_id)
            .limit(1)
            .execute
        )
        if not result.data:
            return None
        return Project.model_validate(result.data[0])

    async def get_creation_snapshot(self, project_id: str) -> CreationSnapshot:
        result = await self._run(
            self._table(SNAPSHOTS).select("snapshot").eq("project_id", project_id).limit(1).execute
        )
        if not result.data:
            raise LookupError(f"Creation snapshot missing for project {project_id}")
        return CreationSnapshot.model_validate(result.data[0]["snapshot"] or {})

    async def get_transcription_snapshot(self, project_id: str) -> TranscriptionSnapshot:
        result = await self._run(
            self._table(ASSETS)
            .select("id,language_code,storage_path,local_path")
            .eq("project_id", project_id)
            .eq("kind", AssetKind.AUDIO.value)
            .eq("is_final", True)
            .execute
        )
        voiceovers = {}
        for row in result.data or []:
            language = (row.get("language_code") or "").lower()
            if not language:
                continue
            voiceovers[language] = FinalVoiceover(
                local_path=row.get("local_path"),
                storage_path=row.get("storage_path"),
                asset_id=row.get("id"),
            )
        return TranscriptionSnapshot(final_voiceovers=voiceovers)

    async def get_script_text(self, project_id: str, language_code: str) -> Optional[str]:
        result = await self._run(
            self._table(SCRIPTS)
            .select("text")
            .eq("project_id", project_id)
            .eq("language_code", language_code)
            .limit(1)
            .execute
        )
        if not result.data:
            return None
        return result.data[0].get("text")

    async def upsert_script(self, project_id: str, language_code: str, text: str) -> None:
        row = {"project_id": project_id, "language_code": language_code, "text": text}
        await self._run(
            self._table(SCRIPTS).upsert(row, on_conflict="project_id,language_code").execute
        )

    # -- Language progress -------------------------------------------------------

    async def fetch_progress_rows(self, project_id: str) -> List[LanguageProgressRow]:
        result = await self._run(
            self._table(PROGRESS).select("*").eq("project_id", project_id).execute
        )
        return [LanguageProgressRow.model_validate(row) for row in result.data or []]

    async def update_language_progress(
        self, project_id: str, language_code: str, **fields: Any
    ) -> None:
        row = {"project_id": project_id, "language_code": language_code, **fields}
        await self._run(
            self._table(PROGRESS).upsert(row, on_conflict="project_id,language_code").execute
        )

    # -- Assets / health -----------------------------------------------------------

    async def upload_asset(
        self,
        project_id: str,
        local_path: str,
        kind: AssetKind,
        language_code: Optional[str] = None,
        is_final: bool = False,
    ) -> UploadedAsset:
        filename = os.path.basename(local_path)
        parts = [project_id, kind.value]
        if language_code:
            parts.append(language_code)
        parts.append(f"{uuid.uuid4().hex[:8]}-{filename}")
        storage_path = "/".join(parts)

        with open(local_path, "rb") as handle:
            data = handle.read()
        bucket = self._client.storage.from_(self._bucket)
        await self._run(
            bucket.upload,
            storage_path,
            data,
            {"content-type": guess_mime_type(local_path), "upsert": "true"},
        )
        url = await self._run(bucket.get_public_url, storage_path)

        row = {
            "project_id": project_id,
            "kind": kind.value,
            "language_code": language_code,
            "storage_path": storage_path,
            "local_path": local_path,
            "url": url,
            "is_final": is_final,
        }
        inserted = await self._run(self._table(ASSETS).insert(row).execute)
        asset_id = inserted.data[0].get("id") if inserted.data else None
        return UploadedAsset(asset_id=asset_id, storage_path=storage_path, url=url)

    async def check_health(self, target: str) -> bool:
        try:
            if target == "storage":
                await self._run(self._client.storage.get_bucket, self._bucket)
            else:
                await self._run(self._table(PROJECTS).select("id").limit(1).execute)
            return True
        except Exception as exc:
            logger.warning("Health check failed", target=target, error=str(exc))
            return False
