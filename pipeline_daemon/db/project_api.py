"""Project/job API interface consumed by the scheduler and phase handlers."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from pipeline_daemon.jobs.models import (
    AssetKind,
    CreationSnapshot,
    Job,
    JobStatus,
    JobType,
    LanguageProgressRow,
    Project,
    ProjectStatus,
    TranscriptionSnapshot,
)
from pipeline_daemon.logging_config import get_logger
from pipeline_daemon.progress.language_progress import (
    ProgressAggregate,
    aggregate_progress,
    normalize_step,
    truncate_reason,
)

logger = get_logger(__name__)


class LanguageProgress(BaseModel):
    rows: List[LanguageProgressRow] = Field(default_factory=list)
    aggregate: ProgressAggregate = Field(default_factory=ProgressAggregate)


class UploadedAsset(BaseModel):
    asset_id: Optional[str] = None
    storage_path: str
    url: Optional[str] = None


class ProjectApi(ABC):
    """Abstract interface to the remote project/job store.

    Status writes go through ``set_status`` / ``set_job_status``, which retry
    exactly once after ``status_retry_delay`` seconds.
    """

    status_retry_delay: float = 0.2

    # -- Queue -------------------------------------------------------------

    @abstractmethod
    async def fetch_eligible_projects(self, limit: int) -> List[Project]:
        """Projects whose status implies pending work, at most ``limit``."""
        ...

    @abstractmethod
    async def create_job(
        self,
        project_id: str,
        user_id: Optional[str],
        job_type: JobType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Create a queued job. Returns the job id."""
        ...

    @abstractmethod
    async def job_exists_for(self, project_id: str, job_type: JobType) -> bool:
        """True if a queued or running job of ``job_type`` exists."""
        ...

    @abstractmethod
    async def find_queued_jobs(self, limit: int) -> List[Job]:
        ...

    @abstractmethod
    async def claim_job(self, job_id: str) -> bool:
        """Atomically move a queued job to running. True if this caller won."""
        ...

    @abstractmethod
    async def find_stale_jobs(
        self,
        statuses: List[JobStatus],
        older_than: datetime,
        limit: int,
        project_id: Optional[str] = None,
    ) -> List[Job]:
        ...

    # -- Status writes -------------------------------------------------------

    @abstractmethod
    async def _write_status(
        self,
        project_id: str,
        status: ProjectStatus,
        message: Optional[str],
        extra: Optional[Dict[str, Any]],
    ) -> None:
        ...

    @abstractmethod
    async def _write_job_status(self, job_id: str, status: JobStatus) -> None:
        ...

    async def set_status(
        self,
        project_id: str,
        status: ProjectStatus,
        message: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._retry_once(
            "set_status",
            lambda: self._write_status(project_id, status, message, extra),
            project_id=project_id,
            status=status.value,
        )

    async def set_job_status(self, job_id: str, status: JobStatus) -> None:
        await self._retry_once(
            "set_job_status",
            lambda: self._write_job_status(job_id, status),
            job_id=job_id,
            status=status.value,
        )

    async def _retry_once(
        self, operation: str, call: Callable[[], Awaitable[None]], **context
    ) -> None:
        try:
            await call()
        except Exception as exc:
            logger.warning(
                "Remote write failed, retrying once",
                operation=operation,
                error=str(exc),
                **context,
            )
            await asyncio.sleep(self.status_retry_delay)
            await call()

    # -- Project state -------------------------------------------------------

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        """Live project row, or None if it no longer exists."""
        ...

    @abstractmethod
    async def get_creation_snapshot(self, project_id: str) -> CreationSnapshot:
        ...

    @abstractmethod
    async def get_transcription_snapshot(self, project_id: str) -> TranscriptionSnapshot:
        ...

    @abstractmethod
    async def get_script_text(self, project_id: str, language_code: str) -> Optional[str]:
        ...

    @abstractmethod
    async def upsert_script(self, project_id: str, language_code: str, text: str) -> None:
        ...

    # -- Language progress ---------------------------------------------------

    @abstractmethod
    async def fetch_progress_rows(self, project_id: str) -> List[LanguageProgressRow]:
        ...

    @abstractmethod
    async def update_language_progress(
        self, project_id: str, language_code: str, **fields: Any
    ) -> None:
        """Upsert a partial progress row for one language."""
        ...

    async def get_language_progress(
        self, project_id: str, languages: Optional[List[str]] = None
    ) -> LanguageProgress:
        rows = await self.fetch_progress_rows(project_id)
        return LanguageProgress(rows=rows, aggregate=aggregate_progress(rows, languages))

    async def mark_language_failure(
        self,
        project_id: str,
        language_code: str,
        step: Optional[str],
        reason: Optional[str],
    ) -> None:
        """Disable a language for the rest of the pipeline.

        Failures to record are logged and swallowed; the caller keeps going
        with the remaining languages.
        """
        try:
            await self.update_language_progress(
                project_id,
                language_code,
                disabled=True,
                failed_step=normalize_step(step),
                failure_reason=truncate_reason(reason),
            )
        except Exception as exc:
            logger.warning(
                "Failed to mark language failure",
                project_id=project_id,
                language=language_code,
                step=step,
                error=str(exc),
            )

    # -- Assets / health -------------------------------------------------------

    @abstractmethod
    async def upload_asset(
        self,
        project_id: str,
        local_path: str,
        kind: AssetKind,
        language_code: Optional[str] = None,
        is_final: bool = False,
    ) -> UploadedAsset:
        ...

    @abstractmethod
    async def check_health(self, target: str) -> bool:
        """Probe ``"database"`` or ``"storage"``."""
        ...
