"""Polling scheduler with per-project concurrency guard.

Each tick fetches eligible projects, makes sure they have queued jobs,
claims a bounded batch and launches one asyncio task per claimed job. The
in-flight table allows at most one task per project; a watchdog forces the
project to Error if a task outlives ``task_timeout_seconds``.
"""

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from pipeline_daemon.config import Settings
from pipeline_daemon.db.project_api import ProjectApi
from pipeline_daemon.jobs.dispatcher import PhaseDispatcher
from pipeline_daemon.jobs.models import Job, JobStatus, ProjectStatus
from pipeline_daemon.jobs.queue import claim_next_jobs, ensure_jobs_for_projects
from pipeline_daemon.logging_config import LoggerMixin, get_logger

logger = get_logger(__name__)

TASK_TIMEOUT_MESSAGE = "Task timeout"
SHUTDOWN_GRACE_SECONDS = 1.0
HEALTH_ATTEMPTS = 10


@dataclass
class InFlightEntry:
    project_id: str
    job_id: str
    type: str
    started_at: datetime
    timeout_handle: Optional[asyncio.TimerHandle] = None
    task: Optional[asyncio.Task] = None

    def as_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "job_id": self.job_id,
            "type": self.type,
            "started_at": self.started_at.isoformat(),
        }


async def verify_health(api: ProjectApi, settings: Settings, attempts: int = HEALTH_ATTEMPTS) -> bool:
    """Probe database and storage until both answer or attempts run out."""
    delay = min(0.5, max(0.1, settings.request_timeout_seconds / 10))
    for target in ("database", "storage"):
        for attempt in range(1, attempts + 1):
            if await api.check_health(target):
                break
            logger.warning("Health check retry", target=target, attempt=attempt)
            await asyncio.sleep(delay)
        else:
            logger.error("Health check failed", target=target, attempts=attempts)
            return False
    return True


class Scheduler(LoggerMixin):
    def __init__(self, api: ProjectApi, dispatcher: PhaseDispatcher, settings: Settings):
        self._api = api
        self._dispatcher = dispatcher
        self._settings = settings
        self._in_flight: Dict[str, InFlightEntry] = {}
        self._watchdogs: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    # -- Introspection -------------------------------------------------------

    @property
    def in_flight(self) -> Dict[str, InFlightEntry]:
        return self._in_flight

    @property
    def capacity(self) -> int:
        return self._settings.max_concurrency - len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._running

    def snapshot(self) -> dict:
        return {
            "daemon_id": self._settings.daemon_id,
            "running": self._running,
            "max_concurrency": self._settings.max_concurrency,
            "capacity": max(self.capacity, 0),
            "in_flight": [entry.as_dict() for entry in self._in_flight.values()],
        }

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop())
        self.logger.info(
            "Scheduler started",
            daemon_id=self._settings.daemon_id,
            interval_ms=self._settings.interval_ms,
            max_concurrency=self._settings.max_concurrency,
        )

    async def stop(self) -> None:
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        pending = [entry.task for entry in self._in_flight.values() if entry.task]
        if pending:
            self.logger.info("Waiting for in-flight tasks", count=len(pending))
            await asyncio.wait(pending, timeout=SHUTDOWN_GRACE_SECONDS)
        for entry in list(self._in_flight.values()):
            if entry.timeout_handle:
                entry.timeout_handle.cancel()
        self.logger.info("Scheduler stopped", still_in_flight=len(self._in_flight))

    async def _run_loop(self) -> None:
        while self._running:
            await self.tick()
            await asyncio.sleep(self._settings.interval_seconds)

    # -- Tick ------------------------------------------------------------------

    async def tick(self) -> List[asyncio.Task]:
        """Run one scheduling pass. Returns the tasks launched."""
        capacity = self.capacity
        if capacity <= 0:
            return []
        try:
            projects = await self._api.fetch_eligible_projects(capacity)
            await ensure_jobs_for_projects(self._api, projects)
            jobs = await claim_next_jobs(self._api, capacity, self._in_flight)
        except Exception as exc:
            self.logger.error("Tick error", error=str(exc))
            return []

        launched = []
        for job in jobs:
            task = self.start_task(job)
            if task is not None:
                launched.append(task)
        return launched

    def start_task(self, job: Job) -> Optional[asyncio.Task]:
        if job.project_id in self._in_flight:
            self.logger.warning(
                "Project already in flight, not starting job",
                project_id=job.project_id,
                job_id=job.id,
            )
            return None

        entry = InFlightEntry(
            project_id=job.project_id,
            job_id=job.id,
            type=job.type,
            started_at=datetime.now(timezone.utc),
        )
        loop = asyncio.get_running_loop()
        entry.timeout_handle = loop.call_later(
            self._settings.task_timeout_seconds, self._on_timeout, entry
        )
        self._in_flight[job.project_id] = entry
        entry.task = asyncio.create_task(self._run_task(entry, job))
        self.logger.info(
            "Task started",
            project_id=job.project_id,
            job_id=job.id,
            type=job.type,
            payload_keys=sorted(job.payload),
        )
        return entry.task

    async def _run_task(self, entry: InFlightEntry, job: Job) -> None:
        try:
            ok = await self._dispatcher.execute(job)
            await self._api.set_job_status(job.id, JobStatus.DONE if ok else JobStatus.FAILED)
            self.logger.info("Task finished", project_id=job.project_id, job_id=job.id, ok=ok)
        except Exception as exc:
            self.logger.error(
                "Task failed", project_id=job.project_id, job_id=job.id, error=str(exc)
            )
            try:
                await self._api.set_job_status(job.id, JobStatus.FAILED)
            except Exception as status_exc:
                self.logger.error(
                    "Failed to mark job failed", job_id=job.id, error=str(status_exc)
                )
        finally:
            if entry.timeout_handle:
                entry.timeout_handle.cancel()
            if self._in_flight.get(entry.project_id) is entry:
                del self._in_flight[entry.project_id]

    # -- Watchdog ----------------------------------------------------------------

    def _on_timeout(self, entry: InFlightEntry) -> None:
        task = asyncio.ensure_future(self._handle_timeout(entry))
        self._watchdogs.add(task)
        task.add_done_callback(self._watchdogs.discard)

    async def _handle_timeout(self, entry: InFlightEntry) -> None:
        if self._in_flight.get(entry.project_id) is not entry:
            return
        self.logger.error(
            "Task timed out",
            project_id=entry.project_id,
            job_id=entry.job_id,
            timeout_seconds=self._settings.task_timeout_seconds,
        )
        try:
            await self._api.set_status(entry.project_id, ProjectStatus.ERROR, TASK_TIMEOUT_MESSAGE)
        except Exception as exc:
            self.logger.error("Timeout status update failed", project_id=entry.project_id, error=str(exc))
        try:
            await self._api.set_job_status(entry.job_id, JobStatus.FAILED)
        except Exception as exc:
            self.logger.error("Timeout job update failed", job_id=entry.job_id, error=str(exc))
