"""Generic per-language phase execution.

Every stage handler follows the same loop:

1. resolve the active (not disabled) languages; none left -> project Error
2. pending = active languages still missing the stage's progress flag
3. nothing pending -> advance without doing any work
4. process pending languages one by one; a failure disables that language
   only, and the loop moves on. A failed flag write keeps the language
   pending instead
5. re-read progress: no active languages -> Error; work remaining -> re-set
   the same status; otherwise advance to the next stage
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pipeline_daemon.config import Settings
from pipeline_daemon.db.project_api import LanguageProgress, ProjectApi
from pipeline_daemon.generation.base import Generators
from pipeline_daemon.jobs.errors import GenerationError, HandledError, describe_error
from pipeline_daemon.jobs.models import (
    CreationSnapshot,
    Job,
    JobPayload,
    Project,
    ProjectStatus,
)
from pipeline_daemon.logging_config import LoggerMixin
from pipeline_daemon.progress.language_progress import ProgressFlag, ProgressAggregate
from pipeline_daemon.storage.workspace import ProjectWorkspace, WorkspaceStore


@dataclass
class PhaseContext:
    """Collaborators shared by every handler."""
    api: ProjectApi
    generators: Generators
    settings: Settings
    workspaces: WorkspaceStore


@dataclass
class PhaseRequest:
    """One claimed job, resolved against the project's live state."""
    project: Project
    job: Job
    snapshot: CreationSnapshot
    payload: JobPayload

    @property
    def project_id(self) -> str:
        return self.project.id


@dataclass
class PhaseRun:
    """Mutable state for a single handler invocation."""
    request: PhaseRequest
    ws: ProjectWorkspace
    outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    failures: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def project_id(self) -> str:
        return self.request.project_id

    @property
    def snapshot(self) -> CreationSnapshot:
        return self.request.snapshot


class PhaseHandler(LoggerMixin, ABC):
    """Base for all stage handlers."""

    step: str = ""
    status: ProjectStatus
    next_status: ProjectStatus

    def __init__(self, ctx: PhaseContext):
        self.ctx = ctx

    @property
    def api(self) -> ProjectApi:
        return self.ctx.api

    @property
    def generators(self) -> Generators:
        return self.ctx.generators

    def languages(self, request: PhaseRequest) -> List[str]:
        """Configured languages for the project, primary first."""
        return request.project.languages or request.snapshot.configured_languages()

    async def load_progress(self, request: PhaseRequest) -> LanguageProgress:
        return await self.api.get_language_progress(
            request.project_id, self.languages(request)
        )

    async def fail_stage(
        self, run: PhaseRun, message: str, extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Move the project to Error and raise HandledError."""
        details: Dict[str, Any] = {"failed_step": self.step}
        if run.failures:
            language, info = list(run.failures.items())[-1]
            details["failed_language"] = language
            details["log_path"] = info.get("log_path")
            details["command"] = info.get("command")
            details["failures"] = run.failures
        details.update(extra or {})
        self.logger.error(
            "Stage failed",
            project_id=run.project_id,
            step=self.step,
            reason=message,
        )
        await self.api.set_status(run.project_id, ProjectStatus.ERROR, message, details)
        raise HandledError(message, step=self.step)

    async def record_language_failure(
        self, run: PhaseRun, language: str, exc: BaseException
    ) -> None:
        reason = describe_error(exc)
        info: Dict[str, Any] = {"reason": reason}
        if isinstance(exc, GenerationError):
            info["log_path"] = exc.log_path
            info["command"] = exc.command
        run.failures[language] = info
        self.logger.error(
            "Language failed",
            project_id=run.project_id,
            language=language,
            step=self.step,
            error=reason,
            log_path=info.get("log_path"),
        )
        await self.api.mark_language_failure(run.project_id, language, self.step, reason)

    def new_run(self, request: PhaseRequest) -> PhaseRun:
        return PhaseRun(request=request, ws=self.ctx.workspaces.for_project(request.project_id))

    @property
    def failure_message(self) -> str:
        return f"{self.step.replace('_', ' ').capitalize()} failed"

    async def handle(self, request: PhaseRequest) -> None:
        """Run the stage, turning an unexpected error into a handled stage failure."""
        try:
            await self.run(request)
        except HandledError:
            raise
        except Exception as exc:
            self.logger.exception(
                "Stage crashed", project_id=request.project_id, step=self.step
            )
            await self.fail_stage(
                self.new_run(request), self.failure_message, {"error": describe_error(exc)}
            )

    @abstractmethod
    async def run(self, request: PhaseRequest) -> None:
        ...


class LanguagePhase(PhaseHandler):
    """Template for stages that process each active language in turn.

    Subclasses set ``flag`` (the progress dimension that decides which
    languages are pending, or None when every active language is processed)
    and implement ``process_language``. ``persist_flag`` controls whether the
    flag is written after each successful language.
    """

    flag: Optional[ProgressFlag] = None
    persist_flag: bool = True

    def pending(self, run: PhaseRun, aggregate: ProgressAggregate) -> List[str]:
        if self.flag is None:
            return list(aggregate.active)
        return aggregate.remaining(self.flag)

    def remaining_after(self, run: PhaseRun, aggregate: ProgressAggregate) -> List[str]:
        if self.flag is None:
            return []
        return aggregate.remaining(self.flag)

    async def prepare(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        """Hook run once before the language loop."""

    @abstractmethod
    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        """Do the stage's work for one language. Returns outputs for the status extra."""
        ...

    async def advance(self, run: PhaseRun) -> None:
        await self.api.set_status(
            run.project_id,
            self.next_status,
            None,
            {"languages": run.outputs, "step": self.step},
        )
        self.logger.info(
            "Stage complete",
            project_id=run.project_id,
            step=self.step,
            next_status=self.next_status.value,
        )

    async def nothing_pending(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        self.logger.info("Nothing pending, advancing", project_id=run.project_id, step=self.step)
        await self.advance(run)

    async def persist_progress(self, run: PhaseRun, language: str) -> None:
        """Write the stage flag for a language whose work succeeded.

        A failed write leaves the language active and pending, so the stage
        re-queues itself and the next run retries it.
        """
        try:
            await self.api.update_language_progress(
                run.project_id, language, **{self.flag.value: True}
            )
        except Exception as exc:
            self.logger.warning(
                "Failed to persist progress",
                project_id=run.project_id,
                language=language,
                step=self.step,
                error=describe_error(exc),
            )

    async def run(self, request: PhaseRequest) -> None:
        run = self.new_run(request)
        progress = await self.load_progress(request)
        if not progress.aggregate.active:
            await self.fail_stage(run, "No active languages remaining")

        pending = self.pending(run, progress.aggregate)
        if not pending:
            await self.nothing_pending(run, progress.aggregate)
            return

        await self.prepare(run, progress.aggregate)

        for language in pending:
            current = await self.load_progress(request)
            if not current.aggregate.active:
                break
            if language not in current.aggregate.active:
                continue
            try:
                run.outputs[language] = await self.process_language(run, language) or {}
            except HandledError:
                raise
            except Exception as exc:
                run.outputs.pop(language, None)
                await self.record_language_failure(run, language, exc)
                continue
            if self.flag is not None and self.persist_flag:
                await self.persist_progress(run, language)

        final = await self.load_progress(request)
        if not final.aggregate.active:
            await self.fail_stage(run, f"All languages failed during {self.step}")

        remaining = self.remaining_after(run, final.aggregate)
        if remaining:
            self.logger.info(
                "Languages still pending, re-queueing stage",
                project_id=run.project_id,
                step=self.step,
                remaining=remaining,
            )
            await self.api.set_status(
                run.project_id,
                self.status,
                None,
                {"languages": run.outputs, "remaining": remaining, "failures": run.failures},
            )
            return

        await self.advance(run)
