"""Phase dispatcher: runs a claimed job against the project's current stage."""

from typing import Dict, Optional

from pipeline_daemon.db.project_api import ProjectApi
from pipeline_daemon.jobs.errors import HandledError, UnexpectedError
from pipeline_daemon.jobs.models import Job, ProjectStatus, decode_payload
from pipeline_daemon.logging_config import LoggerMixin
from pipeline_daemon.phases.audio import AudioPhase
from pipeline_daemon.phases.base import PhaseContext, PhaseHandler, PhaseRequest
from pipeline_daemon.phases.captions import CaptionsPhase
from pipeline_daemon.phases.images import ImagesPhase
from pipeline_daemon.phases.metadata import MetadataPhase
from pipeline_daemon.phases.script import ScriptPhase
from pipeline_daemon.phases.transcription import TranscriptionPhase
from pipeline_daemon.phases.video_main import VideoMainPhase
from pipeline_daemon.phases.video_parts import VideoPartsPhase

EXECUTOR_CRASHED = "Executor crashed"


def build_handlers(ctx: PhaseContext) -> Dict[ProjectStatus, PhaseHandler]:
    script = ScriptPhase(ctx)
    return {
        ProjectStatus.NEW: script,
        ProjectStatus.PROCESS_SCRIPT: script,
        ProjectStatus.PROCESS_AUDIO: AudioPhase(ctx),
        ProjectStatus.PROCESS_TRANSCRIPTION: TranscriptionPhase(ctx),
        ProjectStatus.PROCESS_METADATA: MetadataPhase(ctx),
        ProjectStatus.PROCESS_CAPTIONS_VIDEO: CaptionsPhase(ctx),
        ProjectStatus.PROCESS_IMAGES_GENERATION: ImagesPhase(ctx),
        ProjectStatus.PROCESS_VIDEO_PARTS_GENERATION: VideoPartsPhase(ctx),
        ProjectStatus.PROCESS_VIDEO_MAIN: VideoMainPhase(ctx),
    }


class PhaseDispatcher(LoggerMixin):
    """Resolves a claimed job to a stage handler and runs it.

    The handler is chosen by the project's *current* status, not the job
    type, so a job stays valid if the project advanced after the claim.
    """

    def __init__(self, ctx: PhaseContext, handlers: Optional[Dict[ProjectStatus, PhaseHandler]] = None):
        self.ctx = ctx
        self.handlers = handlers if handlers is not None else build_handlers(ctx)

    @property
    def api(self) -> ProjectApi:
        return self.ctx.api

    async def execute(self, job: Job) -> bool:
        """Run ``job``. Returns True when the job should be marked done.

        Raises:
            UnexpectedError: the handler crashed; the project is already in Error.
        """
        job_type = job.job_type
        if job_type is None:
            self.logger.warning(
                "Unknown job type, skipping", job_id=job.id, type=job.type, project_id=job.project_id
            )
            return True

        project_id = job.project_id
        try:
            project = await self.api.get_project(project_id)
            if project is None:
                self.logger.warning("Project not found, skipping", project_id=project_id, job_id=job.id)
                return True
            snapshot = await self.api.get_creation_snapshot(project.id)
            payload = decode_payload(job_type, job.payload)
            handler = self.handlers.get(project.status)
            if handler is None:
                self.logger.info(
                    "No handler for project status, skipping",
                    project_id=project.id,
                    status=project.status.value,
                    job_id=job.id,
                )
                return True
            self.logger.info(
                "Executing phase",
                project_id=project.id,
                job_id=job.id,
                type=job_type.value,
                status=project.status.value,
                step=handler.step,
            )
            await handler.handle(PhaseRequest(project=project, job=job, snapshot=snapshot, payload=payload))
            return True
        except HandledError as exc:
            self.logger.info(
                "Phase failed (handled)", project_id=project_id, job_id=job.id, step=exc.step
            )
            return False
        except Exception as exc:
            self.logger.exception(
                EXECUTOR_CRASHED, project_id=project_id, job_id=job.id, type=job_type.value
            )
            try:
                await self.api.set_status(
                    project_id, ProjectStatus.ERROR, EXECUTOR_CRASHED, {"error": str(exc)}
                )
            except Exception as status_exc:
                self.logger.error(
                    "Failed to record crash status", project_id=project_id, error=str(status_exc)
                )
            raise UnexpectedError(exc) from exc
