"""Video parts stage: per-language main clip from the shared images."""

import os
from typing import Any, Dict

from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import ProjectStatus, VideoPartsPayload
from pipeline_daemon.phases.base import LanguagePhase, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressFlag
from pipeline_daemon.storage.workspace import VIDEO_MERGE_DIR, VIDEO_PARTS_DIR


class VideoPartsPhase(LanguagePhase):
    step = "video_parts"
    status = ProjectStatus.PROCESS_VIDEO_PARTS_GENERATION
    next_status = ProjectStatus.PROCESS_VIDEO_MAIN
    flag = ProgressFlag.VIDEO_PARTS

    def recreate(self, run: PhaseRun) -> bool:
        payload = run.request.payload
        return isinstance(payload, VideoPartsPayload) and payload.recreate

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        if self.recreate(run):
            removed = run.ws.remove_language_dirs(language, [VIDEO_PARTS_DIR, VIDEO_MERGE_DIR])
            self.logger.info(
                "Recreate requested, removed intermediate video",
                project_id=run.project_id,
                language=language,
                removed=removed,
            )

        metadata_path = run.ws.metadata_path(language)
        if not os.path.isfile(metadata_path):
            raise GenerationError(f"Metadata missing for language {language}")
        images_dir = run.ws.images_dir()
        if not os.path.isdir(images_dir):
            raise GenerationError(f"Images directory missing at {images_dir}")

        result = await self.generators.render_video_parts(
            run.ws, language, metadata_path, images_dir
        )
        return {
            "main_video_path": result.output_path,
            "log_path": result.log_path,
            "command": result.command,
        }
