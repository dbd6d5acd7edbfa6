"""Captions stage: render the transparent captions overlay per language."""

import os
from typing import Any, Dict

from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import ProjectStatus
from pipeline_daemon.phases.base import LanguagePhase, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressFlag

DEFAULT_CAPTIONS_PRESET = "acid"


class CaptionsPhase(LanguagePhase):
    step = "captions"
    status = ProjectStatus.PROCESS_CAPTIONS_VIDEO
    next_status = ProjectStatus.PROCESS_IMAGES_GENERATION
    flag = ProgressFlag.CAPTIONS

    def preset(self, run: PhaseRun) -> str:
        template = run.snapshot.template
        if template and template.captions_style and template.captions_style.strip():
            return template.captions_style.strip()
        return DEFAULT_CAPTIONS_PRESET

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        metadata_path = run.ws.metadata_path(language)
        if not os.path.isfile(metadata_path):
            raise GenerationError(f"Metadata missing for language {language}")
        result = await self.generators.render_captions(
            run.ws, language, metadata_path, self.preset(run)
        )
        return {"captions_path": result.output_path, "log_path": result.log_path}
