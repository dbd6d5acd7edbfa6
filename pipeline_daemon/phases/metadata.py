"""Metadata stage: transcript blocks per language.

The first active language's block count becomes the target for every other
language so multi-language timing stays aligned.
"""

import os
from typing import Any, Dict, List

from pipeline_daemon.generation.cli import count_blocks
from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import ProjectStatus
from pipeline_daemon.phases.base import LanguagePhase, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressAggregate, ProgressFlag


class MetadataPhase(LanguagePhase):
    step = "metadata"
    status = ProjectStatus.PROCESS_METADATA
    flag = ProgressFlag.CAPTIONS
    persist_flag = False

    async def prepare(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        reference = aggregate.active[0]
        run.state["reference_language"] = reference
        path = run.ws.metadata_path(reference)
        if os.path.isfile(path):
            run.state["target_block_count"] = count_blocks(path)

    def remaining_after(self, run: PhaseRun, aggregate: ProgressAggregate) -> List[str]:
        return [
            code
            for code in aggregate.remaining(ProgressFlag.CAPTIONS)
            if not os.path.isfile(run.ws.metadata_path(code))
        ]

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        metadata_path = run.ws.metadata_path(language)
        target = run.state.get("target_block_count")

        if os.path.isfile(metadata_path):
            blocks = count_blocks(metadata_path)
            if target is None or blocks == target:
                self.logger.info(
                    "Metadata already present, skipping",
                    project_id=run.project_id,
                    language=language,
                    blocks=blocks,
                )
                run.state.setdefault("target_block_count", blocks)
                return {"metadata_path": metadata_path, "blocks": blocks, "reused": True}

        transcript = os.path.join(run.ws.language_dir(language), "transcript.txt")
        if not os.path.isfile(transcript):
            raise GenerationError(f"Transcript missing for language {language}")

        result = await self.generators.generate_metadata(
            run.ws, language, transcript, target_block_count=target
        )
        blocks = count_blocks(result.output_path)
        if target is not None and blocks != target:
            raise GenerationError(
                f"Metadata produced {blocks} blocks, expected {target}",
                log_path=result.log_path,
                command=result.command,
            )
        if target is None:
            run.state["target_block_count"] = blocks
        return {
            "metadata_path": result.output_path,
            "blocks": blocks,
            "log_path": result.log_path,
        }

    async def advance(self, run: PhaseRun) -> None:
        if run.snapshot.captions_enabled:
            next_status = ProjectStatus.PROCESS_CAPTIONS_VIDEO
        else:
            progress = await self.load_progress(run.request)
            for language in progress.aggregate.active:
                await self.api.update_language_progress(
                    run.project_id, language, captions_done=True
                )
            next_status = ProjectStatus.PROCESS_IMAGES_GENERATION
        await self.api.set_status(
            run.project_id, next_status, None, {"languages": run.outputs, "step": self.step}
        )
