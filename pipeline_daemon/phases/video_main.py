"""Final video stage: merge main clip, voiceover and overlays per language."""

import os
from typing import Any, Dict, Optional

from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import AssetKind, ProjectStatus, VideoMainPayload
from pipeline_daemon.phases.base import LanguagePhase, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressAggregate, ProgressFlag
from pipeline_daemon.storage.workspace import VIDEO_MERGE_DIR


class VideoMainPhase(LanguagePhase):
    step = "video_main"
    status = ProjectStatus.PROCESS_VIDEO_MAIN
    next_status = ProjectStatus.DONE
    flag = ProgressFlag.FINAL_VIDEO

    def _payload(self, run: PhaseRun) -> Optional[VideoMainPayload]:
        payload = run.request.payload
        return payload if isinstance(payload, VideoMainPayload) else None

    def include_music(self, run: PhaseRun) -> bool:
        payload = self._payload(run)
        if payload and payload.include_default_music is not None:
            return payload.include_default_music
        return run.snapshot.include_default_music

    def add_overlay(self, run: PhaseRun) -> bool:
        payload = self._payload(run)
        if payload and payload.add_overlay is not None:
            return payload.add_overlay
        return run.snapshot.add_overlay

    async def prepare(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        snapshot = await self.api.get_transcription_snapshot(run.project_id)
        run.state["final_voiceovers"] = snapshot.final_voiceovers

    def audio_path(self, run: PhaseRun, language: str) -> str:
        voiceover = run.state.get("final_voiceovers", {}).get(language)
        if voiceover and voiceover.local_path and os.path.isfile(voiceover.local_path):
            return voiceover.local_path
        raise GenerationError(f"Final voiceover not found for language {language}")

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        run.ws.remove_language_dirs(language, [VIDEO_MERGE_DIR])

        metadata_path = run.ws.metadata_path(language)
        if not os.path.isfile(metadata_path):
            raise GenerationError(f"Metadata missing for language {language}")
        main_video = run.ws.main_video_path(language)
        if not os.path.isfile(main_video):
            raise GenerationError(f"Main video missing at {main_video}")
        audio = self.audio_path(run, language)

        captions = None
        if run.snapshot.captions_enabled:
            captions = run.ws.captions_overlay_path(language)
            if not os.path.isfile(captions):
                raise GenerationError(f"Captions overlay missing at {captions}")

        result = await self.generators.render_final_video(
            run.ws,
            language,
            main_video,
            audio,
            captions_path=captions,
            include_music=self.include_music(run),
            add_overlay=self.add_overlay(run),
        )
        asset = await self.api.upload_asset(
            run.project_id,
            result.output_path,
            AssetKind.VIDEO,
            language_code=language,
            is_final=True,
        )
        return {
            "final_video_path": result.output_path,
            "storage_path": asset.storage_path,
            "url": asset.url,
            "log_path": result.log_path,
        }
