"""Audio stage: voiceover takes per language.

Either auto-advances to transcription (queueing one transcription job per
language) or stops at manual audio validation.
"""

from typing import Any, Dict, List

from pipeline_daemon.generation.voices import resolve_voice
from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import (
    AssetKind,
    AudioPayload,
    JobType,
    ProjectStatus,
    normalize_languages,
)
from pipeline_daemon.phases.base import LanguagePhase, PhaseRequest, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressAggregate


class AudioPhase(LanguagePhase):
    step = "audio"
    status = ProjectStatus.PROCESS_AUDIO
    flag = None

    def requested_languages(self, request: PhaseRequest) -> List[str]:
        payload = request.payload
        if isinstance(payload, AudioPayload):
            if payload.audio_language:
                return normalize_languages([payload.audio_language])
            if payload.languages:
                return normalize_languages(payload.languages)
        return request.snapshot.configured_languages()

    def pending(self, run: PhaseRun, aggregate: ProgressAggregate) -> List[str]:
        requested = self.requested_languages(run.request)
        return [code for code in requested if code in aggregate.active]

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        payload = run.request.payload if isinstance(run.request.payload, AudioPayload) else None
        choice = resolve_voice(
            language,
            run.snapshot,
            payload,
            default_voice=self.ctx.settings.audio_default_voice,
        )
        if not choice.provider or not choice.voice_id:
            raise GenerationError("Voice provider missing or unsupported")

        text = await self.api.get_script_text(run.project_id, language)
        if not text or not text.strip():
            raise GenerationError(f"No script text for language {language}")

        style = None
        if choice.provider == "elevenlabs":
            style = (
                (payload.style if payload else None)
                or run.snapshot.audio_style_guidance
                or self.ctx.settings.audio_default_style
            )

        result = await self.generators.generate_voiceover(
            run.ws,
            language,
            text,
            voice=choice.voice_id,
            provider=choice.provider,
            style=style,
            take_count=payload.take_count if payload else 1,
        )

        candidates = []
        for path in result.outputs:
            asset = await self.api.upload_asset(
                run.project_id, path, AssetKind.AUDIO, language_code=language
            )
            candidates.append({"local_path": path, "storage_path": asset.storage_path, "url": asset.url})

        return {
            "voice_id": choice.voice_id,
            "provider": choice.provider,
            "voice_source": choice.source,
            "run_dir": result.run_dir,
            "log_path": result.log_path,
            "candidates": candidates,
        }

    async def advance(self, run: PhaseRun) -> None:
        if not run.outputs:
            await self.fail_stage(run, "Audio generation failed for all languages")

        if not run.snapshot.auto_approve_audio:
            await self.api.set_status(
                run.project_id,
                ProjectStatus.PROCESS_AUDIO_VALIDATE,
                None,
                {"audio_candidates": run.outputs},
            )
            return

        final_voiceovers = {}
        for language, output in run.outputs.items():
            chosen = output["candidates"][0]
            asset = await self.api.upload_asset(
                run.project_id,
                chosen["local_path"],
                AssetKind.AUDIO,
                language_code=language,
                is_final=True,
            )
            final_voiceovers[language] = {
                "local_path": chosen["local_path"],
                "storage_path": asset.storage_path,
                "asset_id": asset.asset_id,
            }
            await self.api.update_language_progress(
                run.project_id, language, transcription_done=False
            )
            await self.api.create_job(
                run.project_id,
                run.request.project.user_id or run.snapshot.user_id,
                JobType.TRANSCRIPTION,
                {
                    "languageCode": language,
                    "audioLocalPaths": {language: chosen["local_path"]},
                },
            )

        await self.api.set_status(
            run.project_id,
            ProjectStatus.PROCESS_TRANSCRIPTION,
            None,
            {"final_voiceovers": final_voiceovers},
        )
