"""Transcription stage: one transcript per language from its final voiceover.

Audio approval queues one transcription job per language, each carrying a
``languageCode``. Such a job only transcribes its own language. A job without
one transcribes every language still missing a transcript.
"""

import os
from typing import Any, Dict, List, Optional

from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import ProjectStatus, TranscriptionPayload
from pipeline_daemon.phases.base import LanguagePhase, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressAggregate, ProgressFlag


class TranscriptionPhase(LanguagePhase):
    step = "transcription"
    status = ProjectStatus.PROCESS_TRANSCRIPTION
    next_status = ProjectStatus.PROCESS_METADATA
    flag = ProgressFlag.TRANSCRIPTION

    def requested_language(self, run: PhaseRun) -> Optional[str]:
        payload = run.request.payload
        if isinstance(payload, TranscriptionPayload) and payload.language_code:
            return payload.language_code.strip().lower() or None
        return None

    def pending(self, run: PhaseRun, aggregate: ProgressAggregate) -> List[str]:
        remaining = aggregate.remaining(self.flag)
        language = self.requested_language(run)
        if language is None:
            return remaining
        return [language] if language in remaining else []

    async def nothing_pending(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        remaining = self.remaining_after(run, aggregate)
        if remaining:
            # Other languages have their own jobs; leave the status to them.
            self.logger.info(
                "Requested language already handled",
                project_id=run.project_id,
                language=self.requested_language(run),
                remaining=remaining,
            )
            return
        await super().nothing_pending(run, aggregate)

    async def prepare(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        snapshot = await self.api.get_transcription_snapshot(run.project_id)
        run.state["final_voiceovers"] = snapshot.final_voiceovers

    def audio_path(self, run: PhaseRun, language: str) -> str:
        payload = run.request.payload
        if isinstance(payload, TranscriptionPayload):
            path = payload.audio_local_paths.get(language)
            if path and os.path.isfile(path):
                return path
        voiceover = run.state.get("final_voiceovers", {}).get(language)
        if voiceover and voiceover.local_path and os.path.isfile(voiceover.local_path):
            return voiceover.local_path
        raise GenerationError(f"Final voiceover not found for language {language}")

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        audio = self.audio_path(run, language)
        result = await self.generators.transcribe(run.ws, language, audio)
        return {
            "audio_path": audio,
            "transcript_path": result.output_path,
            "log_path": result.log_path,
        }
