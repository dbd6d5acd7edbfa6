"""Script stage: primary script, then translations for the other languages."""

from typing import Any, Dict, Optional

from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.jobs.models import ProjectStatus
from pipeline_daemon.phases.base import LanguagePhase, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressAggregate


class ScriptPhase(LanguagePhase):
    step = "script"
    status = ProjectStatus.PROCESS_SCRIPT
    flag = None

    async def prepare(self, run: PhaseRun, aggregate: ProgressAggregate) -> None:
        run.state["source_language"] = aggregate.active[0]

    async def _source_text(self, run: PhaseRun) -> Optional[str]:
        text = run.state.get("source_text")
        if text:
            return text
        return await self.api.get_script_text(run.project_id, run.state["source_language"])

    async def process_language(self, run: PhaseRun, language: str) -> Dict[str, Any]:
        existing = await self.api.get_script_text(run.project_id, language)
        if existing and existing.strip():
            if language == run.state["source_language"]:
                run.state["source_text"] = existing
            return {"reused": True}

        snapshot = run.snapshot
        if language == run.state["source_language"]:
            prompt = (snapshot.prompt or "").strip()
            if not prompt:
                raise GenerationError("Project prompt is empty")
            if snapshot.use_exact_text_as_script:
                text = prompt
            else:
                text = await self.generators.generate_script(
                    run.ws,
                    language,
                    prompt,
                    duration_seconds=snapshot.duration_seconds,
                    guidance=snapshot.script_creation_guidance,
                )
            run.state["source_text"] = text
        else:
            source = await self._source_text(run)
            if not source:
                raise GenerationError("Source script unavailable for translation")
            text = await self.generators.translate_script(
                run.ws, source, run.state["source_language"], language
            )

        await self.api.upsert_script(run.project_id, language, text)
        return {"characters": len(text)}

    async def advance(self, run: PhaseRun) -> None:
        if not run.outputs:
            await self.fail_stage(run, "Script generation failed for all languages")
        next_status = (
            ProjectStatus.PROCESS_AUDIO
            if run.snapshot.auto_approve_script
            else ProjectStatus.PROCESS_SCRIPT_VALIDATE
        )
        await self.api.set_status(
            run.project_id, next_status, None, {"languages": run.outputs, "step": self.step}
        )
