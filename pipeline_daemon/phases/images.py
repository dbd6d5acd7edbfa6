"""Images stage: one image set shared by every language.

Images are generated once from the primary language's metadata. A dummy
script workspace short-circuits the remaining video stages with placeholders.
"""

import os

from pipeline_daemon.generation import placeholders
from pipeline_daemon.jobs.errors import HandledError
from pipeline_daemon.jobs.models import AssetKind, ProjectStatus
from pipeline_daemon.phases.base import PhaseHandler, PhaseRequest, PhaseRun
from pipeline_daemon.progress.language_progress import ProgressFlag


class ImagesPhase(PhaseHandler):
    step = "images"
    status = ProjectStatus.PROCESS_IMAGES_GENERATION
    next_status = ProjectStatus.PROCESS_VIDEO_PARTS_GENERATION

    async def run(self, request: PhaseRequest) -> None:
        run = self.new_run(request)
        progress = await self.load_progress(request)
        active = progress.aggregate.active
        if not active:
            await self.fail_stage(run, "No active languages remaining")

        primary = active[0]
        metadata_path = run.ws.metadata_path(primary)
        if not os.path.isfile(metadata_path):
            await self.fail_stage(run, f"Metadata missing for primary language {primary}")

        images_dir = run.ws.images_dir()
        style = request.snapshot.template.art_style_prompt if request.snapshot.template else None
        try:
            if os.path.isdir(images_dir) and os.listdir(images_dir):
                self.logger.info("Images already present, skipping", project_id=run.project_id)
                log_path = None
            else:
                result = await self.generators.generate_images(run.ws, metadata_path, style)
                images_dir = result.output_path
                log_path = result.log_path
                for name in sorted(os.listdir(images_dir)):
                    await self.api.upload_asset(
                        run.project_id, os.path.join(images_dir, name), AssetKind.IMAGE
                    )
        except HandledError:
            raise
        except Exception as exc:
            run.failures[primary] = {
                "reason": str(exc),
                "log_path": getattr(exc, "log_path", None),
                "command": getattr(exc, "command", None),
            }
            await self.fail_stage(run, f"Image generation failed: {exc}")

        extra = {"images_dir": images_dir, "log_path": log_path, "step": self.step}

        if self.generators.dummy_workspace:
            await self._finish_dummy(run, active, extra)
            return

        await self.api.set_status(run.project_id, self.next_status, None, extra)

    async def _finish_dummy(self, run: PhaseRun, languages, extra) -> None:
        outputs = {}
        for language in languages:
            lang_dir = run.ws.language_dir(language)
            outputs[language] = {
                "main_video_path": placeholders.write_dummy_main_video(lang_dir),
                "final_video_path": placeholders.write_dummy_merged_video(lang_dir),
            }
            await self.api.update_language_progress(
                run.project_id, language, **{flag.value: True for flag in ProgressFlag}
            )
        self.logger.info("Dummy workspace: wrote placeholder videos", project_id=run.project_id)
        for status in (
            ProjectStatus.PROCESS_VIDEO_PARTS_GENERATION,
            ProjectStatus.PROCESS_VIDEO_MAIN,
            ProjectStatus.DONE,
        ):
            await self.api.set_status(run.project_id, status, None, {**extra, "languages": outputs})
