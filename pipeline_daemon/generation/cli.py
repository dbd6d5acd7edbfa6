"""Generation client that shells out to the script workspaces' npm CLIs.

With ``fake_cli`` enabled, commands are journaled but not run and
deterministic fake outputs are written instead. A dummy script workspace
gets placeholder video artifacts.
"""

import json
import os
import secrets
import shutil
from typing import List, Optional

from pipeline_daemon.config import Settings
from pipeline_daemon.generation import placeholders
from pipeline_daemon.generation.base import GenerationResult, Generators, VoiceoverResult
from pipeline_daemon.generation.runner import log_stamp, run_command, write_fake_run
from pipeline_daemon.generation.voices import SUPPORTED_PROVIDERS, normalize_provider
from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.logging_config import LoggerMixin
from pipeline_daemon.storage.workspace import (
    CAPTIONS_DIR,
    CAPTIONS_FILE,
    METADATA_DIR,
    METADATA_FILE,
    VIDEO_MERGE_DIR,
    ProjectWorkspace,
)

AUDIO_SCRIPTS = {
    "elevenlabs": "prompt-to-wav",
    "minimax": "audio:minimax",
    "inworld": "audio:inworld",
}
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")


def count_blocks(metadata_path: str) -> int:
    """Number of entries in a transcript-blocks JSON file."""
    with open(metadata_path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    blocks = data.get("blocks") if isinstance(data, dict) else None
    return len(blocks) if isinstance(blocks, list) else 0


def _numbered_images(images_dir: str) -> List[str]:
    if not os.path.isdir(images_dir):
        return []
    return sorted(
        name
        for name in os.listdir(images_dir)
        if name[:3].isdigit() and name.lower().endswith(IMAGE_EXTENSIONS)
    )


def extend_images_to_blocks(images_dir: str, block_count: int) -> int:
    """Copy the last image until every block has a frame. Returns copies made."""
    images = _numbered_images(images_dir)
    if not images or len(images) >= block_count:
        return 0
    last = images[-1]
    ext = os.path.splitext(last)[1]
    copies = 0
    for index in range(len(images) + 1, block_count + 1):
        shutil.copyfile(
            os.path.join(images_dir, last), os.path.join(images_dir, f"{index:03d}{ext}")
        )
        copies += 1
    return copies


class CliGenerators(Generators, LoggerMixin):
    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def dummy_workspace(self) -> bool:
        return placeholders.is_dummy_workspace(self._settings.script_workspace_v2)

    @property
    def fake(self) -> bool:
        return self._settings.fake_cli

    async def _npm(self, ws: ProjectWorkspace, cwd: str, args: List[str], log_dir: str, log_name: str):
        if self.fake:
            return await write_fake_run(
                "npm", args, cwd, log_dir, log_name, ws.workspace_dir, note=f"{log_name} skipped"
            )
        return await run_command(
            "npm", args, cwd, log_dir, log_name, ws.workspace_dir, project_id=ws.project_id
        )

    # -- Script ----------------------------------------------------------------

    async def generate_script(
        self,
        ws: ProjectWorkspace,
        language_code: str,
        prompt: str,
        duration_seconds: Optional[int] = None,
        guidance: Optional[str] = None,
    ) -> str:
        out_dir = os.path.join(ws.language_dir(language_code), "script")
        os.makedirs(out_dir, exist_ok=True)
        output = os.path.join(out_dir, f"script-{log_stamp()}.txt")
        args = ["run", "prompt-to-text", "--", "--prompt", prompt, "--output", output]
        if duration_seconds:
            args += ["--duration", str(int(duration_seconds))]
        if guidance and guidance.strip():
            args += ["--must-have", guidance.strip()]
        args += ["--language", language_code]

        await self._npm(
            ws, self._settings.script_workspace, args, ws.language_log_dir(language_code, "script"), "script"
        )
        if self.fake:
            placeholders.write_text_placeholder(output, f"FAKE_SCRIPT [{language_code}] {prompt}")
        return self._read_text(output, "script")

    async def translate_script(
        self, ws: ProjectWorkspace, text: str, source_language: str, target_language: str
    ) -> str:
        lang_dir = ws.language_dir(target_language)
        input_path = os.path.join(lang_dir, "script", f"source-{source_language}.txt")
        output_path = os.path.join(lang_dir, "script", "translated.txt")
        placeholders.write_text_placeholder(input_path, text)
        args = [
            "run", "-s", "text:translate", "--",
            f"--input={input_path}",
            f"--output={output_path}",
            f"--language={target_language}",
        ]
        await self._npm(
            ws,
            self._settings.script_workspace_v2,
            args,
            ws.language_log_dir(target_language, "script"),
            f"translate-{target_language}",
        )
        if self.fake:
            placeholders.write_text_placeholder(output_path, f"[{target_language}] {text}")
        return self._read_text(output_path, "translation")

    def _read_text(self, path: str, label: str) -> str:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                text = handle.read().strip()
        except OSError as exc:
            raise GenerationError(f"{label} output missing at {path}") from exc
        if not text:
            raise GenerationError(f"{label} output is empty")
        return text

    # -- Audio -------------------------------------------------------------------

    async def generate_voiceover(
        self,
        ws: ProjectWorkspace,
        language_code: str,
        text: str,
        voice: str,
        provider: str,
        style: Optional[str] = None,
        take_count: int = 1,
    ) -> VoiceoverResult:
        trimmed = text.strip()
        if not trimmed:
            raise GenerationError("Script text for audio generation is empty")
        resolved = normalize_provider(provider)
        if resolved is None:
            raise GenerationError(
                f"Voice provider is required for {voice}. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
            )

        run_dir = os.path.join(
            ws.language_dir(language_code), "audio", f"{log_stamp()}-{secrets.token_hex(3)}"
        )
        os.makedirs(run_dir, exist_ok=True)
        script_path = os.path.join(run_dir, "script.txt")
        placeholders.write_text_placeholder(script_path, trimmed)

        takes = min(max(take_count, 1), 3)
        outputs = [os.path.join(run_dir, f"take-{take}.wav") for take in range(1, takes + 1)]
        args = [
            "run", AUDIO_SCRIPTS[resolved], "--",
            "--text-file", script_path,
            "--voice", voice,
            "--retries", "10",
            "--timeout-ms", str(20 * 60 * 1000),
        ]
        for output in outputs:
            args += ["--output", output]
        if style and resolved == "elevenlabs":
            args += ["--style", style]

        cwd = (
            self._settings.script_workspace
            if resolved == "elevenlabs"
            else self._settings.script_workspace_v2
        )
        result = await self._npm(ws, cwd, args, ws.language_log_dir(language_code, "audio"), "audio")
        if self.fake:
            for output in outputs:
                placeholders.write_silent_wav(output)

        missing = [output for output in outputs if not os.path.isfile(output)]
        if missing:
            raise GenerationError(
                f"Voiceover output missing: {missing[0]}",
                log_path=result.log_path,
                command=result.command,
            )
        return VoiceoverResult(
            run_dir=run_dir, outputs=outputs, log_path=result.log_path, command=result.command
        )

    # -- Transcription / metadata / captions -----------------------------------

    async def transcribe(
        self, ws: ProjectWorkspace, language_code: str, audio_path: str
    ) -> GenerationResult:
        lang_dir = ws.language_dir(language_code)
        output = os.path.join(lang_dir, "transcript.txt")
        if os.path.exists(output):
            os.remove(output)
        short = language_code if len(language_code) == 2 and language_code.isalpha() else "en"
        args = ["run", "audio:transcribe:faster-whisper", "--", audio_path, output, "--language", short]
        log_dir = ws.language_log_dir(language_code, "transcription")

        if self.fake or self.dummy_workspace:
            result = await write_fake_run(
                "npm", args, self._settings.script_workspace_v2, log_dir, "transcription",
                ws.workspace_dir, note="transcript generated",
            )
            placeholders.write_text_placeholder(output, "dummy transcript")
        else:
            result = await run_command(
                "npm", args, self._settings.script_workspace_v2, log_dir, "transcription",
                ws.workspace_dir, project_id=ws.project_id,
            )
        return GenerationResult(output_path=output, log_path=result.log_path, command=result.command)

    async def generate_metadata(
        self,
        ws: ProjectWorkspace,
        language_code: str,
        transcript_path: str,
        target_block_count: Optional[int] = None,
    ) -> GenerationResult:
        output = os.path.join(ws.language_dir(language_code), METADATA_DIR, METADATA_FILE)
        os.makedirs(os.path.dirname(output), exist_ok=True)
        args = ["run", "transcript:json", "--", transcript_path, output]
        if self._settings.script_mode == "fast":
            args.append("--fast")
        if target_block_count:
            args += ["--target-blocks", str(target_block_count)]

        result = await self._npm(
            ws, self._settings.script_workspace_v2, args,
            ws.language_log_dir(language_code, "metadata"), "metadata",
        )
        if self.fake:
            with open(transcript_path, "r", encoding="utf-8") as handle:
                transcript = handle.read()
            placeholders.write_fake_blocks(output, target_block_count, transcript)

        if not os.path.isfile(output):
            raise GenerationError(
                f"Metadata output missing at {output}", log_path=result.log_path, command=result.command
            )
        if target_block_count:
            produced = count_blocks(output)
            if produced != target_block_count:
                raise GenerationError(
                    f"Metadata produced {produced} blocks, expected {target_block_count}",
                    log_path=result.log_path,
                    command=result.command,
                )
        return GenerationResult(output_path=output, log_path=result.log_path, command=result.command)

    async def render_captions(
        self, ws: ProjectWorkspace, language_code: str, metadata_path: str, preset: str
    ) -> GenerationResult:
        if not os.path.isfile(metadata_path):
            raise GenerationError(f"Captions input JSON not found at {metadata_path}")
        captions_dir = os.path.join(ws.language_dir(language_code), CAPTIONS_DIR)
        os.makedirs(captions_dir, exist_ok=True)
        output = os.path.join(captions_dir, CAPTIONS_FILE)
        script = "render:headless" if self._settings.captions_renderer == "legacy" else "render:python"
        args = [
            "run", script, "--",
            "--input", os.path.abspath(metadata_path),
            "--output", output,
            "--preset", (preset or "acid").strip(),
        ]
        result = await self._npm(
            ws, self._settings.script_caption_workspace, args,
            ws.language_log_dir(language_code, "captions"), "captions",
        )
        if self.fake:
            placeholders.write_text_placeholder(output, f"FAKE_CAPTION_VIDEO for {ws.project_id}")
        if not os.path.isfile(output):
            raise GenerationError(
                f"Captions overlay missing at {output}", log_path=result.log_path, command=result.command
            )
        return GenerationResult(output_path=output, log_path=result.log_path, command=result.command)

    # -- Images / video ----------------------------------------------------------

    async def generate_images(
        self, ws: ProjectWorkspace, metadata_path: str, style_prompt: Optional[str] = None
    ) -> GenerationResult:
        if not os.path.isfile(metadata_path):
            raise GenerationError(f"Blocks JSON not found at {metadata_path}")
        images_dir = ws.images_dir()
        args = [
            "tsx",
            "src/comics-draw/generate-images-multiple.ts",
            f"--workspace={ws.workspace_dir}",
            f"--blocks-json={os.path.abspath(metadata_path)}",
            f"--output-dir={images_dir}",
        ]
        if style_prompt:
            style_path = os.path.join(ws.workspace_dir, "style-prompt.txt")
            placeholders.write_text_placeholder(style_path, style_prompt)
            args.append(f"--prompt-style={style_path}")

        log_dir = ws.log_dir("images")
        if self.fake or self.dummy_workspace:
            result = await write_fake_run(
                "npx", args, self._settings.script_workspace, log_dir, "images",
                ws.workspace_dir, note="images generated",
            )
            placeholders.write_placeholder_images(images_dir, count_blocks(metadata_path))
        else:
            result = await run_command(
                "npx", args, self._settings.script_workspace, log_dir, "images",
                ws.workspace_dir, project_id=ws.project_id,
            )
        if not _numbered_images(images_dir):
            raise GenerationError(
                f"No images produced in {images_dir}", log_path=result.log_path, command=result.command
            )
        return GenerationResult(output_path=images_dir, log_path=result.log_path, command=result.command)

    async def render_video_parts(
        self, ws: ProjectWorkspace, language_code: str, metadata_path: str, images_dir: str
    ) -> GenerationResult:
        if not os.path.isfile(metadata_path):
            raise GenerationError(f"Blocks JSON not found at {metadata_path}")
        lang_dir = ws.language_dir(language_code)
        copies = extend_images_to_blocks(images_dir, count_blocks(metadata_path))
        if copies:
            self.logger.warning(
                "Extended prepared images to cover metadata blocks",
                project_id=ws.project_id,
                language=language_code,
                copies=copies,
            )

        if self.dummy_workspace or self.fake:
            output = placeholders.write_dummy_main_video(lang_dir)
            return GenerationResult(output_path=output, command="(dummy basic-effects shortcut)")

        args = [
            "run", "-s", "video:basic-effects", "--",
            f"--workspace={lang_dir}",
            f"--blocks-json={os.path.abspath(metadata_path)}",
            f"--images-dir={images_dir}",
            f"--transition-name={self._settings.video_effect}",
        ]
        if self._settings.script_mode == "fast":
            args.append("--fast")
        result = await run_command(
            "npm", args, self._settings.script_workspace_v2,
            ws.language_log_dir(language_code, "video-parts"), "video-parts",
            ws.workspace_dir, project_id=ws.project_id,
        )
        output = ws.main_video_path(language_code)
        if not os.path.isfile(output):
            raise GenerationError(
                f"Main video output missing at {output}", log_path=result.log_path, command=result.command
            )
        return GenerationResult(output_path=output, log_path=result.log_path, command=result.command)

    async def render_final_video(
        self,
        ws: ProjectWorkspace,
        language_code: str,
        main_video_path: str,
        audio_path: str,
        captions_path: Optional[str] = None,
        include_music: bool = True,
        add_overlay: bool = True,
    ) -> GenerationResult:
        lang_dir = ws.language_dir(language_code)
        if self.dummy_workspace or self.fake:
            output = placeholders.write_dummy_merged_video(lang_dir)
            return GenerationResult(output_path=output, command="(dummy merge-layers shortcut)")

        final_dir = os.path.join(lang_dir, VIDEO_MERGE_DIR)
        os.makedirs(final_dir, exist_ok=True)
        output = os.path.join(final_dir, "final.1080p.mp4")
        args = [
            "run", "-s", "video:merge-layers", "--", "1080p",
            "--final", output,
            "--main-video", main_video_path,
            "--audio", audio_path,
        ]
        if include_music and self._settings.default_music_path:
            args += ["--background-music", self._settings.default_music_path]
        if add_overlay and self._settings.default_overlay_path:
            args += ["--overlay", self._settings.default_overlay_path]
        if captions_path:
            args += ["--overlay", f"{captions_path}#once"]

        result = await run_command(
            "npm", args, self._settings.script_workspace_v2,
            ws.language_log_dir(language_code, "video"), "video",
            ws.workspace_dir, project_id=ws.project_id,
        )
        if not os.path.isfile(output):
            raise GenerationError(
                f"Final video output missing at {output}", log_path=result.log_path, command=result.command
            )
        return GenerationResult(output_path=output, log_path=result.log_path, command=result.command)
