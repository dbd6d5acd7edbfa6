"""Generation client interface used by the phase handlers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from pipeline_daemon.storage.workspace import ProjectWorkspace


@dataclass
class GenerationResult:
    output_path: str
    log_path: Optional[str] = None
    command: Optional[str] = None


@dataclass
class VoiceoverResult:
    run_dir: str
    outputs: List[str] = field(default_factory=list)
    log_path: Optional[str] = None
    command: Optional[str] = None


class Generators(ABC):
    """Opaque content-generation calls, one per stage.

    Implementations raise ``GenerationError`` on failure.
    """

    @property
    @abstractmethod
    def dummy_workspace(self) -> bool:
        """True when the script workspace is a test dummy."""
        ...

    @abstractmethod
    async def generate_script(
        self,
        ws: ProjectWorkspace,
        language_code: str,
        prompt: str,
        duration_seconds: Optional[int] = None,
        guidance: Optional[str] = None,
    ) -> str:
        ...

    @abstractmethod
    async def translate_script(
        self, ws: ProjectWorkspace, text: str, source_language: str, target_language: str
    ) -> str:
        ...

    @abstractmethod
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
        ...

    @abstractmethod
    async def transcribe(
        self, ws: ProjectWorkspace, language_code: str, audio_path: str
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def generate_metadata(
        self,
        ws: ProjectWorkspace,
        language_code: str,
        transcript_path: str,
        target_block_count: Optional[int] = None,
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def render_captions(
        self, ws: ProjectWorkspace, language_code: str, metadata_path: str, preset: str
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def generate_images(
        self, ws: ProjectWorkspace, metadata_path: str, style_prompt: Optional[str] = None
    ) -> GenerationResult:
        ...

    @abstractmethod
    async def render_video_parts(
        self, ws: ProjectWorkspace, language_code: str, metadata_path: str, images_dir: str
    ) -> GenerationResult:
        ...

    @abstractmethod
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
        ...
