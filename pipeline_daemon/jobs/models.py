"""Project, job and payload data models."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class ProjectStatus(str, Enum):
    NEW = "new"
    PROCESS_SCRIPT = "process_script"
    PROCESS_SCRIPT_VALIDATE = "process_script_validate"
    PROCESS_AUDIO = "process_audio"
    PROCESS_AUDIO_VALIDATE = "process_audio_validate"
    PROCESS_TRANSCRIPTION = "process_transcription"
    PROCESS_METADATA = "process_metadata"
    PROCESS_CAPTIONS_VIDEO = "process_captions_video"
    PROCESS_IMAGES_GENERATION = "process_images_generation"
    PROCESS_VIDEO_PARTS_GENERATION = "process_video_parts_generation"
    PROCESS_VIDEO_MAIN = "process_video_main"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class JobType(str, Enum):
    SCRIPT = "script"
    AUDIO = "audio"
    TRANSCRIPTION = "transcription"
    METADATA = "metadata"
    CAPTIONS_VIDEO = "captions_video"
    IMAGES = "images"
    VIDEO_PARTS = "video_parts"
    VIDEO_MAIN = "video_main"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    PAUSED = "paused"


class AssetKind(str, Enum):
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"
    CHARACTER = "character"


def normalize_languages(values: Optional[List[str]]) -> List[str]:
    """Lowercase, trim and dedupe language codes, keeping first-seen order."""
    seen: List[str] = []
    for value in values or []:
        if not isinstance(value, str):
            continue
        code = value.strip().lower()
        if code and code not in seen:
            seen.append(code)
    return seen


class Project(BaseModel):
    id: str
    status: ProjectStatus
    languages: List[str] = Field(default_factory=list)
    user_id: Optional[str] = None

    @field_validator("languages", mode="before")
    @classmethod
    def _dedupe(cls, value):
        return normalize_languages(value)

    @property
    def primary_language(self) -> Optional[str]:
        return self.languages[0] if self.languages else None


class Job(BaseModel):
    id: str
    project_id: str
    user_id: Optional[str] = None
    type: str
    status: JobStatus = JobStatus.QUEUED
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("payload", mode="before")
    @classmethod
    def _payload_dict(cls, value):
        return value if isinstance(value, dict) else {}

    @property
    def job_type(self) -> Optional[JobType]:
        try:
            return JobType(self.type)
        except ValueError:
            return None


class LanguageProgressRow(BaseModel):
    """Per-(project, language) progress flags."""
    language_code: str
    transcription_done: bool = False
    captions_done: bool = False
    video_parts_done: bool = False
    final_video_done: bool = False
    disabled: bool = False
    failed_step: Optional[str] = None
    failure_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Creation snapshot
# ---------------------------------------------------------------------------

class VoiceAssignment(BaseModel):
    voice_id: Optional[str] = None
    voice_provider: Optional[str] = None
    source: Optional[str] = None


class TemplateInfo(BaseModel):
    id: Optional[str] = None
    code: Optional[str] = None
    captions_style: Optional[str] = None
    art_style_prompt: Optional[str] = None
    overlay_url: Optional[str] = None
    music_url: Optional[str] = None


class CreationSnapshot(BaseModel):
    """Project configuration captured at creation time."""
    user_id: Optional[str] = None
    auto_approve_script: bool = False
    auto_approve_audio: bool = False
    include_default_music: bool = True
    add_overlay: bool = True
    use_exact_text_as_script: bool = False
    duration_seconds: Optional[int] = None
    target_language: str = "en"
    languages: List[str] = Field(default_factory=list)
    captions_enabled: bool = True
    watermark_enabled: bool = False
    script_creation_guidance: Optional[str] = None
    audio_style_guidance: Optional[str] = None
    prompt: Optional[str] = None
    voice_id: Optional[str] = None
    voice_assignments: Dict[str, VoiceAssignment] = Field(default_factory=dict)
    voice_providers: Dict[str, str] = Field(default_factory=dict)
    template: Optional[TemplateInfo] = None

    @field_validator("languages", mode="before")
    @classmethod
    def _dedupe(cls, value):
        return normalize_languages(value)

    def configured_languages(self) -> List[str]:
        """Configured languages, falling back to the target language."""
        return self.languages or normalize_languages([self.target_language])


class FinalVoiceover(BaseModel):
    local_path: Optional[str] = None
    storage_path: Optional[str] = None
    asset_id: Optional[str] = None


class TranscriptionSnapshot(BaseModel):
    final_voiceovers: Dict[str, FinalVoiceover] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Job payloads, one variant per job type
# ---------------------------------------------------------------------------

class _Payload(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }

    language_code: Optional[str] = None


class ScriptPayload(_Payload):
    type: Literal["script"] = "script"


class AudioPayload(_Payload):
    type: Literal["audio"] = "audio"
    audio_language: Optional[str] = None
    languages: Optional[List[str]] = None
    voice: Optional[str] = None
    voice_id: Optional[str] = None
    style: Optional[str] = None
    take_count: int = 1

    @field_validator("take_count", mode="before")
    @classmethod
    def _clamp_takes(cls, value):
        try:
            return min(max(int(value), 1), 3)
        except (TypeError, ValueError):
            return 1

    @property
    def voice_override(self) -> Optional[str]:
        for value in (self.voice, self.voice_id):
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


class TranscriptionPayload(_Payload):
    type: Literal["transcription"] = "transcription"
    audio_local_paths: Dict[str, str] = Field(default_factory=dict)


class MetadataPayload(_Payload):
    type: Literal["metadata"] = "metadata"


class CaptionsPayload(_Payload):
    type: Literal["captions_video"] = "captions_video"


class ImagesPayload(_Payload):
    type: Literal["images"] = "images"


class VideoPartsPayload(_Payload):
    type: Literal["video_parts"] = "video_parts"
    recreate_video: bool = False
    reason: Optional[str] = None

    @property
    def recreate(self) -> bool:
        return self.recreate_video or self.reason == "video_recreate"


class VideoMainPayload(VideoPartsPayload):
    type: Literal["video_main"] = "video_main"
    include_default_music: Optional[bool] = None
    add_overlay: Optional[bool] = None


JobPayload = Annotated[
    Union[
        ScriptPayload,
        AudioPayload,
        TranscriptionPayload,
        MetadataPayload,
        CaptionsPayload,
        ImagesPayload,
        VideoPartsPayload,
        VideoMainPayload,
    ],
    Field(discriminator="type"),
]

_payload_adapter = TypeAdapter(JobPayload)


def decode_payload(job_type: JobType, raw: Optional[Dict[str, Any]]) -> JobPayload:
    """Decode a raw job payload into the variant for ``job_type``."""
    data = dict(raw or {})
    data["type"] = job_type.value
    return _payload_adapter.validate_python(data)
