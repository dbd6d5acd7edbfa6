"""Voice and provider resolution for the audio stage."""

from dataclasses import dataclass
from typing import Optional

from pipeline_daemon.jobs.models import AudioPayload, CreationSnapshot

SUPPORTED_PROVIDERS = ("minimax", "elevenlabs", "inworld")


def normalize_provider(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized if normalized in SUPPORTED_PROVIDERS else None


@dataclass
class VoiceChoice:
    voice_id: Optional[str]
    provider: Optional[str]
    source: str


def resolve_voice(
    language_code: str,
    snapshot: CreationSnapshot,
    payload: Optional[AudioPayload] = None,
    default_voice: Optional[str] = None,
) -> VoiceChoice:
    """Pick the voice for one language.

    Priority: job override, per-language assignment, project voice, none.
    The provider comes from the assignment itself or the project's
    voice -> provider map. A known provider without a voice id falls back to
    ``default_voice``.
    """
    override = payload.voice_override if payload else None
    assignment = snapshot.voice_assignments.get(language_code)

    if override:
        choice = VoiceChoice(override, snapshot.voice_providers.get(override), "job")
    elif assignment and (assignment.voice_id or assignment.voice_provider):
        provider = assignment.voice_provider
        if not provider and assignment.voice_id:
            provider = snapshot.voice_providers.get(assignment.voice_id)
        choice = VoiceChoice(assignment.voice_id, provider, assignment.source or "language")
    elif snapshot.voice_id:
        choice = VoiceChoice(
            snapshot.voice_id, snapshot.voice_providers.get(snapshot.voice_id), "project"
        )
    else:
        choice = VoiceChoice(None, None, "none")

    choice.provider = normalize_provider(choice.provider)
    if choice.provider and not choice.voice_id and default_voice:
        choice.voice_id = default_voice.strip() or None
    return choice
