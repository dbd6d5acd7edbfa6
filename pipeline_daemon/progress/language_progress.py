"""Aggregate view over per-language progress rows.

Pure computation: given the configured languages and the stored rows, work
out which languages are still active and, for each progress dimension, which
of them still need work.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from pipeline_daemon.jobs.models import LanguageProgressRow, normalize_languages


class ProgressFlag(str, Enum):
    TRANSCRIPTION = "transcription_done"
    CAPTIONS = "captions_done"
    VIDEO_PARTS = "video_parts_done"
    FINAL_VIDEO = "final_video_done"


class DimensionProgress(BaseModel):
    done: bool = False
    remaining: List[str] = Field(default_factory=list)


class ProgressAggregate(BaseModel):
    active: List[str] = Field(default_factory=list)
    disabled: List[str] = Field(default_factory=list)
    dimensions: Dict[ProgressFlag, DimensionProgress] = Field(default_factory=dict)

    def dimension(self, flag: ProgressFlag) -> DimensionProgress:
        return self.dimensions.get(flag) or DimensionProgress(done=False, remaining=list(self.active))

    def remaining(self, flag: ProgressFlag) -> List[str]:
        return self.dimension(flag).remaining

    def is_done(self, flag: ProgressFlag) -> bool:
        return self.dimension(flag).done


def index_rows(rows: Iterable[LanguageProgressRow]) -> Dict[str, LanguageProgressRow]:
    return {row.language_code.strip().lower(): row for row in rows}


def active_languages(
    languages: Iterable[str], rows: Iterable[LanguageProgressRow]
) -> List[str]:
    """Configured languages that have not been disabled, in configured order.

    A language without a row counts as active.
    """
    by_code = index_rows(rows)
    return [
        code
        for code in normalize_languages(list(languages))
        if not (code in by_code and by_code[code].disabled)
    ]


def pending_languages(
    languages: Iterable[str],
    rows: Iterable[LanguageProgressRow],
    flag: ProgressFlag,
) -> List[str]:
    """Active languages whose ``flag`` is not yet set."""
    rows = list(rows)
    by_code = index_rows(rows)
    pending = []
    for code in active_languages(languages, rows):
        row = by_code.get(code)
        if row is None or not getattr(row, flag.value):
            pending.append(code)
    return pending


def aggregate_progress(
    rows: Iterable[LanguageProgressRow],
    languages: Optional[Iterable[str]] = None,
) -> ProgressAggregate:
    """Build the aggregate view.

    When ``languages`` is omitted the rows themselves define the language set.
    ``done`` for a dimension requires at least one active language.
    """
    rows = list(rows)
    if languages is None:
        languages = [row.language_code for row in rows]
    languages = normalize_languages(list(languages))
    active = active_languages(languages, rows)
    disabled = [code for code in languages if code not in active]

    dimensions = {}
    for flag in ProgressFlag:
        remaining = pending_languages(active, rows, flag)
        dimensions[flag] = DimensionProgress(
            done=bool(active) and not remaining,
            remaining=remaining,
        )
    return ProgressAggregate(active=active, disabled=disabled, dimensions=dimensions)


def truncate_reason(reason: Optional[str], limit: int = 512) -> Optional[str]:
    """Trim a failure reason, capping it at ``limit`` characters."""
    if reason is None:
        return None
    text = str(reason).strip()
    if not text:
        return None
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def normalize_step(step: Optional[str]) -> Optional[str]:
    if not step:
        return None
    text = step.strip().lower()
    return text or None
