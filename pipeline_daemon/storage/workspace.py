"""Per-project workspace layout on the local filesystem.

    <projects>/<project_id>/workspace/<lang>/...
    <projects>/<project_id>/logs/<lang>/<kind>/...
    <projects>/<project_id>/logs/errors/
"""

import os
import re
import shutil
from typing import Iterable, List

LANGUAGE_CODE_RE = re.compile(r"^[a-z0-9-]+$")

METADATA_DIR = "metadata"
METADATA_FILE = "transcript-blocks.json"
VIDEO_PARTS_DIR = "video-basic-effects"
VIDEO_MERGE_DIR = "video-merge-layers"
CAPTIONS_DIR = "captions-video"
CAPTIONS_FILE = "out-alpha-validated.webm"
MAIN_VIDEO_FILE = "simple.1080p.mp4"


def validate_language_code(code: str) -> str:
    normalized = (code or "").strip().lower()
    if not LANGUAGE_CODE_RE.match(normalized):
        raise ValueError(f"Invalid language code: {code!r}")
    return normalized


class ProjectWorkspace:
    """Directory helpers for one project. Directories are created lazily."""

    def __init__(self, projects_root: str, project_id: str):
        self.project_id = project_id
        self.root = os.path.join(projects_root, project_id)
        self.workspace_dir = os.path.join(self.root, "workspace")
        self.logs_dir = os.path.join(self.root, "logs")

    def _ensure(self, path: str) -> str:
        os.makedirs(path, exist_ok=True)
        return path

    def ensure(self) -> "ProjectWorkspace":
        self._ensure(self.workspace_dir)
        self._ensure(self.logs_dir)
        return self

    def language_dir(self, language_code: str) -> str:
        return self._ensure(
            os.path.join(self.workspace_dir, validate_language_code(language_code))
        )

    def language_log_dir(self, language_code: str, kind: str) -> str:
        return self._ensure(
            os.path.join(self.logs_dir, validate_language_code(language_code), kind)
        )

    def log_dir(self, kind: str) -> str:
        return self._ensure(os.path.join(self.logs_dir, kind))

    @property
    def errors_dir(self) -> str:
        return self._ensure(os.path.join(self.logs_dir, "errors"))

    def metadata_path(self, language_code: str) -> str:
        return os.path.join(self.language_dir(language_code), METADATA_DIR, METADATA_FILE)

    def main_video_path(self, language_code: str) -> str:
        return os.path.join(
            self.language_dir(language_code), VIDEO_PARTS_DIR, "final", MAIN_VIDEO_FILE
        )

    def captions_overlay_path(self, language_code: str) -> str:
        return os.path.join(self.language_dir(language_code), CAPTIONS_DIR, CAPTIONS_FILE)

    def images_dir(self) -> str:
        return os.path.join(self.workspace_dir, "images")

    def remove_language_dirs(self, language_code: str, names: Iterable[str]) -> List[str]:
        """Delete intermediate directories under a language workspace."""
        removed = []
        base = self.language_dir(language_code)
        for name in names:
            target = os.path.join(base, name)
            if os.path.isdir(target):
                shutil.rmtree(target, ignore_errors=True)
                removed.append(target)
        return removed


class WorkspaceStore:
    """Factory for project workspaces under the configured projects root."""

    def __init__(self, projects_root: str):
        self._root = projects_root
        os.makedirs(self._root, exist_ok=True)

    @property
    def root(self) -> str:
        return self._root

    def for_project(self, project_id: str) -> ProjectWorkspace:
        return ProjectWorkspace(self._root, project_id).ensure()
