"""Placeholder artifacts for fake-CLI runs and dummy script workspaces."""

import json
import os
import wave
from typing import List, Optional

from PIL import Image, ImageDraw

from pipeline_daemon.storage.workspace import (
    MAIN_VIDEO_FILE,
    VIDEO_MERGE_DIR,
    VIDEO_PARTS_DIR,
)

DUMMY_WORKSPACE_MARKER = "tests/daemon/dummy-scripts"
DUMMY_PART_CONTENT = b"DUMMY_VIDEO_PART"
DUMMY_FINAL_CONTENT = b"DUMMY_FINAL_VIDEO"
DEFAULT_FAKE_BLOCKS = 4


def is_dummy_workspace(script_workspace: str) -> bool:
    return DUMMY_WORKSPACE_MARKER in script_workspace.replace("\\", "/")


def write_dummy_main_video(language_dir: str) -> str:
    video_dir = os.path.join(language_dir, VIDEO_PARTS_DIR, "final")
    os.makedirs(video_dir, exist_ok=True)
    output = os.path.join(video_dir, MAIN_VIDEO_FILE)
    with open(output, "wb") as handle:
        handle.write(DUMMY_PART_CONTENT)
    return output


def write_dummy_merged_video(language_dir: str) -> str:
    merge_dir = os.path.join(language_dir, VIDEO_MERGE_DIR)
    os.makedirs(merge_dir, exist_ok=True)
    output = os.path.join(merge_dir, "final.1080p.mp4")
    with open(output, "wb") as handle:
        handle.write(DUMMY_FINAL_CONTENT)
    return output


def write_fake_blocks(output_path: str, count: Optional[int] = None, text: str = "") -> List[dict]:
    """Write a transcript-blocks JSON with ``count`` evenly spaced blocks."""
    total = count if count and count > 0 else DEFAULT_FAKE_BLOCKS
    words = text.split() or ["block"]
    blocks = [
        {
            "id": f"block-{i}",
            "text": words[i % len(words)],
            "start": i * 1000,
            "end": i * 1000 + 750,
        }
        for i in range(total)
    ]
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as handle:
        json.dump({"blocks": blocks}, handle, indent=2)
    return blocks


def write_silent_wav(output_path: str, seconds: float = 1.0, sample_rate: int = 16000) -> str:
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    frames = int(seconds * sample_rate)
    with wave.open(output_path, "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate)
        handle.writeframes(b"\x00\x00" * frames)
    return output_path


def write_placeholder_images(images_dir: str, count: int, size=(540, 960)) -> List[str]:
    """Numbered placeholder frames (``001.png``...) for the video stage."""
    os.makedirs(images_dir, exist_ok=True)
    paths = []
    for index in range(1, max(count, 1) + 1):
        img = Image.new("RGB", size, (40, 40, 40))
        draw = ImageDraw.Draw(img)
        draw.text((size[0] // 2 - 10, size[1] // 2), f"{index:03d}", fill=(220, 220, 220))
        path = os.path.join(images_dir, f"{index:03d}.png")
        img.save(path)
        paths.append(path)
    return paths


def write_text_placeholder(output_path: str, content: str) -> str:
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as handle:
        handle.write(content)
    return output_path
