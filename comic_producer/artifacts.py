"""Output storage, JSON artifacts, file naming and slideshow data documents."""

import json
import os
import re
import shutil

from comic_producer.constants import OUTPUT_DIR, SLIDES_FILE
from comic_producer.models import StoryboardSummary


class LocalStorage:
    """Durable storage rooted at a directory, addressed by "/"-separated keys."""

    def __init__(self, root: str = OUTPUT_DIR):
        self.root = root

    def path(self, key: str) -> str:
        return os.path.join(self.root, *key.split("/"))

    def put(self, key: str, data: bytes) -> str:
        """Write bytes under key, creating parent directories. Returns the file path."""
        path = self.path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def put_text(self, key: str, text: str) -> str:
        return self.put(key, text.encode("utf-8"))

    def get(self, key: str) -> bytes:
        with open(self.path(key), "rb") as f:
            return f.read()

    def exists(self, key: str) -> bool:
        return bool(key) and os.path.isfile(self.path(key))

    def copy(self, src_key: str, dst_key: str) -> str:
        if src_key == dst_key:
            return self.path(dst_key)
        dst = self.path(dst_key)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        shutil.copyfile(self.path(src_key), dst)
        return dst


def slug_from_path(novel_path: str) -> str:
    """Convert a novel filename to an output directory slug.

    "Tell-Tale Heart.txt" → "tell_tale_heart", "凡人修仙传.txt" → "凡人修仙传"
    """
    basename = os.path.splitext(os.path.basename(novel_path))[0]
    slug = re.sub(r"[^\w]+", "_", basename).strip("_").lower()
    return slug or "novel"


def chapter_folder(index: int) -> str:
    """Folder name for the chapter at 0-based ``index``."""
    return f"chapter_{index + 1:03d}"


def page_image_name(page_index: int) -> str:
    return f"page_{page_index + 1:03d}.png"


def segment_audio_name(page_index: int, panel_index: int, segment_index: int) -> str:
    return f"page_{page_index + 1:03d}_panel_{panel_index + 1:02d}_audio_{segment_index + 1:03d}.mp3"


def write_artifact(storage: LocalStorage, key: str, data) -> str:
    """Write JSON artifact under key. Returns path to the written file."""
    return storage.put_text(key, json.dumps(data, ensure_ascii=False, indent=2))


def _join(prefix: str, name: str) -> str:
    return f"{prefix}/{name}" if prefix else name


def build_slideshow_pages(
    storage: LocalStorage,
    folder: str,
    summary: StoryboardSummary,
    prefix: str = "",
) -> list[dict]:
    """Describe each page for the presentation layer.

    Only images and audio clips that were actually written are listed; file
    references are relative to the document, under ``prefix``.
    """
    slides = []
    for page_index, page in enumerate(summary.storyboard_pages):
        image_name = page_image_name(page_index)
        slide = {
            "pageIndex": page_index,
            "image": _join(prefix, image_name) if storage.exists(f"{folder}/{image_name}") else "",
            "layoutHint": page.layout_hint,
            "imagePrompt": page.image_prompt,
            "panels": len(page.panels),
            "audio": [],
        }
        for panel_index, panel in enumerate(page.panels):
            for segment_index, segment in enumerate(panel.source_text_segments):
                audio_name = segment_audio_name(page_index, panel_index, segment_index)
                if not storage.exists(f"{folder}/{audio_name}"):
                    continue
                entry = {
                    "file": _join(prefix, audio_name),
                    "text": segment.text,
                    "panelIndex": panel_index,
                    "segmentIndex": segment_index,
                    "isNarration": segment.is_narration,
                }
                if segment.character_names:
                    entry["characterNames"] = list(segment.character_names)
                slide["audio"].append(entry)
        slides.append(slide)
    return slides


def write_slideshow(storage: LocalStorage, key: str, novel_title: str, chapters: list[dict]) -> str:
    """Write a slideshow data document listing chapters and their slides."""
    return write_artifact(storage, key, {"novelTitle": novel_title, "chapters": chapters})


def chapter_slides_key(folder: str) -> str:
    return f"{folder}/{SLIDES_FILE}"
