"""Shared fixtures for comic producer tests."""

import io
import json

import pytest
from PIL import Image

from comic_producer.artifacts import LocalStorage
from comic_producer.errors import ServiceError
from comic_producer.models import VoiceStyle


def png_bytes(width=4, height=4, color=(255, 0, 0, 255)):
    """Encode a solid-color RGBA PNG."""
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_feature(name, prompt="a tall swordsman in blue robes", notes=""):
    return {
        "basic": {"name": name, "gender": "male", "age": "20"},
        "visual": {"hair": "black", "habitual_expression": "calm", "skin_tone": "fair", "face_shape": "oval"},
        "tts": {"voice_name": "云希", "voice_type": "zh-CN-YunxiNeural", "speed_ratio": 1.0},
        "concept_art_prompt": prompt,
        "concept_art_notes": notes,
    }


def make_segment(text, names=None, refs=None, narration=False):
    return {
        "text": text,
        "voice_name": "云希",
        "voice_type": "zh-CN-YunxiNeural",
        "speed_ratio": 1.0,
        "is_narration": narration,
        "character_names": names or [],
        "character_refs": refs or [],
    }


def make_page(segments_per_panel, layout="2x2 grid", prompt="a quiet village at dusk"):
    return {
        "panels": [
            {"source_text_segments": segs, "visual_prompt": f"panel {i + 1} scene"}
            for i, segs in enumerate(segments_per_panel)
        ],
        "layout_hint": layout,
        "image_prompt": prompt,
    }


class FakeAIGC:
    """Records every generative call; responses are canned."""

    def __init__(self, summaries=None, fail_edit=False, fail_text=False):
        self.summaries = list(summaries or [])
        self.fail_edit = fail_edit
        self.fail_text = fail_text
        self.summarize_calls = []
        self.text_calls = []
        self.edit_calls = []

    async def summarize(self, prompt, content):
        self.summarize_calls.append((prompt, content))
        if not self.summaries:
            raise ServiceError("no canned summary left")
        item = self.summaries.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_from_text(self, prompt):
        self.text_calls.append(prompt)
        if self.fail_text:
            raise ServiceError("text-to-image unavailable")
        return png_bytes(color=(0, 0, 255, 255))

    async def generate_from_image(self, reference, prompt):
        self.edit_calls.append((reference, prompt))
        if self.fail_edit:
            raise ServiceError("image-to-image unavailable")
        return png_bytes(color=(0, 255, 0, 255))


class FakeSpeech:
    """Speech service returning fixed bytes, with optional scripted failures per text."""

    def __init__(self, failures=None, voices=None):
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.voices = voices
        self.calls = []

    async def synthesize(self, text, voice_type, speed_ratio=1.0):
        self.calls.append(text)
        pending = self.failures.get(text)
        if pending:
            raise pending.pop(0)
        return b"ID3fake-mp3"

    async def list_voices(self, locale_prefix=""):
        if self.voices is None:
            return [VoiceStyle(voice_name="云希", voice_type="zh-CN-YunxiNeural")]
        if isinstance(self.voices, Exception):
            raise self.voices
        return self.voices


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "out"))


@pytest.fixture
def sample_storyboard():
    """Two-page storyboard with one recurring character."""
    return {
        "storyboard_pages": [
            make_page([
                [make_segment("山边有个小村。", narration=True)],
                [make_segment("韩立，快回来！", names=["韩立"]), make_segment("来了。", refs=[0])],
            ]),
            make_page([[make_segment("夜色渐深。", narration=True)]], layout="single panel"),
        ],
        "character_features": [make_feature("韩立")],
    }


@pytest.fixture
def sample_storyboard_json(sample_storyboard):
    return json.dumps(sample_storyboard, ensure_ascii=False)


@pytest.fixture
def novel_file(tmp_path):
    path = tmp_path / "novel.txt"
    path.write_text("第一章 山边小村\n韩立醒了。\n\n第二章 离家\n他离开了村子。\n", encoding="utf-8")
    return str(path)
