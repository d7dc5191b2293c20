"""Tests for the character registry and concept-art cache."""

import asyncio
import json
import os

import pytest

from comic_producer.characters import (
    CharacterRegistry,
    build_global_manifest,
    compose_concept_prompt,
    normalize_name,
    sanitize_file_stem,
    sync_character_assets,
    write_global_manifest,
)
from comic_producer.models import CharacterFeature
from conftest import FakeAIGC, make_feature


def _features(*names, prompt="a tall swordsman in blue robes"):
    return [CharacterFeature.model_validate(make_feature(n, prompt=prompt)) for n in names]


def _sync(registry, features, storage, aigc, folder="chapter_001", style=""):
    registry.update(features)
    return asyncio.run(sync_character_assets(registry, features, storage, aigc, folder, style))


# --- Names ---

def test_normalize_name_case_and_space():
    assert normalize_name("  Aria ") == normalize_name("aria") == "aria"


def test_normalize_name_idempotent():
    once = normalize_name("  Han Li\t")
    assert normalize_name(once) == once


@pytest.mark.parametrize("name,index,expected", [
    ("Han Li", 0, "Han_Li_01"),
    ("韩立", 2, "韩立_03"),
    ("Mr. O'Neil", 9, "Mr__O_Neil_10"),
    ("!!!", 0, "character_01"),
    ("", 4, "character_05"),
])
def test_sanitize_file_stem(name, index, expected):
    assert sanitize_file_stem(name, index) == expected


def test_sanitize_file_stem_stable():
    """Same name and index always give the same stem."""
    assert sanitize_file_stem("南宫婉", 1) == sanitize_file_stem("南宫婉", 1)


# --- Registry ---

def test_registry_first_seen_order():
    """Order is fixed by first appearance; later updates replace features in place."""
    registry = CharacterRegistry()
    registry.update(_features("Aria", "Bob"))
    registry.update(_features("bob", "Cid", prompt="new look"))
    assert registry.order == ["aria", "bob", "cid"]
    assert registry.features["bob"].concept_art_prompt == "new look"
    assert [f.basic.name for f in registry.ordered_features()] == ["Aria", "bob", "Cid"]
    assert len(registry) == 3
    assert "cid" in registry
    assert registry.index_of("cid") == 2
    assert registry.index_of("nobody") == -1


def test_registry_skips_unnamed():
    registry = CharacterRegistry()
    registry.update(_features("  "))
    assert len(registry) == 0


# --- Asset sync ---

def test_first_sync_generates_from_text(storage):
    """New characters are drawn from scratch and stored globally and per chapter."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    report = _sync(registry, _features("韩立"), storage, aigc, style="卡通风格，")

    assert report.generated == ["韩立"]
    assert len(aigc.text_calls) == 1
    assert aigc.text_calls[0] == "卡通风格， a tall swordsman in blue robes"
    assert storage.exists("characters/韩立_01.png")
    assert storage.get("characters/韩立_01_prompt.txt").decode("utf-8") == aigc.text_calls[0] + "\n"
    assert storage.exists("chapter_001/characters/韩立_01.png")

    manifest = json.loads(storage.get("chapter_001/characters/manifest.json"))
    entry = manifest["characters"][0]
    assert entry["name"] == "韩立"
    assert entry["image_file"] == "韩立_01.png"
    assert entry["global_prompt"] == aigc.text_calls[0]

    asset = registry.asset("韩立")
    assert asset.image_key == "characters/韩立_01.png"
    assert asset.prompt_used == aigc.text_calls[0]


def test_unchanged_prompt_reuses_image(storage):
    """A character in chapters 1 and 3 but not 2 is drawn once, at chapter 1."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    _sync(registry, _features("韩立"), storage, aigc, folder="chapter_001")
    _sync(registry, _features("南宫婉", prompt="a graceful cultivator"), storage, aigc, folder="chapter_002")
    report = _sync(registry, _features("韩立"), storage, aigc, folder="chapter_003")

    calls = aigc.text_calls + [prompt for _, prompt in aigc.edit_calls]
    assert calls.count("a tall swordsman in blue robes") == 1
    assert report.reused == ["韩立"]
    assert report.generated == []
    assert storage.exists("chapter_003/characters/韩立_01.png")
    assert registry.asset("韩立").file_stem == "韩立_01"


def test_prompt_change_refines_prior_image(storage):
    """A one-character prompt change regenerates via image-to-image from the old art."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    _sync(registry, _features("韩立", prompt="a tall swordsman"), storage, aigc)
    old_image = storage.get("characters/韩立_01.png")

    report = _sync(registry, _features("韩立", prompt="a tall swordsman."), storage, aigc, folder="chapter_002")

    assert report.generated == ["韩立"]
    assert len(aigc.edit_calls) == 1
    reference, prompt = aigc.edit_calls[0]
    assert reference == old_image
    assert prompt == "a tall swordsman."
    assert registry.asset("韩立").prompt_used == "a tall swordsman."


def test_style_change_regenerates(storage):
    """Changing the style prefix changes the full prompt and forces regeneration."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    _sync(registry, _features("韩立"), storage, aigc, style="水墨风格，")
    _sync(registry, _features("韩立"), storage, aigc, style="卡通风格，")
    assert len(aigc.edit_calls) == 1


def test_missing_file_regenerates_from_text(storage):
    """A deleted cached image is regenerated; without a base image text-to-image is used."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    _sync(registry, _features("韩立"), storage, aigc)
    os.remove(storage.path("characters/韩立_01.png"))

    report = _sync(registry, _features("韩立"), storage, aigc, folder="chapter_002")

    assert report.generated == ["韩立"]
    assert len(aigc.text_calls) == 2
    assert aigc.edit_calls == []
    assert storage.exists("characters/韩立_01.png")


def test_refinement_failure_falls_back_to_text(storage):
    """Failed image-to-image refinement falls back to text-to-image."""
    registry = CharacterRegistry()
    _sync(registry, _features("韩立", prompt="v1"), storage, FakeAIGC())
    aigc = FakeAIGC(fail_edit=True)
    report = _sync(registry, _features("韩立", prompt="v2"), storage, aigc)
    assert report.generated == ["韩立"]
    assert len(aigc.edit_calls) == 1
    assert aigc.text_calls == ["v2"]


def test_empty_prompt_skips_generation(storage):
    """No concept_art_prompt means no image; the character is still listed."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    report = _sync(registry, _features("路人", prompt="   "), storage, aigc)

    assert report.skipped == ["路人"]
    assert aigc.text_calls == []
    assert registry.asset("路人").image_key == ""
    manifest = json.loads(storage.get("chapter_001/characters/manifest.json"))
    assert manifest["characters"] == [{"name": "路人", "concept_art_notes": ""}]


def test_generation_failure_skips_character(storage):
    """A failed generation is recorded and leaves no cached asset."""
    registry = CharacterRegistry()
    aigc = FakeAIGC(fail_text=True)
    report = _sync(registry, _features("韩立", "南宫婉"), storage, aigc)

    assert report.failed == ["韩立", "南宫婉"]
    assert registry.asset("韩立") is None
    assert not storage.exists("characters/韩立_01.png")
    manifest = json.loads(storage.get("chapter_001/characters/manifest.json"))
    assert manifest["characters"] == []


def test_stems_follow_first_seen_index(storage):
    """File stems use the registry position, which never changes."""
    registry = CharacterRegistry()
    aigc = FakeAIGC()
    _sync(registry, _features("Aria"), storage, aigc)
    _sync(registry, _features("Bob", "Aria"), storage, aigc, folder="chapter_002")
    assert registry.asset("aria").file_stem == "Aria_01"
    assert registry.asset("bob").file_stem == "Bob_02"


# --- Manifests ---

def test_compose_concept_prompt():
    assert compose_concept_prompt(" 卡通风格， ", " hero ") == "卡通风格， hero"
    assert compose_concept_prompt("", "hero") == "hero"


def test_global_manifest(storage):
    """The run manifest lists every character in first-seen order."""
    registry = CharacterRegistry()
    _sync(registry, _features("Aria", "Bob"), storage, FakeAIGC())
    manifest = build_global_manifest(registry)
    assert [c["name"] for c in manifest["characters"]] == ["Aria", "Bob"]
    assert manifest["characters"][0]["global_image_file"] == "Aria_01.png"

    write_global_manifest(registry, storage)
    assert json.loads(storage.get("characters/manifest.json")) == manifest


def test_global_manifest_empty(storage):
    """No characters, no manifest file."""
    assert write_global_manifest(CharacterRegistry(), storage) is None
    assert not storage.exists("characters/manifest.json")


class _CrashingAIGC(FakeAIGC):
    """Fails with a non-pipeline error for one character only."""

    async def generate_from_text(self, prompt):
        if "villain" in prompt:
            self.text_calls.append(prompt)
            raise RuntimeError("content filter tripped")
        return await super().generate_from_text(prompt)


def test_unexpected_error_skips_only_that_character(storage):
    """An arbitrary generation error is recorded and the remaining characters still sync."""
    registry = CharacterRegistry()
    features = _features("魔头", prompt="a villain in black") + _features("韩立")
    report = _sync(registry, features, storage, _CrashingAIGC())

    assert report.failed == ["魔头"]
    assert report.generated == ["韩立"]
    assert registry.asset("魔头") is None
    assert storage.exists("characters/韩立_02.png")
