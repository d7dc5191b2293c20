"""Global character registry and the concept-art asset cache.

The registry is owned by one generator run and is only mutated while a
chapter is processed sequentially; concurrent page tasks read it as-is.
"""

import json
import logging
from dataclasses import dataclass, field

from comic_producer.constants import CHARACTERS_DIR, MANIFEST_FILE
from comic_producer.errors import AssetError
from comic_producer.models import CharacterAsset, CharacterFeature

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """Registry key for a character name: trimmed and lowercased."""
    return name.strip().lower()


def sanitize_file_stem(name: str, index: int) -> str:
    """Stable file stem from a display name and 0-based first-seen index.

    "Han Li", 0 → "Han_Li_01"; letters and digits of any script are kept.
    """
    cleaned = "".join(ch if ch.isalpha() or ch.isdigit() else "_" for ch in name.strip()).strip("_")
    if not cleaned:
        return f"character_{index + 1:02d}"
    if index >= 0:
        return f"{cleaned}_{index + 1:02d}"
    return cleaned


class CharacterRegistry:
    """Insertion-ordered character features plus their cached assets."""

    def __init__(self):
        self.order: list[str] = []
        self.features: dict[str, CharacterFeature] = {}
        self.assets: dict[str, CharacterAsset] = {}

    def __len__(self):
        return len(self.order)

    def __contains__(self, key):
        return key in self.features

    def index_of(self, key: str) -> int:
        try:
            return self.order.index(key)
        except ValueError:
            return -1

    def update(self, features: list[CharacterFeature]) -> None:
        """Record a chapter's character features. First appearance fixes the position."""
        for feature in features:
            key = normalize_name(feature.basic.name)
            if not key:
                logger.warning("Skipping unnamed character in storyboard output")
                continue
            if key not in self.features:
                self.order.append(key)
            self.features[key] = feature

    def ordered_features(self) -> list[CharacterFeature]:
        """Every known feature in first-seen order; the roster fed to the next chapter."""
        return [self.features[key] for key in self.order if key in self.features]

    def asset(self, key: str) -> CharacterAsset | None:
        return self.assets.get(key)


@dataclass
class SyncReport:
    generated: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    manifest: dict = field(default_factory=lambda: {"characters": []})


def compose_concept_prompt(image_style: str, prompt: str) -> str:
    style = image_style.strip()
    prompt = prompt.strip()
    return f"{style} {prompt}".strip() if style else prompt


def _needs_regeneration(asset: CharacterAsset, prompt: str, full_prompt: str, storage) -> bool:
    if not asset.prompt_used.strip():
        return True
    if asset.feature.concept_art_prompt.strip() != prompt or asset.prompt_used.strip() != full_prompt:
        return True
    return not storage.exists(asset.image_key)


async def _render_concept_art(aigc, storage, asset: CharacterAsset, full_prompt: str, label: str) -> bytes:
    """Refine the prior image when one exists, otherwise draw from scratch."""
    if asset.image_key:
        try:
            base = storage.get(asset.image_key)
        except OSError as e:
            logger.warning("%s: cannot read existing concept art (%s), using text-to-image", label, e)
        else:
            print(f"  {label} Refining concept art via image-to-image")
            try:
                return await aigc.generate_from_image(base, full_prompt)
            except Exception as e:
                logger.warning("%s: image-to-image refinement failed (%s), using text-to-image", label, e)
    else:
        print(f"  {label} Generating concept art from scratch")
    try:
        return await aigc.generate_from_text(full_prompt)
    except Exception as e:
        raise AssetError(f"text-to-image failed: {e}") from e


async def sync_character_assets(
    registry: CharacterRegistry,
    features: list[CharacterFeature],
    storage,
    aigc,
    chapter_folder: str,
    image_style: str = "",
) -> SyncReport:
    """Bring concept art for a chapter's characters up to date.

    Art is regenerated only when the character has none yet, its prompt
    changed, or the cached file disappeared. Results are written globally
    under characters/ and copied into the chapter folder; a failure for one
    character is logged and does not stop the others.
    """
    report = SyncReport()
    chapter_dir = f"{chapter_folder}/{CHARACTERS_DIR}"
    print(f"Syncing {len(features)} character concept images...")

    for feature in features:
        name = feature.basic.name
        key = normalize_name(name)
        if not key:
            logger.warning("Skipping character with empty name in concept art stage")
            continue

        index = registry.index_of(key)
        if index < 0:
            index = len(registry.order)
        label = f"[Character {index + 1}] {name}:"

        asset = registry.assets.get(key) or CharacterAsset(feature=feature)
        file_stem = asset.file_stem or sanitize_file_stem(name, index)

        prompt = feature.concept_art_prompt.strip()
        if not prompt:
            print(f"  {label} no concept_art_prompt, skipping image generation")
            asset.feature = feature
            asset.file_stem = file_stem
            registry.assets[key] = asset
            report.skipped.append(name)
            report.manifest["characters"].append({"name": name, "concept_art_notes": feature.concept_art_notes})
            continue

        full_prompt = compose_concept_prompt(image_style, prompt)
        image_key = f"{CHARACTERS_DIR}/{file_stem}.png"
        prompt_key = f"{CHARACTERS_DIR}/{file_stem}_prompt.txt"

        try:
            if _needs_regeneration(asset, prompt, full_prompt, storage):
                image = await _render_concept_art(aigc, storage, asset, full_prompt, label)
                storage.put(image_key, image)
                report.generated.append(name)
            else:
                print(f"  {label} Reusing existing concept art")
                image_key = asset.image_key
                report.reused.append(name)
            storage.put_text(prompt_key, full_prompt + "\n")
        except Exception as e:
            logger.error("%s concept art failed: %s", label, e)
            report.failed.append(name)
            continue

        asset.feature = feature
        asset.file_stem = file_stem
        asset.image_key = image_key
        asset.prompt_used = full_prompt
        registry.assets[key] = asset

        chapter_image_key = f"{chapter_dir}/{file_stem}.png"
        chapter_prompt_key = f"{chapter_dir}/{file_stem}_prompt.txt"
        try:
            storage.copy(image_key, chapter_image_key)
            storage.put_text(chapter_prompt_key, full_prompt + "\n")
        except OSError as e:
            logger.error("%s copying concept art to %s failed: %s", label, chapter_dir, e)

        report.manifest["characters"].append({
            "name": name,
            "image_file": f"{file_stem}.png",
            "prompt_file": f"{file_stem}_prompt.txt",
            "global_image_file": f"{file_stem}.png",
            "global_prompt": full_prompt,
            "concept_art_notes": feature.concept_art_notes,
        })

    try:
        storage.put_text(
            f"{chapter_dir}/{MANIFEST_FILE}",
            json.dumps(report.manifest, ensure_ascii=False, indent=2),
        )
    except OSError as e:
        logger.error("Writing character manifest for %s failed: %s", chapter_folder, e)
    return report


def build_global_manifest(registry: CharacterRegistry) -> dict:
    """Manifest of every character seen in the run, in first-seen order."""
    characters = []
    for key in registry.order:
        feature = registry.features.get(key)
        if feature is None:
            continue
        entry = {"name": feature.basic.name, "concept_art_notes": feature.concept_art_notes}
        asset = registry.assets.get(key)
        if asset is not None:
            if asset.image_key:
                entry["global_image_file"] = asset.image_key.rsplit("/", 1)[-1]
                entry["global_prompt"] = asset.prompt_used
            if asset.file_stem:
                entry["prompt_file"] = f"{asset.file_stem}_prompt.txt"
        characters.append(entry)
    return {"characters": characters}


def write_global_manifest(registry: CharacterRegistry, storage) -> str | None:
    manifest = build_global_manifest(registry)
    if not manifest["characters"]:
        return None
    return storage.put_text(
        f"{CHARACTERS_DIR}/{MANIFEST_FILE}",
        json.dumps(manifest, ensure_ascii=False, indent=2),
    )
