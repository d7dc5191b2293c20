"""Pick character reference images for a page and merge them into one canvas."""

import io
import logging

from PIL import Image, UnidentifiedImageError

from comic_producer.characters import CharacterRegistry, normalize_name
from comic_producer.errors import CompositeError
from comic_producer.models import CharacterFeature, StoryboardPage

logger = logging.getLogger(__name__)


def collect_page_character_keys(page: StoryboardPage, chapter_features: list[CharacterFeature]) -> list[str]:
    """Registry keys of every character named or referenced on the page.

    Sorted so the composite layout is identical across runs.
    """
    seen = set()
    for panel in page.panels:
        for segment in panel.source_text_segments:
            names = list(segment.character_names)
            for idx in segment.character_refs:
                if 0 <= idx < len(chapter_features):
                    names.append(chapter_features[idx].basic.name)
            for name in names:
                key = normalize_name(name)
                if key:
                    seen.add(key)
    return sorted(seen)


def load_reference_images(
    keys: list[str],
    registry: CharacterRegistry,
    storage,
) -> tuple[list[bytes], list[str]]:
    """Read cached concept art for ``keys``.

    Characters without cached art are dropped silently; unreadable files are
    dropped and described in the returned error list.
    """
    images = []
    errors = []
    for key in keys:
        asset = registry.asset(key)
        if asset is None or not asset.image_key:
            continue
        try:
            images.append(storage.get(asset.image_key))
        except OSError as e:
            errors.append(f"reading reference image for {asset.feature.basic.name}: {e}")
    return images, errors


def merge_images_side_by_side(images: list[bytes]) -> bytes:
    """Place images left to right, top-aligned and unscaled, on one PNG canvas.

    Width is the sum of widths and height the tallest image; uncovered
    area stays transparent.
    """
    if not images:
        raise CompositeError("no reference images to merge")

    decoded = []
    for idx, data in enumerate(images, start=1):
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise CompositeError(f"decoding reference image {idx}: {e}") from e
        decoded.append(img.convert("RGBA"))

    width = sum(img.width for img in decoded)
    height = max(img.height for img in decoded)
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    offset = 0
    for img in decoded:
        canvas.paste(img, (offset, 0))
        offset += img.width

    buf = io.BytesIO()
    canvas.save(buf, format="PNG")
    return buf.getvalue()
