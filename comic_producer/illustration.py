"""Page illustration with reference-conditioned generation and text-only fallback."""

import asyncio
import logging
from dataclasses import dataclass

from comic_producer.errors import PageImageError
from comic_producer.references import merge_images_side_by_side

logger = logging.getLogger(__name__)


@dataclass
class PageImage:
    data: bytes
    mode: str    # "text", "single", "composite" or "text-fallback"


async def _text_only(aigc, prompt: str, mode: str) -> PageImage:
    try:
        return PageImage(data=await aigc.generate_from_text(prompt), mode=mode)
    except Exception as e:
        raise PageImageError(f"text-to-image failed: {e}") from e


async def generate_page_image(aigc, prompt: str, references: list[bytes], label: str = "page") -> PageImage:
    """Generate one page image from its prompt and character references.

    No references → text only. One → conditioned on it. Several → conditioned
    on their side-by-side composite. Any failure in a conditioned tier falls
    back to text only; PageImageError is raised when that fails too.
    """
    if not references:
        return await _text_only(aigc, prompt, "text")

    if len(references) == 1:
        print(f"    Using single reference image for {label}")
        try:
            return PageImage(data=await aigc.generate_from_image(references[0], prompt), mode="single")
        except Exception as e:
            logger.warning("Image-to-image failed for %s (%s), falling back to text-to-image", label, e)
            return await _text_only(aigc, prompt, "text-fallback")

    try:
        composite = await asyncio.to_thread(merge_images_side_by_side, references)
    except Exception as e:
        logger.warning("Merging %d reference images for %s failed (%s)", len(references), label, e)
        return await _text_only(aigc, prompt, "text-fallback")

    print(f"    Merged {len(references)} reference images for {label}")
    try:
        return PageImage(data=await aigc.generate_from_image(composite, prompt), mode="composite")
    except Exception as e:
        logger.warning("Merged image-to-image failed for %s (%s), falling back to text-to-image", label, e)
        return await _text_only(aigc, prompt, "text-fallback")
