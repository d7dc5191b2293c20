"""Storyboard synthesis: prompt building, schema, response parsing and repair."""

import json
import logging
from dataclasses import asdict, dataclass, field

from json_repair import repair_json
from pydantic import ValidationError

from comic_producer.constants import (
    DEFAULT_MAX_PANELS_PER_PAGE,
    MIN_PANELS_PER_PAGE,
    SUMMARY_ATTEMPTS,
)
from comic_producer.errors import StoryboardParseError, SynthesisError
from comic_producer.models import (
    CharacterFeature,
    StoryboardPage,
    StoryboardSummary,
    VoiceStyle,
)

logger = logging.getLogger(__name__)


@dataclass
class SummaryRequest:
    novel_title: str
    chapter_title: str
    content: str
    available_voice_styles: list[VoiceStyle] = field(default_factory=list)
    character_features: list[CharacterFeature] = field(default_factory=list)
    max_panels_per_page: int = DEFAULT_MAX_PANELS_PER_PAGE


def panels_limit(limit: int) -> int:
    """Return the panel limit, falling back to the default for values below one."""
    if limit < MIN_PANELS_PER_PAGE:
        return DEFAULT_MAX_PANELS_PER_PAGE
    return limit


def build_storyboard_schema(max_panels_per_page: int) -> dict:
    """JSON schema of the expected response, with the panel limit filled in."""
    schema = StoryboardSummary.model_json_schema()
    panels = schema["$defs"]["StoryboardPage"]["properties"]["panels"]
    panels["minItems"] = MIN_PANELS_PER_PAGE
    panels["maxItems"] = max_panels_per_page
    panels["description"] = f"Panels on the page, {MIN_PANELS_PER_PAGE} to {max_panels_per_page}."
    return schema


def _voice_styles_json(items: list[VoiceStyle]) -> str:
    if not items:
        return "[]"
    return json.dumps([asdict(item) for item in items], ensure_ascii=False, indent=2)


def _character_features_json(items: list[CharacterFeature]) -> str:
    if not items:
        return "[]"
    return json.dumps([item.model_dump() for item in items], ensure_ascii=False, indent=2)


def build_summary_prompt(request: SummaryRequest, max_panels_per_page: int | None = None) -> str:
    """Build the system instruction for one chapter.

    The prior character roster is embedded so the model keeps designs stable;
    the service has no memory between chapters.
    """
    limit = max_panels_per_page or panels_limit(request.max_panels_per_page)
    schema_json = json.dumps(build_storyboard_schema(limit), ensure_ascii=False, indent=2)
    return f"""
你是一个擅长从小说生成漫画分镜和配音选择的设计师，后续用户将给你每一章的小说原文，你需要按指定的输出格式进行输出。

当前小说标题为：《{request.novel_title}》，章节标题为：《{request.chapter_title}》。如果你熟悉该小说的背景设定和角色人设，也可以结合已有知识进行参考。

配音选择时，请从以下语音风格列表中选择合适的 voice_name 与 voice_type：

{_voice_styles_json(request.available_voice_styles)}

以下为已知的角色画像配置（来自之前的章节，若为空表示角色均为初次出场）：

{_character_features_json(request.character_features)}

请根据小说内容和情感，将章节拆分成多页，每一页包含 1 至 {limit} 个分格（panel）。保持页面之间的剧情推进自然，必要时增加页数，避免把大量剧情挤在同一页。为每个分格拆分语音文本片段，旁白与对白分开，并为每个片段选择语音风格和语速比例（1.0 为正常语速）。
每个文本片段请在 character_names 中列出涉及的角色名（与 character_features 中的 basic.name 保持一致），或在 character_refs 中给出这些角色在 character_features 中的下标（从 0 开始）。

图像生成以“页”为单位，请：
1. 为每页提供 layout_hint，描述分格在页面上的排列方式（如 2x2 grid）。
2. 为每个分格提供 visual_prompt，详细描述构图、角色姿态、表情、关键道具与背景。
3. 在 image_prompt 中总结整页的整体风格与氛围，说明应绘制为多分格漫画页面，分格之间以细边框分隔。
4. layout_hint、visual_prompt 与 image_prompt 必须使用英语，不得出现中文字符，也不要让模型在图像中绘制文字。

在 character_features 中，请：
1. 覆盖本章出现的每位角色，并输出英文的 concept_art_prompt，可直接用于角色原画的文生图。
2. 已有角色请继承其既有视觉特征，仅在 concept_art_notes 中注明微调要点，保持核心设计一致。
3. 新角色请在 concept_art_notes 中注明 "new character"。
4. concept_art_prompt 应聚焦造型、服装、配色、光线与姿态，避免引导模型生成文字。
5. storyboard_pages 中对角色的描写需与对应的 concept_art_prompt 一致。

请严格按照以下 JSON Schema 仅输出一个合法的 JSON 对象，不要包含任何说明文字或代码块标记：

{schema_json}
"""


def parse_storyboard(raw: str, max_panels_per_page: int = DEFAULT_MAX_PANELS_PER_PAGE) -> StoryboardSummary:
    """Parse a model response into a validated storyboard.

    Falls back to a single json-repair pass when the text is not valid JSON.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Storyboard response is not valid JSON, attempting repair")
        repaired = repair_json(raw or "", return_objects=True)
        if not isinstance(repaired, dict) or not repaired:
            raise StoryboardParseError("storyboard response could not be repaired into a JSON object")
        data = repaired

    try:
        return StoryboardSummary.model_validate(
            data, context={"max_panels_per_page": panels_limit(max_panels_per_page)},
        )
    except ValidationError as e:
        raise StoryboardParseError(f"storyboard does not match schema: {e}") from e


async def summarize_chapter(aigc, request: SummaryRequest, attempts: int = SUMMARY_ATTEMPTS) -> StoryboardSummary:
    """Ask the language model for a chapter storyboard, retrying any failure.

    Raises SynthesisError once every attempt has failed.
    """
    limit = panels_limit(request.max_panels_per_page)
    prompt = build_summary_prompt(request, limit)
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            raw = await aigc.summarize(prompt, request.content)
            logger.debug("Storyboard response for %s: %s", request.chapter_title, raw)
            return parse_storyboard(raw, limit)
        except Exception as e:
            last_error = e
            logger.warning(
                "Storyboard attempt %d/%d for %r failed: %s",
                attempt, attempts, request.chapter_title, e,
            )
    raise SynthesisError(
        f"storyboard for chapter {request.chapter_title!r} failed after {attempts} attempts: {last_error}"
    )


def compose_page_image_prompt(style_prefix: str, page: StoryboardPage) -> str:
    """Merge the style, page prompt, layout and per-panel visuals into one prompt."""
    parts = []
    for text in (style_prefix.strip(), page.image_prompt.strip()):
        if text:
            parts.append(text)

    layout = page.layout_hint.strip() or f"{len(page.panels)} panels comic layout"
    parts.append(f"Comic page layout: {layout} with clear gutters and panel borders.")

    for idx, panel in enumerate(page.panels, start=1):
        visual = panel.visual_prompt.strip() or panel.panel_summary.strip()
        if visual:
            parts.append(f"Panel {idx}: {visual}")

    parts.append(
        "Use English-only descriptive language. No Chinese characters or typography. "
        "Avoid rendering any on-screen text."
    )
    return " ".join(parts)
