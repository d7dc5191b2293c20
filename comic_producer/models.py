"""Data models for comic production.

Plain dataclasses for pipeline-owned state; pydantic models for the storyboard
contract returned by the language model, so the same classes both validate the
response and produce the JSON schema embedded in the prompt.
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from comic_producer.constants import DEFAULT_MAX_PANELS_PER_PAGE


@dataclass(frozen=True)
class NovelChapter:
    title: str         # heading line, "" for an untitled preface
    content: str


@dataclass
class VoiceStyle:
    voice_name: str    # human-readable description shown to the model
    voice_type: str    # identifier passed to the speech service


class CharacterBasicProfile(BaseModel):
    name: str
    gender: str
    age: str


class CharacterVisualProfile(BaseModel):
    hair: str
    habitual_expression: str
    skin_tone: str
    face_shape: str


class CharacterTTSProfile(BaseModel):
    voice_name: str
    voice_type: str
    speed_ratio: float


class CharacterFeature(BaseModel):
    basic: CharacterBasicProfile
    visual: CharacterVisualProfile
    tts: CharacterTTSProfile
    concept_art_prompt: str = Field(
        description="English prompt for the character concept art, kept stable across pages.",
    )
    concept_art_notes: str = Field(
        default="",
        description="Differences from the previous chapter, or 'new character' on first appearance.",
    )
    comment: str = ""


class SourceTextSegment(BaseModel):
    text: str = Field(description="Original text spoken or narrated for this segment.")
    voice_name: str = Field(description="Voice style chosen from the catalogue.")
    voice_type: str = Field(description="Voice identifier chosen from the catalogue.")
    speed_ratio: float = Field(description="1.0 is normal speed, >1.0 faster, <1.0 slower.")
    is_narration: bool = Field(default=False, description="True for narration, false for dialogue.")
    character_names: list[str] = Field(
        default_factory=list,
        description="Names of the characters that appear in or speak this segment.",
    )
    character_refs: list[int] = Field(
        default_factory=list,
        description="0-based indexes into character_features for the characters in this segment.",
    )


class StoryboardPanel(BaseModel):
    source_text_segments: list[SourceTextSegment] = Field(
        min_length=1,
        description="Voice segments for the panel; split narration and dialogue into separate segments.",
    )
    panel_summary: str = Field(default="", description="Optional summary of the panel's plot beat.")
    visual_prompt: str = Field(
        description="English description of composition, poses, expressions, props and background.",
    )


class StoryboardPage(BaseModel):
    panels: list[StoryboardPanel] = Field(min_length=1)
    layout_hint: str = Field(description="Panel arrangement, e.g. '2x2 grid' or '3-panel vertical strip'.")
    image_prompt: str = Field(description="English prompt for the whole page image, unifying its style.")
    page_summary: str = Field(default="", description="Optional summary of the page's rhythm or focus.")

    @field_validator("panels")
    @classmethod
    def _limit_panels(cls, panels, info: ValidationInfo):
        limit = DEFAULT_MAX_PANELS_PER_PAGE
        if info.context and info.context.get("max_panels_per_page"):
            limit = info.context["max_panels_per_page"]
        if len(panels) > limit:
            raise ValueError(f"page has {len(panels)} panels, at most {limit} allowed")
        return panels


class StoryboardSummary(BaseModel):
    storyboard_pages: list[StoryboardPage] = Field(min_length=1)
    character_features: list[CharacterFeature] = Field(default_factory=list)


@dataclass
class CharacterAsset:
    feature: CharacterFeature
    file_stem: str = ""
    image_key: str = ""      # storage key of the cached concept art, "" until generated
    prompt_used: str = ""    # full prompt that produced image_key
