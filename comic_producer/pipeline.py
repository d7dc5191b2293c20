"""Chapter-by-chapter comic generation with concurrent page and audio work.

Each chapter runs in two phases. The sequential phase synthesizes the
storyboard, updates the character registry and syncs concept art. The
concurrent phase then illustrates every page and voices every text segment;
it only reads the registry.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from comic_producer.artifacts import (
    LocalStorage,
    build_slideshow_pages,
    chapter_folder,
    chapter_slides_key,
    page_image_name,
    segment_audio_name,
    write_artifact,
    write_slideshow,
)
from comic_producer.characters import CharacterRegistry, sync_character_assets, write_global_manifest
from comic_producer.constants import (
    DEFAULT_IMAGE_STYLE,
    DEFAULT_MAX_PANELS_PER_PAGE,
    DEFAULT_NOVEL_TITLE,
    DEFAULT_VOICE_LOCALE,
    MAX_CONCURRENT_AUDIO,
    MAX_CONCURRENT_PAGES,
    SLIDES_FILE,
    STORYBOARD_FILE,
)
from comic_producer.errors import SynthesisError
from comic_producer.illustration import generate_page_image
from comic_producer.models import NovelChapter, SourceTextSegment, StoryboardPage, StoryboardSummary, VoiceStyle
from comic_producer.parser import split_chapters_from_file
from comic_producer.references import collect_page_character_keys, load_reference_images
from comic_producer.storyboard import SummaryRequest, compose_page_image_prompt, summarize_chapter
from comic_producer.tts import builtin_voices, synthesize_segment

logger = logging.getLogger(__name__)


@dataclass
class GeneratorConfig:
    novel_title: str = DEFAULT_NOVEL_TITLE
    image_style: str = DEFAULT_IMAGE_STYLE
    max_panels_per_page: int = DEFAULT_MAX_PANELS_PER_PAGE
    max_concurrent_pages: int = MAX_CONCURRENT_PAGES
    max_concurrent_audio: int = MAX_CONCURRENT_AUDIO
    voice_locale: str = DEFAULT_VOICE_LOCALE


@dataclass
class ChapterResult:
    index: int
    title: str
    folder: str
    pages: int = 0
    images: int = 0
    audio: int = 0
    skipped: bool = False
    error: str = ""


@dataclass
class RunReport:
    chapters: list[ChapterResult] = field(default_factory=list)
    characters: int = 0


def _limiter(limit: int):
    """Semaphore for ``limit`` concurrent tasks; 0 or less means no bound."""
    if limit and limit > 0:
        return asyncio.Semaphore(limit)
    return contextlib.nullcontext()


class _ChapterState:
    """Shared state of one chapter's concurrent phase."""

    def __init__(self, config: GeneratorConfig):
        self.lock = asyncio.Lock()
        self.first_error: str = ""
        self.images = 0
        self.audio = 0
        self.pages = _limiter(config.max_concurrent_pages)
        self.speech = _limiter(config.max_concurrent_audio)

    async def record_error(self, message: str) -> None:
        async with self.lock:
            if not self.first_error:
                self.first_error = message

    async def count(self, attr: str) -> None:
        async with self.lock:
            setattr(self, attr, getattr(self, attr) + 1)


class ComicGenerator:
    """Drive the whole novel-to-comic pipeline for one run."""

    def __init__(self, config: GeneratorConfig, aigc, speech, storage: LocalStorage):
        self.config = config
        self.aigc = aigc
        self.speech = speech
        self.storage = storage
        self.registry = CharacterRegistry()
        self.voices: list[VoiceStyle] = []
        self.slideshows: list[dict] = []

    async def run(self, input_path: str, max_chapters: int = 0) -> RunReport:
        """Process the novel at ``input_path``.

        Raises SegmentationError when the file cannot be read; every other
        failure is confined to its chapter, page or segment.
        """
        chapters = split_chapters_from_file(input_path)
        print(f"Split novel into {len(chapters)} chapters")

        await self.load_voices()

        count = len(chapters)
        if 0 < max_chapters < count:
            count = max_chapters

        report = RunReport()
        for index in range(count):
            result = await self.process_chapter(index, chapters[index])
            if result.error:
                logger.error("Chapter %d: %s", index + 1, result.error)
            report.chapters.append(result)

        try:
            write_global_manifest(self.registry, self.storage)
            write_slideshow(self.storage, SLIDES_FILE, self.config.novel_title, self.slideshows)
        except OSError as e:
            logger.error("Writing run manifests failed: %s", e)

        report.characters = len(self.registry)
        print(f"\nTracked {report.characters} unique characters across chapters")
        print(f"Processed {count} chapters, output saved to: {self.storage.root}")
        return report

    async def load_voices(self) -> list[VoiceStyle]:
        print("Fetching available TTS voices...")
        try:
            self.voices = await self.speech.list_voices(self.config.voice_locale)
        except Exception as e:
            logger.warning("Could not list voices (%s), using built-in voice pool", e)
            self.voices = []
        if not self.voices:
            self.voices = builtin_voices()
        print(f"Loaded {len(self.voices)} available voices")
        return self.voices

    async def process_chapter(self, index: int, chapter: NovelChapter) -> ChapterResult:
        folder = chapter_folder(index)
        result = ChapterResult(index=index, title=chapter.title, folder=folder)
        print(f"\n=== Processing Chapter {index + 1}: {chapter.title} ===")

        print("Generating storyboard...")
        request = SummaryRequest(
            novel_title=self.config.novel_title,
            chapter_title=chapter.title,
            content=chapter.content,
            available_voice_styles=self.voices,
            character_features=self.registry.ordered_features(),
            max_panels_per_page=self.config.max_panels_per_page,
        )
        try:
            summary = await summarize_chapter(self.aigc, request)
        except SynthesisError as e:
            result.skipped = True
            result.error = str(e)
            return result

        # Sequential phase: the registry must be final before any page task reads it
        self.registry.update(summary.character_features)
        await sync_character_assets(
            self.registry, summary.character_features, self.storage, self.aigc,
            folder, self.config.image_style,
        )
        try:
            write_artifact(self.storage, f"{folder}/{STORYBOARD_FILE}", summary.model_dump())
            print(f"Saved storyboard to {folder}/{STORYBOARD_FILE}")
        except OSError as e:
            logger.error("Saving storyboard for %s failed: %s", folder, e)

        state = await self.generate_chapter_pages(folder, summary)
        result.pages = len(summary.storyboard_pages)
        result.images = state.images
        result.audio = state.audio
        result.error = state.first_error

        try:
            slides = build_slideshow_pages(self.storage, folder, summary)
            write_slideshow(
                self.storage, chapter_slides_key(folder), self.config.novel_title,
                [{"title": chapter.title, "slides": slides}],
            )
            self.slideshows.append({
                "title": chapter.title,
                "folder": folder,
                "slides": build_slideshow_pages(self.storage, folder, summary, prefix=folder),
            })
        except OSError as e:
            logger.error("Writing slideshow for %s failed: %s", folder, e)

        print(f"Chapter {index + 1} completed!")
        return result

    async def generate_chapter_pages(self, folder: str, summary: StoryboardSummary) -> _ChapterState:
        """Illustrate and voice every page concurrently, waiting for all of them."""
        total = len(summary.storyboard_pages)
        print(f"Processing {total} storyboard pages...")
        state = _ChapterState(self.config)
        await asyncio.gather(*(
            self._page_task(state, folder, summary, page_index, page)
            for page_index, page in enumerate(summary.storyboard_pages)
        ))
        return state

    async def _page_task(self, state, folder, summary, page_index: int, page: StoryboardPage) -> None:
        label = f"page {page_index + 1}"
        async with state.pages:
            print(f"  [Page {page_index + 1}/{len(summary.storyboard_pages)}] Generating image...")
            prompt = compose_page_image_prompt(self.config.image_style, page)
            keys = collect_page_character_keys(page, summary.character_features)
            references, read_errors = load_reference_images(keys, self.registry, self.storage)
            for message in read_errors:
                logger.warning("%s: %s", label, message)
                await state.record_error(message)

            try:
                image = await generate_page_image(self.aigc, prompt, references, label)
                self.storage.put(f"{folder}/{page_image_name(page_index)}", image.data)
                await state.count("images")
                print(f"    Saved image for {label} ({image.mode})")
            except Exception as e:
                logger.error("Image for %s failed: %s", label, e)
                await state.record_error(f"generating image for {label}: {e}")

        await asyncio.gather(*(
            self._audio_task(state, folder, page_index, panel_index, segment_index, segment)
            for panel_index, panel in enumerate(page.panels)
            for segment_index, segment in enumerate(panel.source_text_segments)
        ))

    async def _audio_task(
        self, state, folder, page_index: int, panel_index: int, segment_index: int,
        segment: SourceTextSegment,
    ) -> None:
        label = f"page {page_index + 1} panel {panel_index + 1} segment {segment_index + 1}"
        async with state.speech:
            try:
                audio = await synthesize_segment(self.speech, segment)
                self.storage.put(
                    f"{folder}/{segment_audio_name(page_index, panel_index, segment_index)}",
                    audio.data,
                )
            except Exception as e:
                logger.error("Audio for %s failed: %s", label, e)
                await state.record_error(f"generating audio for {label}: {e}")
                return
        await state.count("audio")
