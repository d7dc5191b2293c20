"""CLI interface with subcommand routing."""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from comic_producer.artifacts import LocalStorage, slug_from_path
from comic_producer.constants import (
    DEFAULT_IMAGE_STYLE,
    DEFAULT_MAX_PANELS_PER_PAGE,
    DEFAULT_NOVEL_TITLE,
    DEFAULT_VOICE_LOCALE,
    MAX_CONCURRENT_AUDIO,
    MAX_CONCURRENT_PAGES,
    OUTPUT_DIR,
    VERSION,
)
from comic_producer.errors import ComicProducerError, SegmentationError
from comic_producer.parser import split_chapters_from_file
from comic_producer.pipeline import ComicGenerator, GeneratorConfig
from comic_producer.services import AIGCClient, ServiceConfig
from comic_producer.tts import EdgeSpeechClient, builtin_voices


def _require_file(path: str) -> None:
    if not os.path.exists(path):
        print(f"Error: File not found: {path}", file=sys.stderr)
        raise SystemExit(1)


def cmd_run(args):
    """Generate a comic from a novel file."""
    _require_file(args.file)

    output_dir = args.output or os.path.join(OUTPUT_DIR, slug_from_path(args.file))
    os.makedirs(output_dir, exist_ok=True)

    config = GeneratorConfig(
        novel_title=args.title,
        image_style=args.image_style,
        max_panels_per_page=args.max_panels,
        max_concurrent_pages=args.max_pages,
        max_concurrent_audio=args.max_audio,
        voice_locale=args.voice_locale,
    )
    generator = ComicGenerator(
        config,
        aigc=AIGCClient(ServiceConfig.from_env()),
        speech=EdgeSpeechClient(),
        storage=LocalStorage(output_dir),
    )
    try:
        report = asyncio.run(generator.run(args.file, max_chapters=args.max_chapters))
    except SegmentationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    failed = [c for c in report.chapters if c.skipped]
    if failed:
        print(f"Skipped {len(failed)} chapter(s): {', '.join(c.title or c.folder for c in failed)}")
    print(f"Done: {output_dir}")


def cmd_chapters(args):
    """List detected chapters."""
    _require_file(args.file)
    try:
        chapters = split_chapters_from_file(args.file)
    except SegmentationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    if not chapters:
        print("No chapters found.")
        return
    print(f"Chapters ({len(chapters)}):")
    for i, chapter in enumerate(chapters, start=1):
        title = chapter.title or "(preface)"
        print(f"  {i:>3}. {title}  [{len(chapter.content)} chars]")


def cmd_voices(args):
    """List available voices."""
    try:
        voices = asyncio.run(EdgeSpeechClient().list_voices(args.locale))
    except ComicProducerError as e:
        print(f"Warning: could not fetch voices ({e}), showing built-in pool", file=sys.stderr)
        voices = builtin_voices()
    filter_str = args.filter.lower() if args.filter else None
    if filter_str:
        voices = [v for v in voices if filter_str in v.voice_type.lower() or filter_str in v.voice_name.lower()]
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v.voice_type:<36} {v.voice_name}")


def main():
    """CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="comic-producer",
        description="Comic Producer: turn a novel into an illustrated, narrated comic",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run
    run_parser = subparsers.add_parser("run", help="Generate a comic from a novel file")
    run_parser.add_argument("file", help="Path to the novel text file")
    run_parser.add_argument("-o", "--output", help="Output directory (default: output/<slug>)")
    run_parser.add_argument("--title", default=DEFAULT_NOVEL_TITLE, help="Novel title")
    run_parser.add_argument("--max-chapters", type=int, default=0, help="Chapters to process (0 for all)")
    run_parser.add_argument("--image-style", default=DEFAULT_IMAGE_STYLE, help="Style prefix for every image prompt")
    run_parser.add_argument("--max-panels", type=int, default=DEFAULT_MAX_PANELS_PER_PAGE, help="Max panels per page")
    run_parser.add_argument("--max-pages", type=int, default=MAX_CONCURRENT_PAGES,
                            help="Concurrent page tasks (0 for unbounded)")
    run_parser.add_argument("--max-audio", type=int, default=MAX_CONCURRENT_AUDIO,
                            help="Concurrent audio tasks (0 for unbounded)")
    run_parser.add_argument("--voice-locale", default=DEFAULT_VOICE_LOCALE, help="Voice locale prefix, e.g. zh-")
    run_parser.set_defaults(func=cmd_run)

    # chapters
    chapters_parser = subparsers.add_parser("chapters", help="List chapters detected in a novel file")
    chapters_parser.add_argument("file", help="Path to the novel text file")
    chapters_parser.set_defaults(func=cmd_chapters)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.add_argument("--locale", default=DEFAULT_VOICE_LOCALE, help="Locale prefix, e.g. zh- or en-")
    voices_parser.set_defaults(func=cmd_voices)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
