"""Split raw novel text into chapters on heading lines."""

import re

from comic_producer.constants import ZERO_WIDTH_CHARS
from comic_producer.errors import SegmentationError
from comic_producer.models import NovelChapter

# Chinese chapter headings: 第 + numerals/digits + marker, e.g. "第一章 山边小村", "第12回"
CHAPTER_HEADING_RE = re.compile(r"^第[零〇一二三四五六七八九十百千万0-9]+[章回节卷].*$")

_INVISIBLE = str.maketrans("", "", ZERO_WIDTH_CHARS)


def normalize_heading_candidate(line: str) -> str:
    """Trim a line and drop zero-width characters that wrap headings in scraped text."""
    return line.strip().translate(_INVISIBLE).strip()


def is_chapter_heading(line: str) -> bool:
    return bool(CHAPTER_HEADING_RE.match(normalize_heading_candidate(line)))


def split_chapters(text: str) -> list[NovelChapter]:
    """Split novel text into ordered chapters.

    Text before the first heading becomes an untitled preface chapter, but
    only when it has non-blank content. Each chapter's content keeps its
    lines verbatim apart from trimming leading/trailing newlines.
    """
    chapters = []
    title = ""
    buffer: list[str] = []

    def flush():
        if not title and not buffer:
            return
        content = "\n".join(buffer).strip("\n")
        chapters.append(NovelChapter(title=title, content=content))

    for line in text.replace("\r\n", "\n").split("\n"):
        if is_chapter_heading(line):
            flush()
            title = normalize_heading_candidate(line)
            buffer = []
            continue
        # Blank lines before any heading never start a preface
        if not title and not buffer and not line.strip():
            continue
        buffer.append(line)

    flush()
    return chapters


def split_chapters_from_file(path: str) -> list[NovelChapter]:
    """Read a UTF-8 novel file and split it into chapters."""
    try:
        with open(path, encoding="utf-8-sig") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise SegmentationError(f"cannot read novel file {path}: {e}") from e
    return split_chapters(text)
