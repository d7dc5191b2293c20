"""Speech synthesis via edge-tts, with rate-limit-aware retry per segment."""

import asyncio
import logging
from dataclasses import dataclass, field

import edge_tts

from comic_producer.constants import (
    NARRATOR_VOICE,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
    VOICE_POOL,
)
from comic_producer.errors import AudioError, SpeechError, classify_service_error, is_rate_limited
from comic_producer.models import SourceTextSegment, VoiceStyle

logger = logging.getLogger(__name__)


def speed_to_rate(speed_ratio: float) -> str:
    """Convert a speed ratio (1.0 = normal) to an edge-tts rate like "+20%"."""
    if not speed_ratio or speed_ratio <= 0:
        speed_ratio = 1.0
    percent = round((speed_ratio - 1.0) * 100)
    return f"{percent:+d}%"


def builtin_voices() -> list[VoiceStyle]:
    return [VoiceStyle(voice_name=name, voice_type=voice) for name, voice in VOICE_POOL]


class EdgeSpeechClient:
    """Speech service backed by edge-tts."""

    async def synthesize(self, text: str, voice_type: str, speed_ratio: float = 1.0) -> bytes:
        """Return MP3 bytes for ``text``.

        Upstream failures are re-raised as RateLimitError or SpeechError.
        """
        communicate = edge_tts.Communicate(text, voice_type or NARRATOR_VOICE, rate=speed_to_rate(speed_ratio))
        audio = bytearray()
        try:
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio.extend(chunk["data"])
        except Exception as e:
            raise classify_service_error(e, SpeechError) from e
        return bytes(audio)

    async def list_voices(self, locale_prefix: str = "") -> list[VoiceStyle]:
        """List available voices, optionally filtered by locale prefix (e.g. "zh-")."""
        try:
            voices = await edge_tts.list_voices()
        except Exception as e:
            raise classify_service_error(e, SpeechError) from e
        styles = []
        for voice in voices:
            locale = voice.get("Locale", "")
            if locale_prefix and not locale.startswith(locale_prefix):
                continue
            short_name = voice["ShortName"]
            gender = voice.get("Gender", "")
            label = voice.get("FriendlyName") or short_name
            styles.append(VoiceStyle(
                voice_name=f"{label} ({gender})" if gender else label,
                voice_type=short_name,
            ))
        return styles


@dataclass
class SynthesizedAudio:
    data: bytes
    retry_delays: list[float] = field(default_factory=list)


async def synthesize_segment(
    speech,
    segment: SourceTextSegment,
    attempts: int = TTS_RETRY_COUNT,
    base_delay: float = TTS_RETRY_BASE_DELAY,
) -> SynthesizedAudio:
    """Synthesize one text segment.

    Only rate limiting is retried, waiting base_delay * attempt seconds
    between tries. A RateLimitError or any error carrying a 429 signature
    counts as rate limiting. Any other failure, including an empty clip,
    raises AudioError immediately.
    """
    delays = []
    for attempt in range(1, attempts + 1):
        try:
            data = await speech.synthesize(segment.text, segment.voice_type, segment.speed_ratio)
        except Exception as e:
            if not is_rate_limited(e):
                raise AudioError(str(e)) from e
            if attempt == attempts:
                raise AudioError(f"rate limited after {attempts} attempts: {e}") from e
            delay = base_delay * attempt
            logger.info("Rate limited synthesizing %r, retrying in %.1fs", segment.text[:30], delay)
            delays.append(delay)
            await asyncio.sleep(delay)
            continue

        # 0-byte output counts as failure
        if not data:
            raise AudioError(f"speech service returned no audio for: {segment.text[:50]}")
        return SynthesizedAudio(data=data, retry_delays=delays)

    raise AudioError("no synthesis attempts were made")
