"""Exception taxonomy for the comic generation pipeline."""


class ComicProducerError(Exception):
    """Base class for every error raised by comic_producer."""


class SegmentationError(ComicProducerError):
    """The novel could not be read or split. Fatal to the whole run."""


class SynthesisError(ComicProducerError):
    """Storyboard synthesis failed after all attempts. The chapter is skipped."""


class StoryboardParseError(SynthesisError):
    """The language model response is not a valid storyboard, even after repair."""


class AssetError(ComicProducerError):
    """A character concept-art step failed. Only that character is skipped."""


class CompositeError(ComicProducerError):
    """Reference images could not be merged into one canvas."""


class PageImageError(ComicProducerError):
    """Every tier of the page illustration fallback chain failed."""


class AudioError(ComicProducerError):
    """A text segment could not be turned into speech."""


class ServiceError(ComicProducerError):
    """A generative service call failed."""


class RateLimitError(ServiceError):
    """The service rejected the call because of rate limiting."""


class SpeechError(ServiceError):
    """The speech service failed for a reason other than rate limiting."""


_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limited(exc: BaseException) -> bool:
    """Decide whether an upstream exception means "slow down".

    A structured HTTP status wins when the client exposes one; the message
    is only inspected for clients that carry no status at all.
    """
    if isinstance(exc, RateLimitError):
        return True
    status = _status_code(exc)
    if status is not None:
        return status == 429
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def classify_service_error(
    exc: BaseException,
    fallback: type[ServiceError] = ServiceError,
) -> ServiceError:
    """Wrap an upstream exception into RateLimitError or ``fallback``."""
    if isinstance(exc, ServiceError):
        return exc
    if is_rate_limited(exc):
        return RateLimitError(str(exc) or "rate limited")
    return fallback(str(exc) or exc.__class__.__name__)
