"""Language-model and image-generation client for an OpenAI-compatible API."""

import base64
import logging
import os
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from comic_producer.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_IMAGE_MODEL,
    DEFAULT_LANGUAGE_MODEL,
    OPENAI_TIMEOUT,
)
from comic_producer.errors import RateLimitError, ServiceError, classify_service_error

logger = logging.getLogger(__name__)


@dataclass
class ServiceConfig:
    api_key: str = ""
    base_url: str = ""
    image_model: str = ""
    language_model: str = ""
    timeout: float = OPENAI_TIMEOUT

    @classmethod
    def from_env(cls, **overrides) -> "ServiceConfig":
        """Fill unset fields from the environment, then from built-in defaults."""
        config = cls(**{k: v for k, v in overrides.items() if v})
        config.api_key = config.api_key or os.getenv("OPENAI_API_KEY", "")
        config.base_url = config.base_url or os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL
        config.image_model = config.image_model or os.getenv("COMIC_IMAGE_MODEL") or DEFAULT_IMAGE_MODEL
        config.language_model = (
            config.language_model or os.getenv("COMIC_LANGUAGE_MODEL") or DEFAULT_LANGUAGE_MODEL
        )
        return config


def _translate(exc: Exception) -> ServiceError:
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(str(exc))
    return classify_service_error(exc)


def _decode_image(response) -> bytes:
    if not response.data:
        raise ServiceError("no image data received")
    payload = response.data[0].b64_json
    if not payload:
        raise ServiceError("image response carried no base64 payload")
    try:
        return base64.b64decode(payload)
    except ValueError as e:
        raise ServiceError(f"failed to decode image data: {e}") from e


class AIGCClient:
    """Chat completions for storyboards, image generation and image editing."""

    def __init__(self, config: ServiceConfig | None = None, client: AsyncOpenAI | None = None):
        self.config = config or ServiceConfig.from_env()
        self.client = client or AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )

    async def summarize(self, prompt: str, content: str) -> str:
        """Run one JSON-mode chat completion and return the raw message content."""
        logger.debug("Requesting storyboard from %s", self.config.language_model)
        try:
            resp = await self.client.chat.completions.create(
                model=self.config.language_model,
                n=1,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": content},
                ],
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            raise _translate(e) from e
        if not resp.choices:
            raise ServiceError("no chat completion choices received")
        return resp.choices[0].message.content or ""

    async def generate_from_text(self, prompt: str) -> bytes:
        try:
            resp = await self.client.images.generate(
                model=self.config.image_model,
                prompt=prompt,
                n=1,
            )
        except openai.OpenAIError as e:
            raise _translate(e) from e
        return _decode_image(resp)

    async def generate_from_image(self, reference: bytes, prompt: str) -> bytes:
        """Generate an image conditioned on one reference image (PNG bytes)."""
        try:
            resp = await self.client.images.edit(
                model=self.config.image_model,
                image=("reference.png", reference, "image/png"),
                prompt=prompt,
                n=1,
            )
        except openai.OpenAIError as e:
            raise _translate(e) from e
        return _decode_image(resp)
