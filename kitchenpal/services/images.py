"""Food image generation with caching, rate limiting and guaranteed fallback.

``ImageService.generate_food_image`` always returns something renderable:

cache hit → cached image
generation succeeded → new image (stored in the cache)
generation failed → cached image for the same key if one appeared meanwhile,
otherwise the static placeholder asset

Generation runs through the image rate limiter. When a client id is given, a
newer request from the same client cancels the pending one; a cancelled
generation never writes to the cache.
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from kitchenpal.models.models import GeneratedImage
from kitchenpal.prompts.prompts import build_image_prompt
from kitchenpal.services.cache import ContentCache, image_cache_key
from kitchenpal.services.cancellation import OperationSuperseded, SupersedingRunner
from kitchenpal.services.errors import ErrorKind, ServiceError, to_service_error
from kitchenpal.services.providers import gemini_api_error
from kitchenpal.services.rate_limiter import RateLimiter
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger


@dataclass
class ImageResult:
    image: GeneratedImage
    cached: bool = False
    fallback: bool = False
    error: Optional[ServiceError] = None


def placeholder_image(settings: Config = config) -> GeneratedImage:
    return GeneratedImage(url=settings.FALLBACK_IMAGE_URL, mime_type="image/svg+xml")


def is_valid_base64(data: str) -> bool:
    if not data:
        return False
    try:
        base64.b64decode(data, validate=True)
    except ValueError:
        return False
    return True


def is_valid_generated_image(image: Optional[GeneratedImage]) -> bool:
    if image is None:
        return False
    if image.url:
        return image.url.startswith(("http://", "https://", "/", "data:"))
    return is_valid_base64(image.base64_data or "")


class ImageService:
    """Generates dish photos with Imagen through google-genai."""

    def __init__(
        self,
        cache: ContentCache,
        rate_limiter: RateLimiter,
        settings: Config = config,
        client: Optional[genai.Client] = None,
        runner: Optional[SupersedingRunner] = None,
    ) -> None:
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.settings = settings
        self._client = client
        self.runner = runner or SupersedingRunner("image")

    @property
    def configured(self) -> bool:
        return bool(self.settings.GEMINI_API_KEY) or self._client is not None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.settings.GEMINI_API_KEY:
                raise ServiceError(ErrorKind.API_KEY_MISSING, "GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.settings.GEMINI_API_KEY)
        return self._client

    async def _generate(self, prompt: str) -> GeneratedImage:
        """One Imagen call. Raises ServiceError."""
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    client.models.generate_images,
                    model=self.settings.IMAGE_MODEL,
                    prompt=prompt,
                    config=types.GenerateImagesConfig(number_of_images=1, output_mime_type="image/jpeg"),
                ),
                timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise ServiceError(ErrorKind.TIMEOUT_ERROR, "Image generation timed out", e) from e
        except genai_errors.APIError as e:
            raise gemini_api_error(e) from e

        generated = getattr(response, "generated_images", None) or []
        image = getattr(generated[0], "image", None) if generated else None
        image_bytes = getattr(image, "image_bytes", None)
        if not image_bytes:
            # Imagen drops images that trip its safety filters
            raise ServiceError(ErrorKind.GENERATION_FAILED, "Image model returned no image")

        mime_type = getattr(image, "mime_type", None) or "image/jpeg"
        if mime_type not in ("image/png", "image/jpeg"):
            mime_type = "image/jpeg"
        return GeneratedImage(base64_data=base64.b64encode(image_bytes).decode("ascii"), mime_type=mime_type)

    async def _generate_and_cache(self, key: str, prompt: str) -> GeneratedImage:
        image = await self.rate_limiter.execute(self._generate, prompt)
        if not is_valid_generated_image(image):
            raise ServiceError(ErrorKind.INVALID_RESPONSE, "Generated image failed validation")
        self.cache.set(key, image)
        return image

    async def generate_food_image(
        self,
        recipe_name: str,
        description: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> ImageResult:
        """Image for a recipe. Never raises a provider error.

        Raises:
            OperationSuperseded: A newer request with the same ``client_id`` replaced this one.
        """
        key = image_cache_key(recipe_name, description)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Image cache hit for {recipe_name!r}")
            return ImageResult(image=cached, cached=True)

        prompt = build_image_prompt(recipe_name, description)
        try:
            image = await self.runner.run(client_id, self._generate_and_cache(key, prompt))
            logger.info(f"Generated image for {recipe_name!r}")
            return ImageResult(image=image)
        except OperationSuperseded:
            raise
        except Exception as e:
            error = to_service_error(e)

        logger.warning(f"Image generation failed for {recipe_name!r}: {error.detail}",
                       extra={"error_kind": error.kind.value})
        cached = self.cache.get(key)
        if cached is not None:
            return ImageResult(image=cached, cached=True, fallback=True, error=error)
        return ImageResult(image=placeholder_image(self.settings), fallback=True, error=error)
