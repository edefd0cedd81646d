"""Dish and ingredient recognition from a photo using Gemini vision.

Core Functions:
- decode_image_base64(): Plain base64 or data URL → bytes
- validate_image_format(): JPEG, PNG or WebP, detected from magic bytes
- validate_image_size(): MAX_IMAGE_SIZE_MB limit
- compress_image(): Pillow JPEG re-encode above COMPRESS_IMG_THRESHOLD_KB
- VisionService.analyze(): validate, compress, call the model, parse
"""

import asyncio
import base64
import binascii
from io import BytesIO
from typing import Optional

import filetype
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image

from kitchenpal.models.models import VisionMode, VisionResponse
from kitchenpal.prompts.prompts import build_vision_prompt
from kitchenpal.services.errors import ErrorKind, ServiceError, safe_execute_sync, to_service_error
from kitchenpal.services.parser import parse_vision_reply
from kitchenpal.services.providers import extract_gemini_text, gemini_api_error
from kitchenpal.services.rate_limiter import RateLimiter
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger

SUPPORTED_FORMATS = {"jpg": "image/jpeg", "png": "image/png", "webp": "image/webp"}


class InvalidImageError(ValueError):
    """The uploaded image cannot be sent to the vision model."""


def decode_image_base64(image_base64: str) -> bytes:
    """Decode plain base64 or a ``data:image/...;base64,`` URL."""
    encoded = image_base64.strip()
    if encoded.startswith("data:"):
        if "," not in encoded:
            raise InvalidImageError("Malformed data URL")
        encoded = encoded.split(",", 1)[1]
    try:
        image_bytes = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("imageBase64 is not valid base64") from e
    if not image_bytes:
        raise InvalidImageError("imageBase64 is required")
    return image_bytes


def validate_image_format(image_bytes: bytes) -> str:
    """Return the MIME type of a supported image, raise InvalidImageError otherwise."""
    kind = filetype.guess(image_bytes)
    if kind is None or kind.extension not in SUPPORTED_FORMATS:
        logger.warning(f"Invalid image format: {kind.mime if kind else 'unknown'}")
        raise InvalidImageError("Unsupported image format. Use JPEG, PNG or WebP.")
    return SUPPORTED_FORMATS[kind.extension]


def validate_image_size(image_bytes: bytes, settings: Config = config) -> None:
    size_mb = len(image_bytes) / (1024 * 1024)
    if size_mb > settings.MAX_IMAGE_SIZE_MB:
        raise InvalidImageError(f"Image is {size_mb:.1f}MB, the limit is {settings.MAX_IMAGE_SIZE_MB}MB")


def compress_image(image_bytes: bytes, max_width: int = 1024, settings: Config = config) -> bytes:
    """Re-encode as progressive JPEG (quality 85), resized to ``max_width``.

    Images below COMPRESS_IMG_THRESHOLD_KB, or any image when COMPRESS_IMG is
    off, are returned unchanged. Compression failures keep the original bytes.
    """
    size_kb = len(image_bytes) / 1024
    if not settings.COMPRESS_IMG or size_kb < settings.COMPRESS_IMG_THRESHOLD_KB:
        return image_bytes

    def _compress() -> bytes:
        img = Image.open(BytesIO(image_bytes))
        if img.mode in ("RGBA", "LA", "P"):
            img = img.convert("RGBA")
            rgb_img = Image.new("RGB", img.size, (255, 255, 255))
            rgb_img.paste(img, mask=img.split()[-1])
            img = rgb_img
        elif img.mode != "RGB":
            img = img.convert("RGB")

        if img.width > max_width:
            img = img.resize((max_width, int(img.height * max_width / img.width)), Image.Resampling.LANCZOS)

        output = BytesIO()
        img.save(output, format="JPEG", quality=85, optimize=True, progressive=True)
        compressed = output.getvalue()
        logger.debug(f"Image compressed: {size_kb:.1f}KB → {len(compressed) / 1024:.1f}KB")
        return compressed

    return safe_execute_sync(_compress, "Image compression", default_return=image_bytes)


class VisionService:
    """Sends one image plus instructions to the Gemini vision model."""

    def __init__(
        self,
        settings: Config = config,
        client: Optional[genai.Client] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.settings = settings
        self._client = client
        self.rate_limiter = rate_limiter

    @property
    def configured(self) -> bool:
        return bool(self.settings.GEMINI_API_KEY) or self._client is not None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.settings.GEMINI_API_KEY:
                raise ServiceError(ErrorKind.API_KEY_MISSING, "GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.settings.GEMINI_API_KEY)
        return self._client

    def prepare_image(self, image_base64: str) -> tuple[bytes, str]:
        """Decoded, validated and possibly compressed image with its MIME type."""
        image_bytes = decode_image_base64(image_base64)
        mime_type = validate_image_format(image_bytes)
        validate_image_size(image_bytes, self.settings)
        compressed = compress_image(image_bytes, settings=self.settings)
        if compressed is not image_bytes:
            mime_type = "image/jpeg"
        return compressed, mime_type

    async def _call_model(self, instruction: str, user_text: str, image_bytes: bytes, mime_type: str) -> str:
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    client.models.generate_content,
                    model=self.settings.VISION_MODEL,
                    contents=[instruction, user_text, types.Part.from_bytes(data=image_bytes, mime_type=mime_type)],
                ),
                timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise ServiceError(ErrorKind.TIMEOUT_ERROR, "Vision call timed out", e) from e
        except genai_errors.APIError as e:
            raise gemini_api_error(e) from e
        except ServiceError:
            raise
        except Exception as e:
            raise to_service_error(e) from e
        return extract_gemini_text(response)

    async def analyze(
        self,
        image_base64: str,
        description: Optional[str] = None,
        mode: VisionMode = VisionMode.DISH,
    ) -> VisionResponse:
        """Identify the dish (or the ingredients) in a photo.

        Raises:
            InvalidImageError: Undecodable, unsupported or oversized image.
            ServiceError: Model failure.
        """
        image_bytes, mime_type = self.prepare_image(image_base64)
        instruction, user_text = build_vision_prompt(mode, description)

        if self.rate_limiter is not None:
            raw = await self.rate_limiter.execute(self._call_model, instruction, user_text, image_bytes, mime_type)
        else:
            raw = await self._call_model(instruction, user_text, image_bytes, mime_type)

        result = parse_vision_reply(raw, mode)
        logger.info(
            f"Vision ({mode.value}) recognised {len(result.ingredients or [])} ingredient(s)",
            extra={"provider": "gemini"},
        )
        return result
