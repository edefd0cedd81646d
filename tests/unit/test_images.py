"""Unit tests for food image generation with cache and placeholder fallback."""

import asyncio
import base64
import time
from unittest.mock import MagicMock

import pytest

from kitchenpal.models.models import GeneratedImage
from kitchenpal.services.cache import ContentCache, image_cache_key
from kitchenpal.services.cancellation import OperationSuperseded
from kitchenpal.services.errors import ErrorKind
from kitchenpal.services.images import ImageService, is_valid_generated_image, placeholder_image
from kitchenpal.services.rate_limiter import RateLimiter


def imagen_response(image_bytes=b"\xff\xd8\xff fake jpeg", mime_type="image/jpeg"):
    response = MagicMock()
    response.generated_images = [MagicMock()]
    response.generated_images[0].image.image_bytes = image_bytes
    response.generated_images[0].image.mime_type = mime_type
    return response


@pytest.fixture
def image_service(settings):
    client = MagicMock()
    client.models.generate_images.return_value = imagen_response()
    service = ImageService(
        cache=ContentCache(ttl_seconds=60, name="images"),
        rate_limiter=RateLimiter(max_requests=10, window_seconds=60),
        settings=settings,
        client=client,
    )
    return service


class TestValidation:
    def test_placeholder(self, settings):
        image = placeholder_image(settings)

        assert image.url == settings.FALLBACK_IMAGE_URL
        assert image.data_url() == settings.FALLBACK_IMAGE_URL

    def test_generated_image_validation(self):
        assert is_valid_generated_image(GeneratedImage(base64_data="aGVsbG8="))
        assert not is_valid_generated_image(GeneratedImage(base64_data="not base64!!"))
        assert is_valid_generated_image(GeneratedImage(url="https://example.com/a.png"))
        assert not is_valid_generated_image(GeneratedImage(url="ftp://example.com/a.png"))
        assert not is_valid_generated_image(None)


class TestGenerateFoodImage:
    """Test cache hits, fallback paths and superseding."""

    @pytest.mark.asyncio
    async def test_generates_and_caches(self, image_service):
        first = await image_service.generate_food_image("Pad Thai", "with shrimp")
        second = await image_service.generate_food_image("  pad thai ", "With Shrimp")

        assert not first.cached
        assert first.image.mime_type == "image/jpeg"
        assert base64.b64decode(first.image.base64_data) == b"\xff\xd8\xff fake jpeg"
        assert second.cached
        assert second.image == first.image
        image_service._client.models.generate_images.assert_called_once()

        prompt = image_service._client.models.generate_images.call_args.kwargs["prompt"]
        assert "Pad Thai" in prompt
        assert "with shrimp" in prompt

    @pytest.mark.asyncio
    async def test_failure_returns_placeholder(self, image_service, settings):
        image_service._client.models.generate_images.side_effect = Exception("503 Service Unavailable")

        result = await image_service.generate_food_image("Pad Thai")

        assert result.fallback
        assert result.image.url == settings.FALLBACK_IMAGE_URL
        assert result.error.kind == ErrorKind.SERVER_ERROR
        assert len(image_service.cache) == 0

    @pytest.mark.asyncio
    async def test_empty_generation_is_generation_failed(self, image_service):
        image_service._client.models.generate_images.return_value = imagen_response(image_bytes=None)

        result = await image_service.generate_food_image("Pad Thai")

        assert result.fallback
        assert result.error.kind == ErrorKind.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_failure_prefers_cached_image(self, image_service):
        cached = GeneratedImage(base64_data="aGVsbG8=", mime_type="image/png")

        def fill_cache_then_fail(**_):
            image_service.cache.set(image_cache_key("Pad Thai"), cached)
            raise Exception("ECONNRESET")

        image_service._client.models.generate_images.side_effect = fill_cache_then_fail

        result = await image_service.generate_food_image("Pad Thai")

        assert result.fallback
        assert result.cached
        assert result.image == cached

    @pytest.mark.asyncio
    async def test_missing_key_falls_back(self, settings):
        settings.GEMINI_API_KEY = ""
        service = ImageService(ContentCache(), RateLimiter(max_requests=5), settings=settings)

        result = await service.generate_food_image("Pad Thai")

        assert result.fallback
        assert result.error.kind == ErrorKind.API_KEY_MISSING

    @pytest.mark.asyncio
    async def test_newer_request_supersedes_pending(self, image_service):
        def slow_generate(**kwargs):
            time.sleep(0.1)
            return imagen_response()

        image_service._client.models.generate_images.side_effect = slow_generate

        first = asyncio.create_task(image_service.generate_food_image("Soup", client_id="card-1"))
        await asyncio.sleep(0.01)
        second = await image_service.generate_food_image("Salad", client_id="card-1")

        with pytest.raises(OperationSuperseded):
            await first
        assert not second.fallback
        assert image_service.cache.get(image_cache_key("Soup")) is None
        assert image_service.cache.get(image_cache_key("Salad")) is not None
