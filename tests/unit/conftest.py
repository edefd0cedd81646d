"""Shared fixtures for unit tests."""

import pytest

from kitchenpal.utils.config import Config


@pytest.fixture
def settings():
    """Config with keys set and every delay zeroed, independent of the local .env."""
    settings = Config()
    settings.GEMINI_API_KEY = "test-gemini-key"
    settings.DEEPSEEK_API_KEY = "test-deepseek-key"
    settings.DEEPSEEK_BASE_URL = "https://api.deepseek.com"
    settings.ELEVENLABS_API_KEY = "test-elevenlabs-key"
    settings.TEXT_PROVIDER = "gemini"
    settings.FALLBACK_PROVIDER = ""
    settings.MAX_RETRIES = 2
    settings.DELAY_BETWEEN_RETRIES = 0
    settings.REQUEST_TIMEOUT_SECONDS = 5
    settings.COMPRESS_IMG = True
    settings.COMPRESS_IMG_THRESHOLD_KB = 300
    settings.MAX_IMAGE_SIZE_MB = 5
    return settings
