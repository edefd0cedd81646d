"""Pytest configuration and fixtures for integration tests.

Loads the project .env and skips the whole directory when GEMINI_API_KEY is
missing. These tests call the real Gemini API (and ElevenLabs when its key is
present) through the in-process application.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient


def pytest_configure(config):
    """Load .env before collection so the module-level config sees the keys."""
    env_path = Path(__file__).parent.parent.parent / ".env"
    load_dotenv(env_path)

    # Keep live runs short and deterministic
    os.environ.setdefault("MAX_RETRIES", "1")
    os.environ.setdefault("TEMPERATURE", "0.2")

    print("\n" + "=" * 70)
    print("Note: These tests require a valid GEMINI_API_KEY")
    print(f"Environment loaded from: {env_path}")
    print(f"  - ElevenLabs voice tests: {'ENABLED' if os.getenv('ELEVENLABS_API_KEY') else 'SKIPPED'}")
    print("=" * 70 + "\n")


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session", autouse=True)
def check_api_keys():
    """Skip integration tests when GEMINI_API_KEY is not configured."""
    if not os.getenv("GEMINI_API_KEY"):
        pytest.skip(
            "Integration tests skipped. Missing API key: GEMINI_API_KEY. Please set it in your .env file.",
            allow_module_level=True,
        )


@pytest.fixture(scope="module")
def live_client():
    """TestClient around a fully wired application using the real providers."""
    from kitchenpal.api.factory import create_app
    from kitchenpal.utils.config import Config

    settings = Config()
    settings.FALLBACK_PROVIDER = ""
    with TestClient(create_app(settings)) as client:
        yield client
