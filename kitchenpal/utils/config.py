"""Configuration management for the KitchenPal assistant service.

Loads environment variables from system environment and .env file.
Priority order: system environment > .env file > hardcoded defaults

API keys are optional at load time. A missing key is reported as an
API_KEY_MISSING error when the corresponding provider is first used.
"""

import os

from dotenv import load_dotenv


# Load .env file (if exists, silently continues if missing)
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        # Text generation providers
        self.GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        # Vision model used by /api/vision (dish recognition, ingredient detection)
        self.VISION_MODEL: str = os.getenv("VISION_MODEL", "gemini-2.5-flash")
        # Image generation model (Imagen through the same google-genai client)
        self.IMAGE_MODEL: str = os.getenv("IMAGE_MODEL", "imagen-3.0-generate-002")
        self.DEEPSEEK_API_KEY: str = os.getenv("DEEPSEEK_API_KEY", "")
        self.DEEPSEEK_MODEL: str = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")
        self.DEEPSEEK_BASE_URL: str = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com")
        # Primary text provider: "gemini" or "deepseek"
        self.TEXT_PROVIDER: str = os.getenv("TEXT_PROVIDER", "gemini").lower()
        # Optional secondary provider tried when the primary fails. Empty disables failover.
        self.FALLBACK_PROVIDER: str = os.getenv("FALLBACK_PROVIDER", "").lower()

        # Voice (ElevenLabs text-to-speech)
        self.ELEVENLABS_API_KEY: str = os.getenv("ELEVENLABS_API_KEY", "")
        # Default voice: "Rachel"
        self.ELEVENLABS_VOICE_ID: str = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
        self.ELEVENLABS_MODEL_ID: str = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")

        # Server
        self.PORT: int = int(os.getenv("PORT", "7777"))
        # Comma-separated list of allowed CORS origins
        self.CORS_ORIGINS: list[str] = [
            origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
        ]

        # LLM Model Parameters
        # Temperature: 0.7 keeps suggestions varied without drifting off-format
        self.TEMPERATURE: float = float(os.getenv("TEMPERATURE", "0.7"))
        self.MAX_OUTPUT_TOKENS: int = int(os.getenv("MAX_OUTPUT_TOKENS", "2048"))
        # Per network call timeout. A timeout is reported as TIMEOUT_ERROR and is not retried.
        self.REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

        # Prompt budget: total prompt size in estimated tokens (chars / CHARS_PER_TOKEN)
        self.PROMPT_TOKEN_BUDGET: int = int(os.getenv("PROMPT_TOKEN_BUDGET", "2048"))
        self.CHARS_PER_TOKEN: int = int(os.getenv("CHARS_PER_TOKEN", "4"))

        # Retry Configuration - applied by the chat pipeline, never inside provider clients
        self.MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
        # DELAY_BETWEEN_RETRIES: Initial delay in seconds (doubled each retry if EXPONENTIAL_BACKOFF)
        self.DELAY_BETWEEN_RETRIES: float = float(os.getenv("DELAY_BETWEEN_RETRIES", "1"))
        self.EXPONENTIAL_BACKOFF: bool = _env_bool("EXPONENTIAL_BACKOFF", "true")
        self.MAX_BACKOFF_SECONDS: float = float(os.getenv("MAX_BACKOFF_SECONDS", "10"))

        # Rate limiting (requests per rolling window)
        self.TEXT_RATE_LIMIT: int = int(os.getenv("TEXT_RATE_LIMIT", "60"))
        self.IMAGE_RATE_LIMIT: int = int(os.getenv("IMAGE_RATE_LIMIT", "10"))
        self.RATE_LIMIT_WINDOW_SECONDS: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
        self.RATE_LIMIT_QUEUE_SIZE: int = int(os.getenv("RATE_LIMIT_QUEUE_SIZE", "100"))
        self.RATE_LIMIT_QUEUE_TIMEOUT_SECONDS: float = float(os.getenv("RATE_LIMIT_QUEUE_TIMEOUT_SECONDS", "30"))

        # Caches
        self.IMAGE_CACHE_TTL_SECONDS: float = float(os.getenv("IMAGE_CACHE_TTL_SECONDS", "1800"))
        self.IMAGE_CACHE_MAX_ENTRIES: int = int(os.getenv("IMAGE_CACHE_MAX_ENTRIES", "30"))
        self.RECIPE_CACHE_TTL_SECONDS: float = float(os.getenv("RECIPE_CACHE_TTL_SECONDS", "600"))
        self.RECIPE_CACHE_MAX_ENTRIES: int = int(os.getenv("RECIPE_CACHE_MAX_ENTRIES", "50"))

        # Vision input handling
        # Maximum image size (in MB) that can be processed. Default: 5 MB
        self.MAX_IMAGE_SIZE_MB: int = int(os.getenv("MAX_IMAGE_SIZE_MB", "5"))
        self.COMPRESS_IMG: bool = _env_bool("COMPRESS_IMG", "true")
        # Images smaller than this (in KB) are sent as-is
        self.COMPRESS_IMG_THRESHOLD_KB: int = int(os.getenv("COMPRESS_IMG_THRESHOLD_KB", "300"))

        # Static asset returned whenever image generation cannot produce anything
        self.FALLBACK_IMAGE_URL: str = os.getenv(
            "FALLBACK_IMAGE_URL", "/assets/illustrations/food/placeholder-recipe.svg"
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If a provider name is unknown or a numeric value is out of range.
        """
        if self.TEXT_PROVIDER not in ("gemini", "deepseek"):
            raise ValueError(f"TEXT_PROVIDER must be 'gemini' or 'deepseek', got: {self.TEXT_PROVIDER}")
        if self.FALLBACK_PROVIDER not in ("", "gemini", "deepseek"):
            raise ValueError(
                f"FALLBACK_PROVIDER must be empty, 'gemini' or 'deepseek', got: {self.FALLBACK_PROVIDER}"
            )
        if not (0.0 <= self.TEMPERATURE <= 2.0):
            raise ValueError(f"TEMPERATURE must be between 0.0 and 2.0, got: {self.TEMPERATURE}")
        if self.MAX_OUTPUT_TOKENS < 256:
            raise ValueError(f"MAX_OUTPUT_TOKENS must be at least 256, got: {self.MAX_OUTPUT_TOKENS}")
        if self.PROMPT_TOKEN_BUDGET < 256:
            raise ValueError(f"PROMPT_TOKEN_BUDGET must be at least 256, got: {self.PROMPT_TOKEN_BUDGET}")
        if self.CHARS_PER_TOKEN < 1:
            raise ValueError(f"CHARS_PER_TOKEN must be at least 1, got: {self.CHARS_PER_TOKEN}")
        if self.REQUEST_TIMEOUT_SECONDS <= 0:
            raise ValueError(f"REQUEST_TIMEOUT_SECONDS must be positive, got: {self.REQUEST_TIMEOUT_SECONDS}")
        if self.MAX_RETRIES < 0:
            raise ValueError(f"MAX_RETRIES must be at least 0, got: {self.MAX_RETRIES}")
        if self.DELAY_BETWEEN_RETRIES < 0:
            raise ValueError(f"DELAY_BETWEEN_RETRIES must be at least 0, got: {self.DELAY_BETWEEN_RETRIES}")
        if self.TEXT_RATE_LIMIT < 1 or self.IMAGE_RATE_LIMIT < 1:
            raise ValueError(
                f"Rate limits must be at least 1, got: text={self.TEXT_RATE_LIMIT}, image={self.IMAGE_RATE_LIMIT}"
            )
        if self.RATE_LIMIT_WINDOW_SECONDS <= 0:
            raise ValueError(
                f"RATE_LIMIT_WINDOW_SECONDS must be positive, got: {self.RATE_LIMIT_WINDOW_SECONDS}"
            )
        if self.IMAGE_CACHE_MAX_ENTRIES < 1 or self.RECIPE_CACHE_MAX_ENTRIES < 1:
            raise ValueError("Cache sizes must be at least 1")


# Create module-level config instance and validate immediately
config = Config()
config.validate()
