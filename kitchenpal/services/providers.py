"""Text-generation provider clients.

Each provider makes exactly one network call per request, bounded by a timeout,
and returns the reply text or an ``AIResponse``. Every failure leaves the client
as a ``ServiceError``; retrying is the caller's decision.

- GeminiProvider: google-genai SDK (blocking client run in a worker thread)
- DeepSeekProvider: OpenAI-compatible chat completions over aiohttp
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import aiohttp
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from kitchenpal.models.models import AIResponse, ConversationMessage, UserPreferences
from kitchenpal.prompts.prompts import build_prompt
from kitchenpal.services.errors import ErrorKind, ServiceError, error_for_status, to_service_error
from kitchenpal.services.parser import parse_reply
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger

DEFAULT_REPLY = "I'm having trouble responding right now."


class TextProvider(ABC):
    """Common behaviour of text providers.

    Subclasses implement ``generate_text``; ``generate_response`` builds the
    prompt, calls the provider once and normalizes the reply.
    """

    name = "provider"

    def __init__(self, settings: Config = config) -> None:
        self.settings = settings

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when the provider has the credentials it needs."""

    @abstractmethod
    async def generate_text(self, system_instruction: str, user_turn: str) -> str:
        """Send one prompt and return the raw reply text."""

    async def generate_response(
        self,
        message: str,
        history: Optional[Sequence[ConversationMessage]] = None,
        preferences: Optional[UserPreferences] = None,
    ) -> AIResponse:
        prompt = build_prompt(
            message,
            history,
            preferences,
            token_budget=self.settings.PROMPT_TOKEN_BUDGET,
            chars_per_token=self.settings.CHARS_PER_TOKEN,
        )
        if prompt.truncated:
            logger.info(f"Prompt history truncated: dropped {prompt.dropped_messages} message(s)",
                        extra={"provider": self.name})

        started = time.perf_counter()
        raw = await self.generate_text(prompt.system_instruction, prompt.user_turn)
        logger.info(
            f"{self.name} replied with {len(raw)} chars",
            extra={"provider": self.name, "latency_ms": int((time.perf_counter() - started) * 1000)},
        )

        parsed = parse_reply(raw)
        return AIResponse(
            content=parsed.content,
            quick_replies=parsed.quick_replies or None,
            recipe_options=parsed.recipe_options or None,
            recipes=parsed.recipes or None,
        )

    def _require_key(self, key: str) -> None:
        if not key:
            raise ServiceError(ErrorKind.API_KEY_MISSING, f"{self.name} API key is not configured")


class GeminiProvider(TextProvider):
    """Primary provider: Google Gemini through the google-genai SDK."""

    name = "gemini"

    def __init__(self, settings: Config = config, client: Optional[genai.Client] = None) -> None:
        super().__init__(settings)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.GEMINI_API_KEY) or self._client is not None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._require_key(self.settings.GEMINI_API_KEY)
            self._client = genai.Client(api_key=self.settings.GEMINI_API_KEY)
        return self._client

    async def generate_text(self, system_instruction: str, user_turn: str) -> str:
        client = self._get_client()
        generation_config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self.settings.TEMPERATURE,
            max_output_tokens=self.settings.MAX_OUTPUT_TOKENS,
        )
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    client.models.generate_content,
                    model=self.settings.GEMINI_MODEL,
                    contents=user_turn,
                    config=generation_config,
                ),
                timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise ServiceError(
                ErrorKind.TIMEOUT_ERROR, f"Gemini call exceeded {self.settings.REQUEST_TIMEOUT_SECONDS}s", e
            ) from e
        except genai_errors.APIError as e:
            raise gemini_api_error(e) from e
        except ServiceError:
            raise
        except Exception as e:
            raise to_service_error(e) from e

        return extract_gemini_text(response)


def gemini_api_error(error: "genai_errors.APIError") -> ServiceError:
    """Map a google-genai APIError (carries the HTTP status in ``code``) to a ServiceError."""
    status = getattr(error, "code", None)
    message = getattr(error, "message", None) or str(error)
    if isinstance(status, int):
        classified = error_for_status(status, message, provider="Gemini")
        classified.original = error
        return classified
    return to_service_error(error)


def extract_gemini_text(response) -> str:
    """Reply text from a GenerateContentResponse.

    Raises:
        ServiceError: GENERATION_FAILED when the prompt or candidate was blocked,
            INVALID_RESPONSE when there is no text at all.
    """
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        raise ServiceError(ErrorKind.GENERATION_FAILED, f"Prompt blocked: {block_reason}")

    text = getattr(response, "text", None)
    if text and text.strip():
        return text

    candidates = getattr(response, "candidates", None) or []
    finish_reason = str(getattr(candidates[0], "finish_reason", "")) if candidates else ""
    if "SAFETY" in finish_reason.upper() or "PROHIBITED" in finish_reason.upper():
        raise ServiceError(ErrorKind.GENERATION_FAILED, f"Response blocked: {finish_reason}")
    raise ServiceError(ErrorKind.INVALID_RESPONSE, "Gemini returned no text")


class DeepSeekProvider(TextProvider):
    """Secondary provider: DeepSeek's OpenAI-compatible chat completions API."""

    name = "deepseek"

    @property
    def configured(self) -> bool:
        return bool(self.settings.DEEPSEEK_API_KEY)

    @property
    def endpoint(self) -> str:
        return f"{self.settings.DEEPSEEK_BASE_URL.rstrip('/')}/v1/chat/completions"

    async def generate_text(self, system_instruction: str, user_turn: str) -> str:
        self._require_key(self.settings.DEEPSEEK_API_KEY)
        payload = {
            "model": self.settings.DEEPSEEK_MODEL,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_turn},
            ],
            "temperature": self.settings.TEMPERATURE,
            "max_tokens": self.settings.MAX_OUTPUT_TOKENS,
        }
        headers = {
            "Authorization": f"Bearer {self.settings.DEEPSEEK_API_KEY}",
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.settings.REQUEST_TIMEOUT_SECONDS)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.endpoint, json=payload, headers=headers) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise error_for_status(response.status, body, provider="DeepSeek")
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise ServiceError(ErrorKind.INVALID_RESPONSE, "DeepSeek returned invalid JSON", e) from e
        except ServiceError:
            raise
        except asyncio.TimeoutError as e:
            raise ServiceError(
                ErrorKind.TIMEOUT_ERROR, f"DeepSeek call exceeded {self.settings.REQUEST_TIMEOUT_SECONDS}s", e
            ) from e
        except aiohttp.ClientConnectionError as e:
            raise ServiceError(ErrorKind.NETWORK_ERROR, str(e) or "connection failed", e) from e
        except Exception as e:
            raise to_service_error(e) from e

        return extract_chat_completion_text(data)


def extract_chat_completion_text(data) -> str:
    """``choices[0].message.content`` from an OpenAI-style completion body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ServiceError(ErrorKind.INVALID_RESPONSE, "Completion body has no choices[0].message", e) from e
    if not isinstance(content, str):
        raise ServiceError(ErrorKind.INVALID_RESPONSE, "Completion content is not text")
    return content.strip() or DEFAULT_REPLY


def create_provider(name: str, settings: Config = config) -> TextProvider:
    """Provider instance for a TEXT_PROVIDER / FALLBACK_PROVIDER name."""
    if name == "gemini":
        return GeminiProvider(settings)
    if name == "deepseek":
        return DeepSeekProvider(settings)
    raise ValueError(f"Unknown text provider: {name}")


def build_provider_chain(settings: Config = config) -> list[TextProvider]:
    """Primary provider first, then the optional fallback provider."""
    names = [settings.TEXT_PROVIDER]
    if settings.FALLBACK_PROVIDER and settings.FALLBACK_PROVIDER != settings.TEXT_PROVIDER:
        names.append(settings.FALLBACK_PROVIDER)
    return [create_provider(name, settings) for name in names]
