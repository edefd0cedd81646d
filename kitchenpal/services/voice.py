"""Voice coaching through ElevenLabs text-to-speech.

Turns a ``VoiceRequest`` variant into spoken text, then into audio:

- step: "Step N of T." framing, optional encouragement and tip
- coach: friendlier explanation with step-position aware encouragement
- intro: recipe name, timings and difficulty
- ingredients: "Here's what you'll need: ..." with an Oxford-comma list
- custom: text as given

Requests carrying a ``client_id`` supersede that client's pending request.
"""

import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from kitchenpal.models.models import (
    CoachVoiceRequest,
    CustomVoiceRequest,
    Ingredient,
    IngredientsVoiceRequest,
    IntroVoiceRequest,
    StepVoiceRequest,
    VoiceInfo,
    VoiceRequest,
)
from kitchenpal.services.cancellation import SupersedingRunner
from kitchenpal.services.errors import ErrorKind, ServiceError, error_for_status, to_service_error
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
DEFAULT_OUTPUT_FORMAT = "mp3_44100_128"

VOICE_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.API_KEY_MISSING: "Voice service not configured. Please contact support.",
    ErrorKind.API_ERROR: "I couldn't generate the voice. Please try again.",
    ErrorKind.RATE_LIMITED: "Please wait a moment before requesting more audio.",
    ErrorKind.SERVER_ERROR: "Voice service temporarily unavailable. Please try again later.",
}

_CONVERSATIONAL_VERBS = (
    "add", "pour", "mix", "stir", "place", "put", "heat", "cook", "bake", "chop", "cut",
    "slice", "dice", "combine", "whisk", "fold", "season", "sprinkle", "drizzle",
)
_CONVERSATIONAL_PREFIXES = ("you'll want to ", "go ahead and ", "now ", "")
_ENCOURAGEMENTS = (
    "Great job so far! Now, ",
    "Perfect! Moving on, ",
    "You've got this! Next up, ",
    "Excellent progress! Now let's ",
    "Looking good! For this step, ",
)


@dataclass(frozen=True)
class VoiceSettings:
    stability: float = 0.75
    similarity_boost: float = 0.75
    style: float = 0.3
    use_speaker_boost: bool = True

    def to_payload(self) -> dict:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


DEFAULT_VOICE_SETTINGS = VoiceSettings()
COACHING_VOICE_SETTINGS = VoiceSettings(stability=0.65, style=0.4)


@dataclass
class GeneratedAudio:
    audio: bytes
    content_type: str
    character_count: int


# ============================================================================
# Text builders
# ============================================================================


def build_step_coaching_text(
    step_number: int,
    step_text: str,
    total_steps: int,
    encouragement: bool = False,
    tips: Optional[str] = None,
) -> str:
    if step_number == 1:
        text = f"Alright, let's get started! Step {step_number} of {total_steps}. "
    elif step_number == total_steps:
        text = f"We're on the final step! Step {step_number}. "
    else:
        text = f"Step {step_number} of {total_steps}. "
    text += step_text.strip()

    if encouragement:
        if step_number == total_steps:
            text += " Great job! Your dish is ready."
        elif step_number == total_steps // 2:
            text += " You're doing great, we're halfway there!"
    if tips:
        text += f" Quick tip: {tips.strip()}"
    return text


def make_instruction_conversational(step_text: str, step_number: int = 0) -> str:
    """Soften a leading imperative verb ("Stir the sauce" → "go ahead and stir the sauce")."""
    text = step_text.strip()
    first_word = text.split(" ", 1)[0].lower() if text else ""
    if first_word in _CONVERSATIONAL_VERBS:
        prefix = _CONVERSATIONAL_PREFIXES[step_number % len(_CONVERSATIONAL_PREFIXES)]
        text = prefix + text[0].lower() + text[1:]
    return text


def build_step_explanation_text(
    step_number: int,
    step_text: str,
    total_steps: int,
    recipe_name: Optional[str] = None,
) -> str:
    if step_number == 1:
        text = "Alright chef, let's get cooking! "
        if recipe_name:
            text += f"We're making {recipe_name} and this is going to be delicious. "
        text += "For our first step: "
    elif step_number == total_steps:
        text = "Amazing work! You're on the final step now. Almost there! "
    elif step_number == -(-total_steps // 2):
        text = "You're doing fantastic! We're about halfway through. Keep that energy up! "
    else:
        text = _ENCOURAGEMENTS[step_number % len(_ENCOURAGEMENTS)]

    text += make_instruction_conversational(step_text, step_number)

    lowered = step_text.lower()
    if "careful" in lowered or "hot" in lowered:
        text += " And remember, safety first - take your time with this one."
    elif "stir" in lowered or "mix" in lowered:
        text += " Keep that motion nice and steady."
    elif "wait" in lowered or "minutes" in lowered:
        text += " This is a great time to prep for the next step or just enjoy the amazing aromas!"

    if step_number == total_steps:
        text += (
            " And that's it! You did it! Time to plate up and enjoy your creation."
            " You should be proud of yourself, chef!"
        )
    return text


def build_recipe_intro_text(
    recipe_name: str,
    prep_time: Optional[str] = None,
    cook_time: Optional[str] = None,
    difficulty: Optional[str] = None,
) -> str:
    text = f"Today we're making {recipe_name}. "
    if prep_time or cook_time:
        parts = []
        if prep_time:
            parts.append(f"{prep_time} to prepare")
        if cook_time:
            parts.append(f"{cook_time} to cook")
        text += f"This recipe takes {' and '.join(parts)}. "
    if difficulty:
        text += f"It's a {difficulty.lower()} level recipe. "
    return text + "Let's gather our ingredients and get cooking!"


def _format_quantity(quantity: float) -> str:
    return str(int(quantity)) if float(quantity).is_integer() else f"{quantity:g}"


def _speak_ingredient(ingredient: Ingredient) -> str:
    quantity = "" if ingredient.quantity == 1 else f"{_format_quantity(ingredient.quantity)} "
    unit = "" if ingredient.unit.lower() in ("piece", "whole", "") else f"{ingredient.unit} of "
    return f"{quantity}{unit}{ingredient.name}"


def build_ingredients_summary_text(ingredients: list[Ingredient]) -> str:
    items = [_speak_ingredient(ingredient) for ingredient in ingredients]
    if len(items) == 1:
        listed = items[0]
    elif len(items) == 2:
        listed = " and ".join(items)
    else:
        listed = ", ".join(items[:-1]) + ", and " + items[-1]
    return f"Here's what you'll need: {listed}. Make sure you have everything ready before we start."


def build_voice_text(request: VoiceRequest) -> tuple[str, VoiceSettings]:
    """Spoken text and voice settings for a request variant."""
    if isinstance(request, StepVoiceRequest):
        text = build_step_coaching_text(
            request.step_number, request.step_text, request.total_steps, request.encouragement, request.tips
        )
        return text, DEFAULT_VOICE_SETTINGS
    if isinstance(request, CoachVoiceRequest):
        text = build_step_explanation_text(
            request.step_number, request.step_text, request.total_steps, request.recipe_name
        )
        return text, COACHING_VOICE_SETTINGS
    if isinstance(request, IntroVoiceRequest):
        text = build_recipe_intro_text(request.recipe_name, request.prep_time, request.cook_time, request.difficulty)
        return text, DEFAULT_VOICE_SETTINGS
    if isinstance(request, IngredientsVoiceRequest):
        return build_ingredients_summary_text(request.ingredients), DEFAULT_VOICE_SETTINGS
    if isinstance(request, CustomVoiceRequest):
        return request.text, DEFAULT_VOICE_SETTINGS
    raise TypeError(f"Unsupported voice request type: {type(request).__name__}")


# ============================================================================
# ElevenLabs client
# ============================================================================


def voice_error(error: BaseException) -> ServiceError:
    """Classify ``error`` and attach the voice-specific user message."""
    classified = to_service_error(error)
    message = VOICE_MESSAGES.get(classified.kind)
    if message and classified.user_message != message:
        return ServiceError(classified.kind, classified.detail, classified.original or error, user_message=message)
    return classified


class VoiceService:
    """ElevenLabs text-to-speech over aiohttp."""

    def __init__(
        self,
        settings: Config = config,
        runner: Optional[SupersedingRunner] = None,
        base_url: str = ELEVENLABS_BASE_URL,
    ) -> None:
        self.settings = settings
        self.runner = runner or SupersedingRunner("voice")
        self.base_url = base_url

    @property
    def configured(self) -> bool:
        return bool(self.settings.ELEVENLABS_API_KEY)

    def _headers(self, **extra: str) -> dict[str, str]:
        if not self.configured:
            raise voice_error(ServiceError(ErrorKind.API_KEY_MISSING, "ELEVENLABS_API_KEY is not configured"))
        return {"xi-api-key": self.settings.ELEVENLABS_API_KEY, **extra}

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.settings.REQUEST_TIMEOUT_SECONDS)

    async def text_to_speech(
        self,
        text: str,
        voice_id: Optional[str] = None,
        voice_settings: VoiceSettings = DEFAULT_VOICE_SETTINGS,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> GeneratedAudio:
        """Synthesize ``text``. Raises ServiceError with a voice-specific message."""
        headers = self._headers(**{"Accept": "audio/mpeg", "Content-Type": "application/json"})
        voice = voice_id or self.settings.ELEVENLABS_VOICE_ID
        url = f"{self.base_url}/text-to-speech/{voice}"
        payload = {
            "text": text,
            "model_id": self.settings.ELEVENLABS_MODEL_ID,
            "voice_settings": voice_settings.to_payload(),
        }

        started = time.perf_counter()
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(
                    url, params={"output_format": output_format}, json=payload, headers=headers
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise error_for_status(response.status, body, provider="ElevenLabs")
                    audio = await response.read()
                    content_type = response.headers.get("Content-Type", "audio/mpeg")
        except Exception as e:
            raise voice_error(e) from e

        if not audio:
            raise voice_error(ServiceError(ErrorKind.INVALID_RESPONSE, "ElevenLabs returned no audio"))

        logger.info(
            f"Synthesized {len(text)} characters ({len(audio)} bytes)",
            extra={"provider": "elevenlabs", "latency_ms": int((time.perf_counter() - started) * 1000)},
        )
        return GeneratedAudio(audio=audio, content_type=content_type, character_count=len(text))

    async def synthesize(self, request: VoiceRequest) -> GeneratedAudio:
        """Audio for a tagged voice request.

        Raises:
            ServiceError: Provider failure.
            OperationSuperseded: A newer request with the same client id replaced this one.
        """
        text, voice_settings = build_voice_text(request)
        return await self.runner.run(
            request.client_id,
            self.text_to_speech(text, voice_id=request.voice_id, voice_settings=voice_settings),
        )

    async def get_voices(self) -> list[VoiceInfo]:
        headers = self._headers()
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(f"{self.base_url}/voices", headers=headers) as response:
                    if response.status >= 400:
                        raise error_for_status(response.status, await response.text(), provider="ElevenLabs")
                    data = await response.json(content_type=None)
        except Exception as e:
            raise voice_error(e) from e

        voices = data.get("voices", []) if isinstance(data, dict) else []
        return [
            VoiceInfo(voice_id=voice["voice_id"], name=voice.get("name", voice["voice_id"]),
                      category=voice.get("category") or "premade")
            for voice in voices
            if isinstance(voice, dict) and voice.get("voice_id")
        ]
