"""HTTP endpoints.

Provides:
- POST /api/chat and POST /api/chat/retry for chat turns
- GET /api/chat/{conversationId}/messages for the stored conversation
- GET /api/chat/{conversationId}/recipes/{optionId} for a full recipe
- POST /api/recipes/suggest for ingredient-based suggestions
- POST /api/voice (audio) and GET /api/voice (available voices)
- POST /api/vision for dish / ingredient recognition
- POST /api/image for dish photos (always answers, placeholder on failure)
- GET /api/health for upstream probes

Error shapes: request validation → 400 ``{"error": ...}``; classified provider
errors → 429 (RATE_LIMITED) or 500 with an ``ErrorResponse`` body.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import TypeAdapter, ValidationError

from kitchenpal.hooks.hooks import TurnOutput, error_quick_replies
from kitchenpal.models.models import (
    ChatRequest,
    ChatResponse,
    ConversationMessage,
    ErrorResponse,
    HealthResponse,
    ImageRequest,
    ImageResponse,
    RecipeDetail,
    RecipeSuggestionRequest,
    RecipeSuggestionResponse,
    RetryRequest,
    VisionRequest,
    VisionResponse,
    VoiceListResponse,
    VoiceRequest,
)
from kitchenpal.services.cache import ContentCache
from kitchenpal.services.cancellation import OperationSuperseded
from kitchenpal.services.chat import ChatPipeline, RecipeNotFound
from kitchenpal.services.conversations import ConversationNotFound, MessageNotFound
from kitchenpal.services.errors import ErrorKind, ServiceError
from kitchenpal.services.health import HealthService
from kitchenpal.services.images import ImageService
from kitchenpal.services.rate_limiter import RateLimiter
from kitchenpal.services.vision import InvalidImageError, VisionService
from kitchenpal.services.voice import VoiceService
from kitchenpal.utils.logger import logger

CHAT_KEY_MISSING = "AI service not configured. Please add GEMINI_API_KEY."
VOICE_KEY_MISSING = "Voice service not configured. Please add ELEVENLABS_API_KEY."

_voice_request_adapter: TypeAdapter = TypeAdapter(VoiceRequest)


@dataclass
class ServiceContainer:
    """Everything the handlers need, built once by the app factory."""

    chat: ChatPipeline
    images: ImageService
    voice: VoiceService
    vision: VisionService
    health: HealthService
    text_limiter: RateLimiter
    image_limiter: RateLimiter
    image_cache: ContentCache
    recipe_cache: ContentCache


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]

router = APIRouter(prefix="/api")


# ============================================================================
# Error translation
# ============================================================================


def _error_json(content: ErrorResponse, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=content.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def service_error_response(
    error: ServiceError,
    message: Optional[str] = None,
    key_missing_message: Optional[str] = None,
) -> JSONResponse:
    """ErrorResponse for a classified error; 429 for RATE_LIMITED, 500 otherwise."""
    user_message = error.user_message
    if error.kind == ErrorKind.API_KEY_MISSING and key_missing_message:
        user_message = key_missing_message
    body = ErrorResponse(
        error=user_message,
        error_type=error.kind.value,
        retryable=error.retryable,
        quick_replies=error_quick_replies(message) if message and error.retryable else None,
    )
    status_code = status.HTTP_429_TOO_MANY_REQUESTS if error.kind == ErrorKind.RATE_LIMITED else 500
    return _error_json(body, status_code)


def _first_validation_message(errors: list) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    if first.get("type") == "missing" and first.get("loc"):
        return f"{first['loc'][-1]} is required"
    message = str(first.get("msg", "Invalid request"))
    return message.removeprefix("Value error, ")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = _first_validation_message(exc.errors())
    logger.info(f"Rejected {request.method} {request.url.path}: {message}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed: {exc}", extra={"error_kind": exc.kind.value})
    return service_error_response(exc)


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": message})


def _superseded() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": "Request superseded by a newer one"})


def _chat_response(turn: TurnOutput) -> dict:
    response = ChatResponse(
        conversation_id=turn.conversation_id,
        message_id=turn.message_id,
        content=turn.response.content,
        quick_replies=turn.response.quick_replies or None,
        recipe_options=turn.response.recipe_options or None,
        recipes=turn.response.recipes or None,
        metadata=turn.metadata,
    )
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Chat
# ============================================================================


@router.post("/chat")
async def chat(payload: ChatRequest, services: Services):
    try:
        turn = await services.chat.send_message(
            payload.message,
            preferences=payload.preferences,
            conversation_id=payload.conversation_id,
            history=payload.conversation_history,
            detected_ingredients=payload.detected_ingredients,
        )
    except ServiceError as e:
        return service_error_response(e, message=payload.message, key_missing_message=CHAT_KEY_MISSING)
    except ValueError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})
    return _chat_response(turn)


@router.post("/chat/retry")
async def retry_chat(payload: RetryRequest, services: Services):
    try:
        original = services.chat.store.get(payload.conversation_id, payload.message_id)
        turn = await services.chat.retry_message(
            payload.conversation_id, payload.message_id, preferences=payload.preferences
        )
    except (ConversationNotFound, MessageNotFound):
        return _not_found("Message not found")
    except ServiceError as e:
        return service_error_response(e, message=original.content, key_missing_message=CHAT_KEY_MISSING)
    except ValueError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})
    return _chat_response(turn)


@router.get("/chat/{conversation_id}/messages")
async def conversation_messages(conversation_id: str, services: Services):
    try:
        messages = services.chat.messages(conversation_id)
    except ConversationNotFound:
        return _not_found("Conversation not found")
    adapter = TypeAdapter(list[ConversationMessage])
    return {"messages": adapter.dump_python(messages, mode="json", by_alias=True, exclude_none=True)}


@router.get("/chat/{conversation_id}/recipes/{option_id}")
async def recipe_detail(conversation_id: str, option_id: str, services: Services, message_id: Optional[str] = None):
    try:
        recipe: RecipeDetail = await services.chat.get_recipe_detail(conversation_id, option_id, message_id)
    except (ConversationNotFound, RecipeNotFound):
        return _not_found("Recipe not found")
    return recipe.model_dump(mode="json", by_alias=True)


@router.post("/recipes/suggest")
async def suggest_recipes(payload: RecipeSuggestionRequest, services: Services):
    try:
        result: RecipeSuggestionResponse = await services.chat.suggest_recipes(payload.ingredients, payload.preferences)
    except ServiceError as e:
        return service_error_response(e, key_missing_message=CHAT_KEY_MISSING)
    return result.model_dump(mode="json", by_alias=True)


# ============================================================================
# Media
# ============================================================================


@router.post("/voice")
async def synthesize_voice(request: Request, services: Services):
    try:
        payload = _voice_request_adapter.validate_python(await request.json())
    except ValueError as e:
        errors = e.errors() if isinstance(e, ValidationError) else [{"msg": "Invalid JSON body"}]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"error": _first_validation_message(errors)})

    try:
        audio = await services.voice.synthesize(payload)
    except OperationSuperseded:
        return _superseded()
    except ServiceError as e:
        return service_error_response(e, key_missing_message=VOICE_KEY_MISSING)

    return Response(
        content=audio.audio,
        media_type=audio.content_type,
        headers={"Content-Length": str(len(audio.audio)), "X-Character-Count": str(audio.character_count)},
    )


@router.get("/voice")
async def list_voices(services: Services):
    try:
        voices = await services.voice.get_voices()
    except ServiceError as e:
        return service_error_response(e, key_missing_message=VOICE_KEY_MISSING)
    return VoiceListResponse(voices=voices).model_dump(mode="json", by_alias=True)


@router.post("/vision")
async def analyze_image(payload: VisionRequest, services: Services):
    try:
        result: VisionResponse = await services.vision.analyze(payload.image_base64, payload.description, payload.mode)
    except InvalidImageError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})
    except ServiceError as e:
        return service_error_response(e, key_missing_message=CHAT_KEY_MISSING)
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/image")
async def generate_image(payload: ImageRequest, services: Services):
    try:
        result = await services.images.generate_food_image(payload.recipe_name, payload.description, payload.client_id)
    except OperationSuperseded:
        return _superseded()

    response = ImageResponse(
        image_url=result.image.data_url(),
        base64_data=result.image.base64_data,
        mime_type=result.image.mime_type,
        cached=result.cached,
        fallback=result.fallback,
    )
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/health")
async def health(services: Services):
    report: HealthResponse = await services.health.check()
    status_code = 500 if report.status == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json", by_alias=True))
