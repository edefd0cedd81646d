"""Data models and schemas for the KitchenPal assistant service.

Defines Pydantic models for request/response validation and domain objects.
All models use Pydantic v2. JSON uses camelCase aliases (``quickReplies``,
``imageBase64``); snake_case field names are accepted on input as well.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


class CamelModel(BaseModel):
    """Base model: camelCase on the wire, whitespace stripped from strings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ============================================================================
# Domain enums
# ============================================================================


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    SENT = "sent"
    PENDING = "pending"
    FAILED = "failed"


class CookingSkill(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class VisionMode(str, Enum):
    DISH = "dish"
    INGREDIENTS = "ingredients"


# ============================================================================
# Conversation
# ============================================================================


class QuickReply(CamelModel):
    """A short suggested response surfaced after an assistant turn."""

    id: str
    label: str
    value: str


class Ingredient(CamelModel):
    name: Annotated[str, Field(min_length=1, description="Ingredient name")]
    quantity: Annotated[float, Field(description="Numeric amount, e.g. 2 or 0.5")]
    unit: Annotated[str, Field(description="Unit of measure, e.g. 'cup', 'g', 'piece'")]


class RecipeDetail(CamelModel):
    """Full recipe, fetched lazily when a RecipeOption is opened."""

    name: Annotated[str, Field(min_length=1)]
    description: str = ""
    ingredients: Annotated[list[Ingredient], Field(description="Ordered ingredient list")]
    instructions: Annotated[list[str], Field(description="Ordered preparation steps")]
    prep_time: str = ""
    cook_time: str = ""
    servings: Annotated[int, Field(4, ge=1)]
    difficulty: Difficulty = Difficulty.MEDIUM
    calories: Optional[int] = None
    rating: Annotated[Optional[float], Field(None, ge=0.0, le=5.0)]


class RecipeOption(CamelModel):
    """Lightweight candidate recipe offered for selection before fetching detail."""

    id: str
    name: str
    short_description: str = ""
    estimated_time: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM


class UserPreferences(CamelModel):
    """Dietary, allergy and cuisine constraints supplied by the profile subsystem.

    Tags are kept verbatim (stripped, de-duplicated, original order) so the prompt
    builder can quote them exactly.
    """

    dietary: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    cuisine: list[str] = Field(default_factory=list)
    cooking_skill: Optional[CookingSkill] = None

    @field_validator("dietary", "allergies", "cuisine", mode="before")
    @classmethod
    def normalize_tags(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        tags: list[str] = []
        for tag in value:
            tag = str(tag).strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    @field_validator("cooking_skill", mode="before")
    @classmethod
    def normalize_skill(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    def is_empty(self) -> bool:
        return not (self.dietary or self.allergies or self.cuisine or self.cooking_skill)


class ConversationMessage(CamelModel):
    """One chat turn. Appended monotonically; only ``status`` changes afterwards."""

    id: str = Field(default_factory=_new_id)
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=_utcnow)
    status: MessageStatus = MessageStatus.SENT
    quick_replies: Optional[list[QuickReply]] = None
    recipe_options: Optional[list[RecipeOption]] = None

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, value: datetime) -> datetime:
        # Client-supplied history may carry naive timestamps; treat them as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AIResponse(CamelModel):
    """Provider-independent shape of one assistant reply."""

    content: str
    quick_replies: Optional[list[QuickReply]] = None
    recipe_options: Optional[list[RecipeOption]] = None
    recipes: Optional[list[RecipeDetail]] = None


# ============================================================================
# HTTP request / response schemas
# ============================================================================


class ChatRequest(CamelModel):
    message: Annotated[str, Field(max_length=4000, description="User message (required, non-blank)")]
    preferences: Optional[UserPreferences] = None
    conversation_id: Optional[str] = None
    conversation_history: Optional[list[ConversationMessage]] = None
    detected_ingredients: Annotated[
        Optional[list[str]],
        Field(None, description="Ingredients recognised by /api/vision, appended to the message"),
    ]

    @field_validator("message", mode="before")
    @classmethod
    def validate_message(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Message is required and must be a string")
        return _require_text(value, "Message")


class ChatResponse(CamelModel):
    conversation_id: str
    message_id: str
    content: str
    quick_replies: Optional[list[QuickReply]] = None
    recipe_options: Optional[list[RecipeOption]] = None
    recipes: Optional[list[RecipeDetail]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(CamelModel):
    content: str = ""
    error: str
    error_type: Optional[str] = None
    retryable: bool = False
    quick_replies: Optional[list[QuickReply]] = None


class RetryRequest(CamelModel):
    conversation_id: Annotated[str, Field(min_length=1)]
    message_id: Annotated[str, Field(min_length=1)]
    preferences: Optional[UserPreferences] = None


class RecipeSuggestionRequest(CamelModel):
    ingredients: Annotated[list[str], Field(min_length=1, max_length=50)]
    preferences: Optional[UserPreferences] = None

    @field_validator("ingredients")
    @classmethod
    def validate_ingredients(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("At least one ingredient is required")
        return cleaned


class RecipeSuggestionResponse(CamelModel):
    recipes: list[RecipeDetail]
    recipe_options: list[RecipeOption]
    cached: bool = False


class VisionRequest(CamelModel):
    image_base64: str
    description: Optional[str] = None
    mode: VisionMode = VisionMode.DISH

    @field_validator("image_base64", mode="before")
    @classmethod
    def validate_image(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("imageBase64 is required")
        return value


class VisionResponse(CamelModel):
    name: Optional[str] = None
    summary: Optional[str] = None
    ingredients: Optional[list[str]] = None


class GeneratedImage(CamelModel):
    base64_data: Optional[str] = None
    mime_type: Literal["image/png", "image/jpeg", "image/svg+xml"] = "image/png"
    url: Optional[str] = None

    @model_validator(mode="after")
    def validate_payload(self) -> "GeneratedImage":
        if not self.base64_data and not self.url:
            raise ValueError("GeneratedImage needs base64_data or url")
        return self

    def data_url(self) -> str:
        if self.url:
            return self.url
        return f"data:{self.mime_type};base64,{self.base64_data}"


class ImageRequest(CamelModel):
    recipe_name: Annotated[str, Field(max_length=200)]
    description: Annotated[Optional[str], Field(None, max_length=1000)]
    client_id: Optional[str] = None

    @field_validator("recipe_name", mode="before")
    @classmethod
    def validate_recipe_name(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("recipeName is required and must be a string")
        return _require_text(value, "recipeName")


class ImageResponse(CamelModel):
    image_url: str
    base64_data: Optional[str] = None
    mime_type: str
    cached: bool = False
    fallback: bool = False


# ============================================================================
# Voice requests: tagged union on ``type``
# ============================================================================


class _VoiceRequestBase(CamelModel):
    voice_id: Optional[str] = None
    client_id: Annotated[
        Optional[str],
        Field(None, description="Component identity; a newer request with the same id cancels a pending one"),
    ]


class StepVoiceRequest(_VoiceRequestBase):
    type: Literal["step"]
    step_number: Annotated[int, Field(ge=1)]
    step_text: str
    total_steps: Annotated[int, Field(ge=1)]
    encouragement: bool = False
    tips: Optional[str] = None

    @model_validator(mode="after")
    def validate_step(self) -> "StepVoiceRequest":
        _require_text(self.step_text, "stepText")
        if self.step_number > self.total_steps:
            raise ValueError("stepNumber cannot exceed totalSteps")
        return self


class CoachVoiceRequest(_VoiceRequestBase):
    type: Literal["coach"]
    step_number: Annotated[int, Field(ge=1)]
    step_text: str
    total_steps: Annotated[int, Field(ge=1)]
    recipe_name: Optional[str] = None

    @model_validator(mode="after")
    def validate_coach(self) -> "CoachVoiceRequest":
        _require_text(self.step_text, "stepText")
        if self.step_number > self.total_steps:
            raise ValueError("stepNumber cannot exceed totalSteps")
        return self


class IntroVoiceRequest(_VoiceRequestBase):
    type: Literal["intro"]
    recipe_name: str
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    difficulty: Optional[str] = None

    @field_validator("recipe_name")
    @classmethod
    def validate_recipe_name(cls, value: str) -> str:
        return _require_text(value, "recipeName")


class IngredientsVoiceRequest(_VoiceRequestBase):
    type: Literal["ingredients"]
    ingredients: list[Ingredient]

    @field_validator("ingredients")
    @classmethod
    def validate_ingredients(cls, value: list[Ingredient]) -> list[Ingredient]:
        if not value:
            raise ValueError("ingredients must be a non-empty array")
        return value


class CustomVoiceRequest(_VoiceRequestBase):
    type: Literal["custom"]
    text: Annotated[str, Field(max_length=5000)]

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        return _require_text(value, "text")


VoiceRequest = Annotated[
    Union[StepVoiceRequest, CoachVoiceRequest, IntroVoiceRequest, IngredientsVoiceRequest, CustomVoiceRequest],
    Field(discriminator="type"),
]


class VoiceInfo(CamelModel):
    voice_id: str
    name: str
    category: str = "premade"


class VoiceListResponse(CamelModel):
    voices: list[VoiceInfo]


# ============================================================================
# Health
# ============================================================================


class ServiceHealth(CamelModel):
    status: Literal["ok", "error", "not_configured"]
    message: Optional[str] = None
    latency_ms: Optional[int] = None


class HealthResponse(CamelModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime
    services: dict[str, ServiceHealth]
