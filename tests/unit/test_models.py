"""Unit tests for Pydantic models (domain objects and HTTP schemas)."""

from datetime import datetime, timezone

import pytest
from pydantic import TypeAdapter, ValidationError

from kitchenpal.models.models import (
    ChatRequest,
    ConversationMessage,
    CookingSkill,
    CustomVoiceRequest,
    Difficulty,
    GeneratedImage,
    ImageRequest,
    IngredientsVoiceRequest,
    MessageRole,
    MessageStatus,
    RecipeDetail,
    RecipeSuggestionRequest,
    StepVoiceRequest,
    UserPreferences,
    VisionMode,
    VisionRequest,
    VoiceRequest,
)

voice_adapter = TypeAdapter(VoiceRequest)


class TestUserPreferences:
    """Test preference tag normalization."""

    def test_tags_are_stripped_and_deduplicated_in_order(self):
        prefs = UserPreferences(allergies=[" peanuts", "shellfish", "peanuts", ""], dietary=["low-carb"])

        assert prefs.allergies == ["peanuts", "shellfish"]
        assert prefs.dietary == ["low-carb"]

    def test_comma_separated_string_is_split(self):
        prefs = UserPreferences(cuisine="Italian, Thai")

        assert prefs.cuisine == ["Italian", "Thai"]

    def test_cooking_skill_is_case_insensitive(self):
        prefs = UserPreferences.model_validate({"cookingSkill": " Beginner "})

        assert prefs.cooking_skill == CookingSkill.BEGINNER

    def test_is_empty(self):
        assert UserPreferences().is_empty()
        assert not UserPreferences(dietary=["vegan"]).is_empty()


class TestRecipeDetail:
    """Test recipe validation and camelCase wire format."""

    def test_accepts_camel_case_payload(self):
        recipe = RecipeDetail.model_validate(
            {
                "name": "Stir Fry",
                "ingredients": [{"name": "broccoli", "quantity": 2, "unit": "cups"}],
                "instructions": ["Chop", "Fry"],
                "prepTime": "10 mins",
                "cookTime": "15 mins",
            }
        )

        assert recipe.prep_time == "10 mins"
        assert recipe.servings == 4
        assert recipe.difficulty == Difficulty.MEDIUM
        assert recipe.model_dump(by_alias=True)["cookTime"] == "15 mins"

    def test_rating_must_be_within_range(self):
        with pytest.raises(ValidationError):
            RecipeDetail(name="Soup", ingredients=[], instructions=[], rating=6)

    def test_ingredient_name_required(self):
        with pytest.raises(ValidationError):
            RecipeDetail(name="Soup", ingredients=[{"name": "", "quantity": 1, "unit": "cup"}], instructions=[])


class TestConversationMessage:
    """Test message defaults and timestamp handling."""

    def test_defaults(self):
        message = ConversationMessage(role=MessageRole.USER, content="Hi")

        assert message.id
        assert message.status == MessageStatus.SENT
        assert message.created_at.tzinfo is not None

    def test_naive_timestamp_treated_as_utc(self):
        message = ConversationMessage(role="assistant", content="Hello", createdAt=datetime(2025, 1, 1, 12, 0))

        assert message.created_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestChatRequest:
    """Test chat request validation messages."""

    def test_valid_request(self):
        request = ChatRequest.model_validate(
            {"message": "  What can I cook?  ", "conversationId": "abc", "detectedIngredients": ["egg"]}
        )

        assert request.message == "What can I cook?"
        assert request.conversation_id == "abc"
        assert request.detected_ingredients == ["egg"]

    def test_non_string_message_rejected(self):
        with pytest.raises(ValidationError, match="Message is required and must be a string"):
            ChatRequest.model_validate({"message": 42})

    def test_blank_message_rejected(self):
        with pytest.raises(ValidationError, match="Message cannot be empty"):
            ChatRequest.model_validate({"message": "   "})

    def test_message_length_limit(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"message": "x" * 4001})


class TestMediaRequests:
    """Test vision, image and suggestion request schemas."""

    def test_vision_request_requires_image(self):
        with pytest.raises(ValidationError, match="imageBase64 is required"):
            VisionRequest.model_validate({"imageBase64": ""})

    def test_vision_request_mode_default(self):
        request = VisionRequest.model_validate({"imageBase64": "aGVsbG8="})

        assert request.mode == VisionMode.DISH

    def test_image_request_requires_recipe_name(self):
        with pytest.raises(ValidationError, match="recipeName"):
            ImageRequest.model_validate({"recipeName": "  "})

    def test_suggestion_request_cleans_ingredients(self):
        request = RecipeSuggestionRequest(ingredients=[" rice ", "", "egg"])

        assert request.ingredients == ["rice", "egg"]

    def test_generated_image_needs_payload(self):
        with pytest.raises(ValidationError):
            GeneratedImage()

    def test_generated_image_data_url(self):
        image = GeneratedImage(base64_data="aGVsbG8=", mime_type="image/jpeg")

        assert image.data_url() == "data:image/jpeg;base64,aGVsbG8="
        assert GeneratedImage(url="/placeholder.svg", mime_type="image/svg+xml").data_url() == "/placeholder.svg"


class TestVoiceRequest:
    """Test the tagged voice request union."""

    def test_discriminates_on_type(self):
        request = voice_adapter.validate_python(
            {"type": "step", "stepNumber": 2, "stepText": "Boil water", "totalSteps": 5}
        )

        assert isinstance(request, StepVoiceRequest)
        assert request.encouragement is False

    def test_custom_text(self):
        request = voice_adapter.validate_python({"type": "custom", "text": "Hello chef", "clientId": "player-1"})

        assert isinstance(request, CustomVoiceRequest)
        assert request.client_id == "player-1"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            voice_adapter.validate_python({"type": "song", "text": "la la"})

    def test_step_number_cannot_exceed_total(self):
        with pytest.raises(ValidationError, match="stepNumber cannot exceed totalSteps"):
            voice_adapter.validate_python({"type": "step", "stepNumber": 6, "stepText": "Serve", "totalSteps": 5})

    def test_blank_step_text_rejected(self):
        with pytest.raises(ValidationError, match="stepText cannot be empty"):
            voice_adapter.validate_python({"type": "coach", "stepNumber": 1, "stepText": " ", "totalSteps": 2})

    def test_ingredients_must_be_non_empty(self):
        with pytest.raises(ValidationError, match="non-empty"):
            IngredientsVoiceRequest(type="ingredients", ingredients=[])
