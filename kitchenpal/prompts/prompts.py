"""Prompt construction for the KitchenPal assistant.

Pure string building: no network calls, no side effects. The chat prompt is a
system instruction (persona, user preferences, formatting rules) plus a user turn
that carries as much recent history as the token budget allows followed by the
new message. History is truncated oldest-first; the new message is always kept
verbatim.
"""

import json
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from kitchenpal.models.models import (
    ConversationMessage,
    MessageRole,
    RecipeOption,
    UserPreferences,
    VisionMode,
)
from kitchenpal.utils.config import config

TRUNCATION_MARKER = "[Earlier conversation truncated]\n\n"
HISTORY_HEADER = "Previous conversation:\n"
NO_PREFERENCES = "- No specific preferences provided"

_RECIPE_JSON_EXAMPLE = {
    "recipes": [
        {
            "name": "Recipe Name",
            "description": "Brief description",
            "ingredients": [{"name": "ingredient", "quantity": 1, "unit": "cup"}],
            "instructions": ["Step 1", "Step 2"],
            "prepTime": "10 mins",
            "cookTime": "20 mins",
            "servings": 4,
            "difficulty": "Easy|Medium|Hard",
        }
    ]
}


@dataclass
class BuiltPrompt:
    """Provider-ready prompt pair plus truncation bookkeeping."""

    system_instruction: str
    user_turn: str
    dropped_messages: int = 0
    estimated_tokens: int = 0

    @property
    def truncated(self) -> bool:
        return self.dropped_messages > 0


def estimate_token_count(text: str, chars_per_token: int = config.CHARS_PER_TOKEN) -> int:
    """Rough token estimate: one token per ``chars_per_token`` characters."""
    return math.ceil(len(text) / chars_per_token)


def is_within_token_limit(
    text: str,
    max_tokens: int = config.PROMPT_TOKEN_BUDGET,
    chars_per_token: int = config.CHARS_PER_TOKEN,
) -> bool:
    return estimate_token_count(text, chars_per_token) <= max_tokens


def format_preferences(preferences: Optional[UserPreferences]) -> str:
    """Render the "User Preferences" block. Tags are quoted verbatim."""
    lines: list[str] = []
    if preferences:
        if preferences.allergies:
            lines.append(f"- Allergies: {', '.join(preferences.allergies)}")
        if preferences.dietary:
            lines.append(f"- Dietary Restrictions: {', '.join(preferences.dietary)}")
        if preferences.cuisine:
            lines.append(f"- Cuisine Preferences: {', '.join(preferences.cuisine)}")
        if preferences.cooking_skill:
            lines.append(f"- Cooking Skill: {preferences.cooking_skill.value}")
    return "User Preferences:\n" + ("\n".join(lines) if lines else NO_PREFERENCES)


def _get_output_format_section() -> str:
    example = json.dumps(_RECIPE_JSON_EXAMPLE, indent=2)
    return f"""Response Format:
- Answer conversationally in plain text. Keep answers short and practical.
- When you suggest one or more recipes, append a single JSON code block after your text,
  using exactly this structure:
```json
{example}
```
- Quantities must be numbers. Never wrap plain conversational answers in JSON."""


def build_system_prompt(preferences: Optional[UserPreferences] = None) -> str:
    """Build the system instruction: persona, preferences, guidelines, format rules."""
    return f"""You are KitchenPal, a friendly and knowledgeable cooking assistant.
Your role is to help users discover recipes based on their available ingredients,
dietary preferences, and cooking skill level.

{format_preferences(preferences)}

Guidelines:
1. Always consider user allergies and dietary restrictions
2. Suggest recipes appropriate for the user's skill level
3. Provide clear, step-by-step instructions
4. Include prep time, cook time, and serving size
5. Be encouraging and supportive
6. When suggesting recipes, format them as structured JSON as described below

{_get_output_format_section()}"""


def _format_message(message: ConversationMessage) -> str:
    role = "User" if message.role == MessageRole.USER else "Assistant"
    return f"{role}: {message.content}"


def format_conversation_history(
    messages: Optional[Iterable[ConversationMessage]],
    max_chars: int,
) -> tuple[str, int]:
    """Format history chronologically, dropping the oldest turns beyond ``max_chars``.

    Kept turns are always the newest contiguous suffix of the history, so a turn
    that was dropped can never reappear after a newer one was dropped.

    Args:
        messages: Prior messages in any order; sorted by ``created_at``.
        max_chars: Character budget for the returned text.

    Returns:
        Tuple of (formatted history, number of dropped messages).
    """
    ordered = sorted(messages or [], key=lambda m: m.created_at)
    if not ordered:
        return "", 0

    formatted = [_format_message(m) for m in ordered]
    full = "\n\n".join(formatted)
    if len(full) <= max_chars:
        return full, 0

    available = max_chars - len(TRUNCATION_MARKER)
    kept: list[str] = []
    used = 0
    for line in reversed(formatted):
        cost = len(line) + 2  # "\n\n" separator
        if used + cost > available:
            break
        kept.append(line)
        used += cost
    kept.reverse()

    dropped = len(formatted) - len(kept)
    if not kept:
        return "", dropped
    return TRUNCATION_MARKER + "\n\n".join(kept), dropped


def build_prompt(
    message: str,
    history: Optional[Sequence[ConversationMessage]] = None,
    preferences: Optional[UserPreferences] = None,
    token_budget: int = config.PROMPT_TOKEN_BUDGET,
    chars_per_token: int = config.CHARS_PER_TOKEN,
) -> BuiltPrompt:
    """Build the chat prompt within ``token_budget``.

    The system instruction and the new message are fixed costs; history gets
    whatever remains. If the new message alone exceeds the budget it is still
    sent in full with no history.
    """
    system_instruction = build_system_prompt(preferences)
    newest = f"User: {message}\n\nAssistant:"

    max_chars = token_budget * chars_per_token
    history_budget = max_chars - len(system_instruction) - len(newest) - len(HISTORY_HEADER) - 2
    history_text, dropped = format_conversation_history(history, max(history_budget, 0))

    user_turn = f"{HISTORY_HEADER}{history_text}\n\n{newest}" if history_text else newest
    return BuiltPrompt(
        system_instruction=system_instruction,
        user_turn=user_turn,
        dropped_messages=dropped,
        estimated_tokens=estimate_token_count(system_instruction + user_turn, chars_per_token),
    )


def build_recipe_prompt(ingredients: Sequence[str], preferences: Optional[UserPreferences] = None) -> str:
    """User turn asking for recipe suggestions from a list of ingredients."""
    prompt = f"I have the following ingredients: {', '.join(ingredients)}\n\n"
    prompt += "Please suggest recipes I can make with these ingredients.\n\n"

    constraints: list[str] = []
    if preferences:
        if preferences.allergies:
            constraints.append(f"Avoid recipes containing: {', '.join(preferences.allergies)}")
        if preferences.dietary:
            constraints.append(f"Dietary requirements: {', '.join(preferences.dietary)}")
        if preferences.cuisine:
            constraints.append(f"Preferred cuisines: {', '.join(preferences.cuisine)}")
        if preferences.cooking_skill:
            constraints.append(f"Skill level: {preferences.cooking_skill.value}")
    if constraints:
        prompt += "Constraints:\n" + "\n".join(f"- {c}" for c in constraints) + "\n\n"

    prompt += "Please provide recipes in the following JSON format:\n"
    prompt += json.dumps(_RECIPE_JSON_EXAMPLE, indent=2)
    return prompt


def build_recipe_detail_prompt(option: RecipeOption) -> str:
    """User turn asking for the full recipe behind a recipe option."""
    prompt = f"Give me the complete recipe for {option.name}."
    if option.short_description:
        prompt += f" {option.short_description}"
    prompt += "\n\nReturn exactly one recipe in the following JSON format:\n"
    prompt += json.dumps(_RECIPE_JSON_EXAMPLE, indent=2)
    return prompt


def build_image_prompt(recipe_name: str, description: Optional[str] = None) -> str:
    prompt = f"A professional food photography style image of {recipe_name}."
    if description:
        prompt += f" {description.rstrip('.')}."
    prompt += (
        " The dish is beautifully plated on a clean white plate, "
        "with soft natural lighting, shallow depth of field, "
        "appetizing and realistic appearance, high-quality restaurant presentation."
    )
    return prompt


_VISION_INGREDIENTS_PROMPT = """You are a culinary vision assistant helping users find recipes based on what's in their fridge.

Analyze this image of food items/ingredients and:
1. List all the ingredients you can identify
2. Be specific about quantities if visible (e.g., "3 eggs", "1 onion")
3. Include any condiments, sauces, or packaged items you see

Respond ONLY as JSON with this exact format:
{
  "ingredients": ["ingredient 1", "ingredient 2"],
  "summary": "Brief description of what you see"
}

Be thorough - identify everything that could be used in cooking."""

_VISION_DISH_PROMPT = """You are a culinary vision assistant. Given a food photo, identify:
- The most likely dish name (or main ingredient if not a full dish).
- A concise one-sentence description.
- Key ingredients you can identify in the dish.

Respond ONLY as JSON with this exact format:
{
  "name": "dish name",
  "summary": "brief description",
  "ingredients": ["ingredient1", "ingredient2"]
}"""


def build_vision_prompt(mode: VisionMode, description: Optional[str] = None) -> tuple[str, str]:
    """Return (instruction, user text) for a vision request in ``mode``."""
    instruction = _VISION_INGREDIENTS_PROMPT if mode == VisionMode.INGREDIENTS else _VISION_DISH_PROMPT
    if description:
        user_text = f"{description}\n\nAnalyze this image:"
    elif mode == VisionMode.INGREDIENTS:
        user_text = "Identify all the ingredients in this fridge/kitchen image:"
    else:
        user_text = "Identify this food and describe it:"
    return instruction, user_text
