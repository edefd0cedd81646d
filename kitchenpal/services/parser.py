"""Extraction of structured data from provider replies.

Provider replies are free text that may contain JSON, often wrapped in markdown
code fences. Parsing is a two-stage strategy:

1. Strict: strip fences, ``json.loads`` the whole text, then the outermost
   embedded ``{...}`` object.
2. Heuristic: ``first_line_name`` takes the first non-empty line as a name.
   This is a best-effort guess at provider intent, not a grammar.

Nothing in this module raises on malformed input. Each ``ParseResult`` records
which strategy produced it so fallback frequency shows up in the logs.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from kitchenpal.models.models import (
    Difficulty,
    QuickReply,
    RecipeDetail,
    RecipeOption,
    VisionMode,
    VisionResponse,
)
from kitchenpal.utils.logger import logger

STRATEGY_JSON = "json"
STRATEGY_EMBEDDED_JSON = "embedded_json"
STRATEGY_HEURISTIC = "heuristic"
STRATEGY_EMPTY = "empty"

DEFAULT_DISH_NAME = "Unknown dish"
SHORT_DESCRIPTION_LENGTH = 120

_LEADING_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?")
_TRAILING_FENCE = re.compile(r"\n?\s*```\s*$")
_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n(.*?)\n?\s*```", re.DOTALL)
_EMBEDDED_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_HEADING_MARKERS = re.compile(r"^[#>*\-\s]+|[*_`]+$")
_MINUTES = re.compile(r"(\d+(?:\.\d+)?)\s*(h|hr|hrs|hour|hours|m|min|mins|minute|minutes)\b", re.IGNORECASE)


@dataclass
class ParseResult:
    """Outcome of parsing one provider reply.

    Attributes:
        data: Parsed JSON value (dict or list) or None.
        strategy: Which stage produced the result.
        fallback_name: Heuristic name when no JSON was found.
        text: Reply text with any JSON block removed, for display.
    """

    data: Any = None
    strategy: str = STRATEGY_EMPTY
    fallback_name: Optional[str] = None
    text: str = ""


@dataclass
class ParsedReply:
    """Structured view of an assistant reply."""

    content: str
    recipes: list[RecipeDetail] = field(default_factory=list)
    recipe_options: list[RecipeOption] = field(default_factory=list)
    quick_replies: list[QuickReply] = field(default_factory=list)
    strategy: str = STRATEGY_EMPTY


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence, then trim."""
    if not text:
        return ""
    stripped = _LEADING_FENCE.sub("", text, count=1)
    stripped = _TRAILING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        return None


def first_line_name(text: str) -> Optional[str]:
    """Heuristic fallback: the first non-empty line, without markdown markers.

    Known imprecision: a reply that opens with a greeting ("Sure! Here's...")
    yields the greeting as the name.
    """
    for line in (text or "").splitlines():
        candidate = _HEADING_MARKERS.sub("", line.strip()).strip()
        if candidate:
            return candidate
    return None


def parse_structured(raw: str) -> ParseResult:
    """Two-stage parse of a provider reply. Never raises."""
    if not raw or not raw.strip():
        return ParseResult()

    # Stage 1a: whole reply (fences removed) is JSON
    unfenced = strip_code_fences(raw)
    data = _loads(unfenced)
    if isinstance(data, (dict, list)):
        return ParseResult(data=data, strategy=STRATEGY_JSON, text="")

    # Stage 1b: prose with a fenced block or an embedded object
    block = _FENCED_BLOCK.search(raw)
    if block:
        data = _loads(block.group(1).strip())
        if isinstance(data, (dict, list)):
            text = (raw[: block.start()] + raw[block.end():]).strip()
            return ParseResult(data=data, strategy=STRATEGY_EMBEDDED_JSON, text=text)
    match = _EMBEDDED_OBJECT.search(raw)
    if match:
        data = _loads(match.group())
        if isinstance(data, dict):
            text = (raw[: match.start()] + raw[match.end():]).strip()
            return ParseResult(data=data, strategy=STRATEGY_EMBEDDED_JSON, text=text)

    # Stage 2: heuristic
    name = first_line_name(unfenced)
    logger.debug("Reply contained no JSON, using first-line heuristic", extra={"strategy": STRATEGY_HEURISTIC})
    return ParseResult(strategy=STRATEGY_HEURISTIC, fallback_name=name, text=raw.strip())


def normalize_difficulty(value: Any) -> Difficulty:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("easy", "beginner", "simple"):
            return Difficulty.EASY
        if lowered in ("hard", "difficult", "advanced", "expert"):
            return Difficulty.HARD
    return Difficulty.MEDIUM


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = re.search(r"\d+", value)
        if digits:
            return int(digits.group())
    return None


def _recipe_from_dict(raw: dict) -> Optional[RecipeDetail]:
    """Validate a recipe-shaped dict; None if it lacks name, ingredients or instructions."""
    if not isinstance(raw, dict):
        return None
    if not raw.get("name") or not isinstance(raw.get("ingredients"), list):
        return None
    if not isinstance(raw.get("instructions"), list):
        return None

    servings = _as_int(raw.get("servings"))
    rating = raw.get("rating")
    try:
        return RecipeDetail(
            name=str(raw["name"]),
            description=str(raw.get("description") or ""),
            ingredients=raw["ingredients"],
            instructions=[str(step) for step in raw["instructions"]],
            prep_time=str(raw.get("prepTime") or raw.get("prep_time") or ""),
            cook_time=str(raw.get("cookTime") or raw.get("cook_time") or ""),
            servings=servings if servings and servings > 0 else 4,
            difficulty=normalize_difficulty(raw.get("difficulty")),
            calories=_as_int(raw.get("calories")),
            rating=rating if isinstance(rating, (int, float)) and 0 <= rating <= 5 else None,
        )
    except ValidationError as e:
        logger.debug(f"Discarding malformed recipe {raw.get('name')!r}: {e.error_count()} validation errors")
        return None


def extract_recipes(data: Any) -> list[RecipeDetail]:
    """Recipes from parsed JSON: ``{"recipes": [...]}``, a bare list, or a single recipe object."""
    if isinstance(data, dict):
        candidates = data["recipes"] if isinstance(data.get("recipes"), list) else [data]
    elif isinstance(data, list):
        candidates = data
    else:
        return []
    recipes = [_recipe_from_dict(item) for item in candidates]
    return [recipe for recipe in recipes if recipe is not None]


def _minutes(value: str) -> Optional[int]:
    total = 0.0
    found = False
    for amount, unit in _MINUTES.findall(value or ""):
        found = True
        total += float(amount) * (60 if unit.lower().startswith("h") else 1)
    return int(total) if found else None


def estimate_total_time(prep_time: str, cook_time: str) -> str:
    """Combine prep and cook times into one display string."""
    prep, cook = _minutes(prep_time), _minutes(cook_time)
    if prep is not None and cook is not None:
        return f"{prep + cook} mins"
    return cook_time or prep_time


def _short_description(description: str) -> str:
    if len(description) <= SHORT_DESCRIPTION_LENGTH:
        return description
    return description[: SHORT_DESCRIPTION_LENGTH - 3].rstrip() + "..."


def to_recipe_options(recipes: list[RecipeDetail]) -> list[RecipeOption]:
    return [
        RecipeOption(
            id=f"recipe-{index}",
            name=recipe.name,
            short_description=_short_description(recipe.description),
            estimated_time=estimate_total_time(recipe.prep_time, recipe.cook_time),
            difficulty=recipe.difficulty,
        )
        for index, recipe in enumerate(recipes, start=1)
    ]


def extract_quick_replies(data: Any) -> list[QuickReply]:
    """Quick replies the provider may include as ``quickReplies`` (strings or objects)."""
    if not isinstance(data, dict):
        return []
    raw = data.get("quickReplies") or data.get("quick_replies")
    if not isinstance(raw, list):
        return []
    replies: list[QuickReply] = []
    for index, item in enumerate(raw, start=1):
        if isinstance(item, str) and item.strip():
            replies.append(QuickReply(id=f"qr-{index}", label=item.strip(), value=item.strip()))
        elif isinstance(item, dict) and item.get("label"):
            label = str(item["label"])
            replies.append(QuickReply(id=str(item.get("id") or f"qr-{index}"), label=label,
                                      value=str(item.get("value") or label)))
    return replies


def _display_content(raw: str, result: ParseResult, recipes: list[RecipeDetail]) -> str:
    if result.strategy == STRATEGY_EMBEDDED_JSON and result.text:
        return result.text
    if result.strategy == STRATEGY_JSON:
        if isinstance(result.data, dict):
            for key in ("content", "message", "response"):
                if isinstance(result.data.get(key), str) and result.data[key].strip():
                    return result.data[key].strip()
        if recipes:
            names = ", ".join(recipe.name for recipe in recipes)
            return f"Here are some recipes you could try: {names}."
    return raw.strip()


def parse_reply(raw: str) -> ParsedReply:
    """Parse a chat reply into display text, recipes, options and quick replies."""
    result = parse_structured(raw)
    recipes = extract_recipes(result.data) if result.data is not None else []
    parsed = ParsedReply(
        content=_display_content(raw or "", result, recipes),
        recipes=recipes,
        recipe_options=to_recipe_options(recipes),
        quick_replies=extract_quick_replies(result.data),
        strategy=result.strategy,
    )
    logger.debug(f"Parsed reply: {len(recipes)} recipe(s)", extra={"strategy": result.strategy})
    return parsed


def parse_vision_reply(raw: str, mode: VisionMode = VisionMode.DISH) -> VisionResponse:
    """Parse a vision reply into name / summary / ingredients.

    Falls back to the first line as the dish name and the whole text as the
    summary when the reply is not JSON.
    """
    result = parse_structured(raw)
    content = strip_code_fences(raw or "")
    name, summary, ingredients = DEFAULT_DISH_NAME, content, []

    if isinstance(result.data, dict):
        data = result.data
        if data.get("name"):
            name = str(data["name"])
        if data.get("summary"):
            summary = str(data["summary"])
        if isinstance(data.get("ingredients"), list):
            ingredients = [str(item).strip() for item in data["ingredients"] if str(item).strip()]
    elif result.strategy == STRATEGY_HEURISTIC and result.fallback_name:
        name = result.fallback_name

    if mode == VisionMode.INGREDIENTS and name == DEFAULT_DISH_NAME:
        return VisionResponse(name=None, summary=summary, ingredients=ingredients)
    return VisionResponse(name=name, summary=summary, ingredients=ingredients)
