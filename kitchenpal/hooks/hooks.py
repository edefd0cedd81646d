"""Pre-turn and post-turn hooks for the chat pipeline.

Pre-hook Pipeline (run before the prompt is built, may rewrite the turn input):
1. normalize_message_pre_hook - Trims the message and collapses blank-line runs
2. append_detected_ingredients_pre_hook - Appends ingredients found by /api/vision

Post-hook Pipeline (run after a successful provider reply):
1. contextual_quick_replies_post_hook - Adds keyword-based quick replies when the reply has none
2. inject_metadata_post_hook - Adds provider, timing and parse details to the turn metadata
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from kitchenpal.models.models import AIResponse, QuickReply, UserPreferences
from kitchenpal.utils.logger import logger

_BLANK_LINES = re.compile(r"\n{3,}")


@dataclass
class TurnInput:
    """Mutable input of one chat turn, handed to each pre-hook in order."""

    message: str
    preferences: Optional[UserPreferences] = None
    detected_ingredients: list[str] = field(default_factory=list)
    conversation_id: Optional[str] = None


@dataclass
class TurnOutput:
    """Result of one chat turn, handed to each post-hook in order."""

    conversation_id: str
    message_id: str
    user_message: str
    response: AIResponse
    provider: str
    started_at: float = field(default_factory=time.perf_counter)
    attempts: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


PreHook = Callable[[TurnInput], None]
PostHook = Callable[[TurnOutput], None]


def contextual_quick_replies(message: str) -> list[QuickReply]:
    """Keyword-based follow-up suggestions for a user message."""
    lowered = message.lower()
    if "recipe" in lowered or "cook" in lowered:
        labels = [("More recipes", "Show me more recipes"),
                  ("Different cuisine", "Show me recipes from a different cuisine"),
                  ("Quick meals", "Show me quick meals under 30 minutes")]
    elif "ingredient" in lowered:
        labels = [("I have chicken", "I have chicken"),
                  ("I have vegetables", "I have vegetables"),
                  ("Vegetarian options", "Show me vegetarian options")]
    else:
        labels = [("Show popular recipes", "Show me popular recipes"),
                  ("Quick meals", "Show me quick meals under 30 minutes"),
                  ("Healthy options", "Show me healthy options")]
    return [QuickReply(id=f"qr-{index}", label=label, value=value)
            for index, (label, value) in enumerate(labels, start=1)]


def error_quick_replies(message: str) -> list[QuickReply]:
    """Quick replies attached to a failed turn: retry the same message or browse."""
    return [
        QuickReply(id="retry", label="Try again", value=message),
        QuickReply(id="popular", label="Show popular recipes", value="Show me popular recipes"),
    ]


def normalize_message_pre_hook(turn: TurnInput) -> None:
    """Pre-hook: trim the message and collapse runs of blank lines."""
    turn.message = _BLANK_LINES.sub("\n\n", turn.message.strip())


def append_detected_ingredients_pre_hook(turn: TurnInput) -> None:
    """Pre-hook: append ingredients recognised from a photo as a text block.

    The message becomes ``"<message>\\n\\n[Detected Ingredients] a, b"`` so the
    provider sees the ingredients without any image payload.
    """
    ingredients = [item.strip() for item in turn.detected_ingredients if item and item.strip()]
    if not ingredients:
        return
    turn.message = f"{turn.message}\n\n[Detected Ingredients] {', '.join(ingredients)}"
    logger.info(f"Pre-hook: appended {len(ingredients)} detected ingredient(s)",
                extra={"conversation_id": turn.conversation_id})


def contextual_quick_replies_post_hook(turn: TurnOutput) -> None:
    """Post-hook: make sure every assistant turn offers quick replies."""
    if turn.response.quick_replies:
        return
    turn.response.quick_replies = contextual_quick_replies(turn.user_message)


def inject_metadata_post_hook(turn: TurnOutput) -> None:
    """Post-hook: record provider, attempts, recipe count and execution time."""
    execution_time_ms = int((time.perf_counter() - turn.started_at) * 1000)
    turn.metadata.update(
        {
            "provider": turn.provider,
            "attempts": turn.attempts,
            "recipe_count": len(turn.response.recipes or []),
            "execution_time_ms": execution_time_ms,
        }
    )
    logger.info(
        f"Post-hook: turn completed with {turn.metadata['recipe_count']} recipe(s)",
        extra={"conversation_id": turn.conversation_id, "provider": turn.provider, "latency_ms": execution_time_ms},
    )


def get_pre_hooks() -> List[PreHook]:
    """Pre-hooks in execution order."""
    hooks: List[PreHook] = [normalize_message_pre_hook, append_detected_ingredients_pre_hook]
    logger.debug("Registered pre-hooks: normalize message, detected ingredients")
    return hooks


def get_post_hooks() -> List[PostHook]:
    """Post-hooks in execution order."""
    hooks: List[PostHook] = [contextual_quick_replies_post_hook, inject_metadata_post_hook]
    logger.debug("Registered post-hooks: contextual quick replies, metadata injection")
    return hooks
