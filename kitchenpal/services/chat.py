"""Chat pipeline: message → prompt → provider → parsed reply → quick replies.

``ChatPipeline`` owns the turn lifecycle of a conversation:

1. pre-hooks rewrite the turn input
2. the user message is stored as ``pending``
3. the provider chain is called through the text rate limiter; transient
   failures are retried with backoff, then the next provider is tried
4. the reply is parsed, post-hooks run, the assistant message is stored and the
   user message becomes ``sent`` (or ``failed`` if every attempt failed)

Turns of one conversation are strictly sequential (one asyncio.Lock per
conversation); different conversations run in parallel.
"""

import asyncio
import json
import time
import weakref
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from kitchenpal.hooks.hooks import (
    PostHook,
    PreHook,
    TurnInput,
    TurnOutput,
    get_post_hooks,
    get_pre_hooks,
)
from kitchenpal.models.models import (
    ConversationMessage,
    MessageRole,
    MessageStatus,
    RecipeDetail,
    RecipeOption,
    RecipeSuggestionResponse,
    UserPreferences,
)
from kitchenpal.prompts.prompts import build_recipe_detail_prompt, build_recipe_prompt, build_system_prompt
from kitchenpal.services.cache import ContentCache, ingredients_cache_key, recipe_cache_key
from kitchenpal.services.conversations import ConversationStore
from kitchenpal.services.errors import ErrorKind, ServiceError, with_retry
from kitchenpal.services.parser import extract_recipes, parse_structured, to_recipe_options
from kitchenpal.services.providers import TextProvider
from kitchenpal.services.rate_limiter import RateLimiter
from kitchenpal.utils.config import Config, config
from kitchenpal.utils.logger import logger

T = TypeVar("T")


class RecipeNotFound(LookupError):
    pass


class ChatPipeline:
    """Orchestrates chat turns, recipe details and ingredient-based suggestions."""

    def __init__(
        self,
        providers: Sequence[TextProvider],
        store: ConversationStore,
        rate_limiter: Optional[RateLimiter] = None,
        recipe_cache: Optional[ContentCache] = None,
        settings: Config = config,
        pre_hooks: Optional[Sequence[PreHook]] = None,
        post_hooks: Optional[Sequence[PostHook]] = None,
    ) -> None:
        if not providers:
            raise ValueError("ChatPipeline needs at least one text provider")
        self.providers = list(providers)
        self.store = store
        self.rate_limiter = rate_limiter
        self.recipe_cache = recipe_cache
        self.settings = settings
        self.pre_hooks = list(pre_hooks) if pre_hooks is not None else get_pre_hooks()
        self.post_hooks = list(post_hooks) if post_hooks is not None else get_post_hooks()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    def _session_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def _limited(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.rate_limiter is None:
            return await operation()
        return await self.rate_limiter.execute(operation)

    async def _call_providers(
        self,
        call: Callable[[TextProvider], Awaitable[T]],
        operation_name: str,
    ) -> tuple[T, TextProvider, int]:
        """Run ``call`` against the provider chain.

        Each provider gets the retry policy; a classified failure moves on to the
        next provider, except GENERATION_FAILED which is a refusal of the request
        itself.

        Returns:
            Tuple of (result, provider that answered, total attempts).
        """
        attempts = 0
        last_error: Optional[ServiceError] = None

        for index, provider in enumerate(self.providers):

            async def attempt(provider: TextProvider = provider) -> T:
                nonlocal attempts
                attempts += 1
                return await self._limited(lambda: call(provider))

            try:
                result = await with_retry(
                    attempt,
                    max_retries=self.settings.MAX_RETRIES,
                    base_delay=self.settings.DELAY_BETWEEN_RETRIES,
                    max_delay=self.settings.MAX_BACKOFF_SECONDS,
                    exponential=self.settings.EXPONENTIAL_BACKOFF,
                    operation_name=f"{provider.name} {operation_name}",
                )
                return result, provider, attempts
            except ServiceError as e:
                last_error = e
                if e.kind == ErrorKind.GENERATION_FAILED or index == len(self.providers) - 1:
                    break
                logger.warning(
                    f"{provider.name} failed with {e.kind.value}, falling back to {self.providers[index + 1].name}",
                    extra={"provider": provider.name, "error_kind": e.kind.value},
                )

        if last_error is None:
            raise ServiceError(ErrorKind.API_KEY_MISSING, "No text provider is configured")
        raise last_error

    # ------------------------------------------------------------------
    # Chat turns
    # ------------------------------------------------------------------

    async def send_message(
        self,
        message: str,
        preferences: Optional[UserPreferences] = None,
        conversation_id: Optional[str] = None,
        history: Optional[Sequence[ConversationMessage]] = None,
        detected_ingredients: Optional[Sequence[str]] = None,
    ) -> TurnOutput:
        """Run one chat turn.

        Args:
            message: User text; must not be blank.
            preferences: Constraints quoted into the system instruction.
            conversation_id: Existing conversation; a new one is created when unknown or missing.
            history: Client-held history used to seed a conversation this process has not seen.
            detected_ingredients: Ingredients recognised from a photo.

        Raises:
            ValueError: Blank message.
            ServiceError: Every provider failed; the user message is marked failed.
        """
        if not message or not message.strip():
            raise ValueError("Message cannot be empty")

        turn = TurnInput(
            message=message,
            preferences=preferences,
            detected_ingredients=list(detected_ingredients or []),
            conversation_id=conversation_id,
        )
        for hook in self.pre_hooks:
            hook(turn)

        is_new = not (conversation_id and self.store.exists(conversation_id))
        conversation_id = self.store.create(conversation_id)
        if turn.preferences is not None:
            self.store.set_preferences(conversation_id, turn.preferences)
        if is_new and history:
            for past in sorted(history, key=lambda m: m.created_at):
                self.store.append(conversation_id, past)

        async with self._session_lock(conversation_id):
            prior = [m for m in self.store.messages(conversation_id) if m.status != MessageStatus.FAILED]
            user_message = self.store.append(
                conversation_id,
                ConversationMessage(role=MessageRole.USER, content=turn.message, status=MessageStatus.PENDING),
            )
            return await self._complete_turn(conversation_id, user_message, prior, turn.preferences)

    async def retry_message(
        self,
        conversation_id: str,
        message_id: str,
        preferences: Optional[UserPreferences] = None,
    ) -> TurnOutput:
        """Re-run a failed user message in place (status failed → pending → sent/failed).

        Without ``preferences`` the ones last sent for the conversation apply.

        Raises:
            ConversationNotFound, MessageNotFound: Unknown ids.
            ValueError: The message is not a failed user message.
        """
        async with self._session_lock(conversation_id):
            user_message = self.store.get(conversation_id, message_id)
            if user_message.role != MessageRole.USER or user_message.status != MessageStatus.FAILED:
                raise ValueError("Only failed user messages can be retried")
            prior = self.store.history_before(conversation_id, message_id)
            if preferences is None:
                preferences = self.store.preferences(conversation_id)
            self.store.update_status(conversation_id, message_id, MessageStatus.PENDING)
            logger.info("Retrying failed message", extra={"conversation_id": conversation_id})
            return await self._complete_turn(conversation_id, user_message, prior, preferences)

    async def _complete_turn(
        self,
        conversation_id: str,
        user_message: ConversationMessage,
        prior: Sequence[ConversationMessage],
        preferences: Optional[UserPreferences],
    ) -> TurnOutput:
        started = time.perf_counter()
        try:
            response, provider, attempts = await self._call_providers(
                lambda p: p.generate_response(user_message.content, prior, preferences),
                "chat turn",
            )
        except ServiceError as e:
            self.store.update_status(conversation_id, user_message.id, MessageStatus.FAILED)
            logger.warning(
                f"Chat turn failed: {e.detail}",
                extra={"conversation_id": conversation_id, "error_kind": e.kind.value},
            )
            raise
        except asyncio.CancelledError:
            self.store.update_status(conversation_id, user_message.id, MessageStatus.FAILED)
            raise

        self.store.update_status(conversation_id, user_message.id, MessageStatus.SENT)

        assistant = ConversationMessage(role=MessageRole.ASSISTANT, content=response.content)
        output = TurnOutput(
            conversation_id=conversation_id,
            message_id=assistant.id,
            user_message=user_message.content,
            response=response,
            provider=provider.name,
            started_at=started,
            attempts=attempts,
        )
        for hook in self.post_hooks:
            hook(output)

        assistant.content = output.response.content
        assistant.quick_replies = output.response.quick_replies
        assistant.recipe_options = output.response.recipe_options
        self.store.append(conversation_id, assistant)

        if output.response.recipes and output.response.recipe_options:
            self.store.remember_recipes(
                conversation_id,
                assistant.id,
                {option.id: recipe for option, recipe in zip(output.response.recipe_options, output.response.recipes)},
            )
            if self.recipe_cache is not None:
                for recipe in output.response.recipes:
                    self.recipe_cache.set(recipe_cache_key(recipe.name), recipe)
        return output

    # ------------------------------------------------------------------
    # Recipes
    # ------------------------------------------------------------------

    def _find_option(self, conversation_id: str, option_id: str, message_id: Optional[str]) -> RecipeOption:
        for message in reversed(self.store.messages(conversation_id)):
            if message_id is not None and message.id != message_id:
                continue
            for option in message.recipe_options or []:
                if option.id == option_id:
                    return option
        raise RecipeNotFound(option_id)

    async def get_recipe_detail(
        self,
        conversation_id: str,
        option_id: str,
        message_id: Optional[str] = None,
        preferences: Optional[UserPreferences] = None,
    ) -> RecipeDetail:
        """Full recipe behind a recipe option, asking the provider only when needed.

        Without ``preferences`` the ones last sent for the conversation apply.

        Raises:
            RecipeNotFound: No option with that id in the conversation.
            ServiceError: The provider failed or returned no recipe.
        """
        recipe = self.store.recipe(conversation_id, option_id, message_id)
        if recipe is not None:
            return recipe

        option = self._find_option(conversation_id, option_id, message_id)
        if preferences is None:
            preferences = self.store.preferences(conversation_id)
        key = recipe_cache_key(option.name)
        if self.recipe_cache is not None:
            cached = self.recipe_cache.get(key)
            if cached is not None:
                return cached

        system_instruction = build_system_prompt(preferences)
        raw, _, _ = await self._call_providers(
            lambda p: p.generate_text(system_instruction, build_recipe_detail_prompt(option)),
            "recipe detail",
        )
        recipes = extract_recipes(parse_structured(raw).data)
        if not recipes:
            raise ServiceError(ErrorKind.INVALID_RESPONSE, f"No recipe found in reply for {option.name!r}")

        recipe = recipes[0]
        if self.recipe_cache is not None:
            self.recipe_cache.set(key, recipe)
        return recipe

    async def suggest_recipes(
        self,
        ingredients: Sequence[str],
        preferences: Optional[UserPreferences] = None,
    ) -> RecipeSuggestionResponse:
        """Recipe suggestions for a set of ingredients, cached per ingredient set and preferences.

        On provider failure a cached result for the same key is returned if one
        exists; otherwise the classified error is raised. A reply without any
        valid recipe raises INVALID_RESPONSE.
        """
        preference_key = json.dumps(preferences.model_dump(mode="json"), sort_keys=True) if preferences else ""
        key = ingredients_cache_key(ingredients, extra=preference_key)

        if self.recipe_cache is not None:
            cached = self.recipe_cache.get(key)
            if cached is not None:
                logger.info(f"Recipe suggestions served from cache for {len(ingredients)} ingredient(s)")
                return RecipeSuggestionResponse(recipes=cached, recipe_options=to_recipe_options(cached), cached=True)

        system_instruction = build_system_prompt(preferences)
        user_turn = build_recipe_prompt(ingredients, preferences)
        try:
            raw, _, _ = await self._call_providers(
                lambda p: p.generate_text(system_instruction, user_turn),
                "recipe suggestions",
            )
            recipes = extract_recipes(parse_structured(raw).data)
            if not recipes:
                raise ServiceError(ErrorKind.INVALID_RESPONSE, "No valid recipes in provider reply")
        except ServiceError:
            if self.recipe_cache is not None:
                cached = self.recipe_cache.get(key)
                if cached is not None:
                    logger.warning("Recipe suggestions failed, serving cached result")
                    return RecipeSuggestionResponse(
                        recipes=cached, recipe_options=to_recipe_options(cached), cached=True
                    )
            raise

        if self.recipe_cache is not None:
            self.recipe_cache.set(key, recipes)
        return RecipeSuggestionResponse(recipes=recipes, recipe_options=to_recipe_options(recipes))

    def messages(self, conversation_id: str) -> list[ConversationMessage]:
        return self.store.messages(conversation_id)


