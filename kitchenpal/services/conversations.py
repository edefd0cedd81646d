"""Session-scoped conversation history.

Messages are appended in order and never removed; the only mutation allowed
afterwards is a status change (pending → sent / failed, failed → pending on
retry). Recipes parsed from an assistant turn are kept next to the session so an
option can be opened later without another provider call.
"""

import threading
import uuid
from typing import Optional

from kitchenpal.models.models import ConversationMessage, MessageStatus, RecipeDetail, UserPreferences


class ConversationNotFound(KeyError):
    pass


class MessageNotFound(KeyError):
    pass


class ConversationStore:
    """In-memory store keyed by conversation id."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ConversationMessage]] = {}
        self._recipes: dict[str, dict[str, dict[str, RecipeDetail]]] = {}
        self._preferences: dict[str, UserPreferences] = {}
        self._lock = threading.Lock()

    def create(self, conversation_id: Optional[str] = None) -> str:
        conversation_id = conversation_id or uuid.uuid4().hex
        with self._lock:
            self._messages.setdefault(conversation_id, [])
            self._recipes.setdefault(conversation_id, {})
        return conversation_id

    def exists(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._messages

    def append(self, conversation_id: str, message: ConversationMessage) -> ConversationMessage:
        with self._lock:
            if conversation_id not in self._messages:
                raise ConversationNotFound(conversation_id)
            self._messages[conversation_id].append(message)
        return message

    def messages(self, conversation_id: str) -> list[ConversationMessage]:
        """Snapshot of the conversation in insertion order."""
        with self._lock:
            if conversation_id not in self._messages:
                raise ConversationNotFound(conversation_id)
            return list(self._messages[conversation_id])

    def get(self, conversation_id: str, message_id: str) -> ConversationMessage:
        for message in self.messages(conversation_id):
            if message.id == message_id:
                return message
        raise MessageNotFound(message_id)

    def history_before(self, conversation_id: str, message_id: str) -> list[ConversationMessage]:
        """Messages preceding ``message_id``, excluding failed user turns."""
        history: list[ConversationMessage] = []
        for message in self.messages(conversation_id):
            if message.id == message_id:
                break
            if message.status != MessageStatus.FAILED:
                history.append(message)
        return history

    def update_status(self, conversation_id: str, message_id: str, status: MessageStatus) -> ConversationMessage:
        with self._lock:
            for message in self._messages.get(conversation_id, []):
                if message.id == message_id:
                    message.status = status
                    return message
        raise MessageNotFound(message_id)

    def set_preferences(self, conversation_id: str, preferences: UserPreferences) -> None:
        """Latest preferences sent for the conversation, reused by retries and recipe lookups."""
        with self._lock:
            self._preferences[conversation_id] = preferences

    def preferences(self, conversation_id: str) -> Optional[UserPreferences]:
        with self._lock:
            return self._preferences.get(conversation_id)

    def remember_recipes(self, conversation_id: str, message_id: str, recipes: dict[str, RecipeDetail]) -> None:
        """Keep the recipes behind the options of assistant message ``message_id``."""
        with self._lock:
            self._recipes.setdefault(conversation_id, {})[message_id] = dict(recipes)

    def recipe(self, conversation_id: str, option_id: str, message_id: Optional[str] = None) -> Optional[RecipeDetail]:
        """Recipe for ``option_id``; without ``message_id`` the newest turn offering it wins."""
        with self._lock:
            by_message = self._recipes.get(conversation_id, {})
            if message_id is not None:
                return by_message.get(message_id, {}).get(option_id)
            for recipes in reversed(list(by_message.values())):
                if option_id in recipes:
                    return recipes[option_id]
        return None
