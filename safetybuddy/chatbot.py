"""
First Aid Chatbot
=================
Session engine: runs one conversational turn end to end.

Per turn:
  1. Resolve or create the session in the ConversationStore
  2. Emergency keyword check (short-circuits with the canned reply)
  3. Knowledge base search for matching injuries
  4. Greeting, or a grounded reply from the generative provider
  5. Record the turn in the session history

Provider failures are logged and replaced with fixed fallback text, so a
turn always produces a well-formed ChatResponse.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from safetybuddy.config import Settings, get_settings
from safetybuddy.conversation_store import ConversationStore
from safetybuddy.knowledge_base import KnowledgeBase
from safetybuddy.llm_client import GenerativeClient
from safetybuddy.models import ChatMessage, ChatResponse, ConversationContext
from safetybuddy.prompts import (
    CHAT_FALLBACK_MESSAGE,
    HISTORY_WINDOW,
    IMAGE_ATTACHMENT_MARKER,
    IMAGE_FALLBACK_MESSAGE,
    RESPONSE_TEMPLATES,
    build_image_prompt,
    build_prompt,
)

logger = logging.getLogger(__name__)


class TextImageProvider(Protocol):
    """What the engine needs from a generative provider."""

    def generate_text(self, prompt: str) -> str: ...

    def generate_from_text_and_image(
        self, prompt: str, image_bytes: bytes, mime_type: str
    ) -> str: ...


class FirstAidChatbot:
    """Conversational first-aid assistant.

    Combines emergency keyword detection, keyword-ranked retrieval from the
    first-aid knowledge base, and a generative provider for the final
    wording. Session state lives in the ConversationStore.

    Attributes:
        knowledge_base: Immutable first-aid corpus.
        provider: Generative text/image client.
        store: Per-session conversation history.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        provider: TextImageProvider,
        store: Optional[ConversationStore] = None,
    ) -> None:
        self.knowledge_base = knowledge_base
        self.provider = provider
        self.store = store if store is not None else ConversationStore()

    # ------------------------------------------------------------------
    # Text turn
    # ------------------------------------------------------------------

    def chat(self, user_message: str, session_id: Optional[str] = None) -> ChatResponse:
        """Process a text message and produce the assistant's reply.

        Args:
            user_message: The user's free-text message.
            session_id: Existing session id; a new session is created when
                omitted or unknown.

        Returns:
            ChatResponse. suggested_injury is set only when the knowledge
            base matched the message.
        """
        context = self.store.get_or_create(session_id)
        sid = context.session_id

        if self.knowledge_base.check_for_emergency(user_message):
            return self._emergency_turn(sid, user_message)

        matches = self.knowledge_base.search_injuries(user_message)
        suggested = matches[0] if matches else None
        injury_info = ""
        if suggested is not None:
            self.store.set_current_injury(sid, suggested)
            injury_info = self.knowledge_base.format_injury_info(suggested)

        prior_messages = self.store.message_count(sid)

        if suggested is None and prior_messages == 0:
            reply = RESPONSE_TEMPLATES["greeting"]
        else:
            history = self.store.recent_messages(sid, HISTORY_WINDOW)
            reply = self._generate_reply(user_message, injury_info, history)

        self.store.append(
            sid,
            ChatMessage(role="user", content=user_message),
            ChatMessage(role="assistant", content=reply),
        )

        logger.info(
            "Session %s: reply ready (injury=%s, prior messages=%d).",
            sid,
            suggested.id if suggested else None,
            prior_messages,
        )
        return ChatResponse(
            message=reply,
            is_emergency=False,
            session_id=sid,
            suggested_injury=suggested,
        )

    def _emergency_turn(self, sid: str, user_message: str) -> ChatResponse:
        # Only the canned reply is recorded; the user's message is not.
        text = self.knowledge_base.get_emergency_response()
        self.store.mark_emergency(sid)
        self.store.append(
            sid, ChatMessage(role="assistant", content=text, is_emergency=True)
        )
        logger.warning("Session %s: emergency detected in '%s'", sid, user_message[:60])
        return ChatResponse(message=text, is_emergency=True, session_id=sid)

    def _generate_reply(
        self,
        user_message: str,
        injury_info: str,
        history: list[ChatMessage],
    ) -> str:
        prompt = build_prompt(user_message, injury_info, False, history)
        try:
            return self.provider.generate_text(prompt)
        except Exception as exc:
            logger.error("Error generating AI response: %s", exc)
            return CHAT_FALLBACK_MESSAGE

    # ------------------------------------------------------------------
    # Image turn
    # ------------------------------------------------------------------

    def chat_with_image(
        self,
        user_message: str,
        image_bytes: bytes,
        mime_type: str,
        session_id: Optional[str] = None,
    ) -> ChatResponse:
        """Analyse an injury photo together with an optional message.

        On provider failure nothing is recorded in the session and the fixed
        image fallback text is returned.
        """
        context = self.store.get_or_create(session_id)
        sid = context.session_id
        prompt = build_image_prompt(user_message)

        try:
            reply = self.provider.generate_from_text_and_image(
                prompt, image_bytes, mime_type
            )
        except Exception as exc:
            logger.error("Error analyzing image for session %s: %s", sid, exc)
            return ChatResponse(
                message=IMAGE_FALLBACK_MESSAGE, is_emergency=False, session_id=sid
            )

        stored_text = f"{user_message or ''} {IMAGE_ATTACHMENT_MARKER}".strip()
        self.store.append(
            sid,
            ChatMessage(role="user", content=stored_text),
            ChatMessage(role="assistant", content=reply),
        )
        logger.info(
            "Session %s: image analysed (%s, %d bytes).", sid, mime_type, len(image_bytes)
        )
        return ChatResponse(message=reply, is_emergency=False, session_id=sid)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def clear_session(self, session_id: str) -> bool:
        return self.store.clear(session_id)

    def get_context(self, session_id: str) -> Optional[ConversationContext]:
        return self.store.get(session_id)


def build_chatbot(settings: Optional[Settings] = None) -> FirstAidChatbot:
    """Construct the process-wide chatbot from settings.

    Loads the knowledge corpus and binds provider credentials once.

    Raises:
        KnowledgeBaseError: If the corpus is missing or malformed.
        ConfigurationError: If no provider credentials are configured.
    """
    settings = settings or get_settings()
    knowledge_base = KnowledgeBase.from_directory(settings.knowledge_dir)
    provider = GenerativeClient(settings)
    store = ConversationStore(session_ttl_seconds=settings.session_ttl_seconds)
    return FirstAidChatbot(knowledge_base, provider, store)
