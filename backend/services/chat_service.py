# backend/services/chat_service.py

from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.agents.chat import create_initial_state, run_chat_workflow
from backend.agents.chat.nodes import GENERATION_ERROR_RESPONSE
from backend.agents.chat.state import ConversationState, last_assistant_message
from backend.core.token_channel import TokenChannel
from backend.schemas.chat import Conversation, Message, utc_now_iso
from backend.services.errors import ConversationNotFoundError, SourceNotFoundError
from backend.storage import RecordStore
from backend.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TITLE = "New Conversation"
TITLE_FROM_MESSAGE_CHARS = 50
MAX_TITLE_CHARS = 100


def conversation_key(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def messages_key(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


def source_key(source_id: str) -> str:
    return f"source:{source_id}"


def make_title(title: Optional[str], initial_message: Optional[str]) -> str:
    if initial_message and initial_message.strip():
        return initial_message.strip()[:TITLE_FROM_MESSAGE_CHARS]
    if title and title.strip():
        return title.strip()[:MAX_TITLE_CHARS]
    return DEFAULT_TITLE


class ChatService:
    """
    Conversations and messages.
    A turn persists the user message, runs the chat workflow, then persists
    the assistant message it produced.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    # --- Conversations ---

    async def create_conversation(
        self,
        source_ids: Sequence[str],
        title: Optional[str] = None,
        initial_message: Optional[str] = None,
    ) -> Tuple[Conversation, List[Message]]:
        for source_id in source_ids:
            if self.store.get(source_key(source_id)) is None:
                raise SourceNotFoundError(source_id)

        conversation = Conversation(title=make_title(title, initial_message), source_ids=list(source_ids))
        self.store.save(conversation_key(conversation.id), conversation.model_dump())
        self.store.save(messages_key(conversation.id), {"items": []})
        logger.info("Conversation created: %s (sources=%s)", conversation.id, len(conversation.source_ids))

        messages: List[Message] = []
        if initial_message and initial_message.strip():
            user_message, assistant_message = await self.send_message(conversation.id, initial_message)
            messages = [user_message, assistant_message]
            conversation = self.get_conversation(conversation.id)

        return conversation, messages

    def get_conversation(self, conversation_id: str) -> Conversation:
        record = self.store.get(conversation_key(conversation_id))
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        return Conversation(**record)

    def list_conversations(self) -> List[Conversation]:
        conversations = [Conversation(**record) for record in self.store.list_by_prefix("conversation:")]
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    def get_conversations_by_source(self, source_id: str) -> List[Conversation]:
        """Conversations that have the source attached, most recently updated first."""
        if self.store.get(source_key(source_id)) is None:
            raise SourceNotFoundError(source_id)
        conversations = [
            Conversation(**record)
            for record in self.store.list_by_prefix("conversation:")
            if source_id in (record.get("source_ids") or [])
        ]
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    def update_title(self, conversation_id: str, title: str) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        conversation.title = title.strip()[:MAX_TITLE_CHARS] or DEFAULT_TITLE
        conversation.updated_at = utc_now_iso()
        self.store.save(conversation_key(conversation_id), conversation.model_dump())
        return conversation

    def delete_conversation(self, conversation_id: str):
        self.get_conversation(conversation_id)
        self.store.delete(messages_key(conversation_id))
        self.store.delete(conversation_key(conversation_id))
        logger.info("Conversation deleted: %s", conversation_id)

    # --- Messages ---

    def get_messages(self, conversation_id: str) -> List[Message]:
        record = self.store.get(messages_key(conversation_id)) or {"items": []}
        return [Message(**item) for item in record.get("items", [])]

    def _append_message(self, message: Message):
        record = self.store.get(messages_key(message.conversation_id)) or {"items": []}
        record["items"].append(message.model_dump())
        self.store.save(messages_key(message.conversation_id), record)

    def prepare_turn(
        self,
        conversation_id: str,
        content: str,
        token_channel: Optional[TokenChannel] = None,
    ) -> Tuple[Message, ConversationState]:
        """Persist the user message and build the workflow state for this turn."""
        conversation = self.get_conversation(conversation_id)
        history = self.get_messages(conversation_id)

        user_message = Message(conversation_id=conversation_id, role="user", content=content)
        self._append_message(user_message)

        state = create_initial_state(
            conversation_id=conversation_id,
            source_ids=conversation.source_ids,
            history=[message.model_dump() for message in history] + [user_message.model_dump()],
            current_query=content,
            is_first_message=not history,
            token_channel=token_channel,
        )
        return user_message, state

    def complete_turn(self, conversation_id: str, final_state: Dict[str, Any]) -> Message:
        """Persist the assistant message the workflow appended."""
        last = last_assistant_message(final_state)
        if last is None:
            logger.error("Chat workflow finished without an assistant message (%s)", conversation_id)
            assistant_message = Message(
                conversation_id=conversation_id, role="assistant", content=GENERATION_ERROR_RESPONSE
            )
        else:
            assistant_message = Message(**last)
        self._append_message(assistant_message)

        conversation = self.get_conversation(conversation_id)
        conversation.updated_at = utc_now_iso()
        self.store.save(conversation_key(conversation_id), conversation.model_dump())

        logger.info(
            "Turn complete: conversation=%s, route=%s, retries=%s, model=%s, tokens=%s",
            conversation_id,
            final_state.get("route_decision"),
            final_state.get("retry_count", 0),
            final_state.get("model_used"),
            final_state.get("total_tokens", 0),
        )
        return assistant_message

    async def send_message(self, conversation_id: str, content: str) -> Tuple[Message, Message]:
        user_message, state = self.prepare_turn(conversation_id, content)
        final_state = await run_chat_workflow(state)
        assistant_message = self.complete_turn(conversation_id, dict(final_state))
        return user_message, assistant_message
