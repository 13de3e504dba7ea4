# backend/schemas/chat.py

import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "system"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MessageSource(BaseModel):
    """Citation attached to an assistant message ([citation] in the text)"""
    citation: int = Field(..., description="1-based citation number used in the answer text", ge=1)
    chunk_id: str
    source_id: str
    source_name: str
    chunk_text: str
    chunk_index: int = 0
    similarity: float = 0.0


class Message(BaseModel):
    """Single chat message"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    role: MessageRole
    content: str
    sources: List[MessageSource] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)


class Conversation(BaseModel):
    """Conversation scoped to a set of sources"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = "New Conversation"
    source_ids: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class StartConversationRequest(BaseModel):
    source_ids: List[str] = Field(default_factory=list, description="Sources the conversation can cite")
    title: Optional[str] = Field(None, description="Optional title (trimmed to 100 characters)")
    initial_message: Optional[str] = Field(None, description="Optional first user message")


class StartConversationResponse(BaseModel):
    conversation: Conversation
    messages: List[Message] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message")


class SendMessageResponse(BaseModel):
    user_message: Message
    assistant_message: Message


class UpdateConversationRequest(BaseModel):
    title: str = Field(..., min_length=1)


class ConversationDetail(BaseModel):
    conversation: Conversation
    messages: List[Message]
