from typing import TypedDict, List, Dict, Any, Optional, Sequence
import time

from backend.core.token_channel import TokenChannel

ROUTE_RETRIEVE = "retrieve"
ROUTE_DIRECT_ANSWER = "direct_answer"
ROUTE_CLARIFY = "clarify"
ROUTE_IDENTITY_BLOCK = "identity_block"
ROUTE_DECISIONS = (ROUTE_RETRIEVE, ROUTE_DIRECT_ANSWER, ROUTE_CLARIFY, ROUTE_IDENTITY_BLOCK)

QUALITY_PENDING = "pending"
QUALITY_GOOD = "good"
QUALITY_POOR = "poor"

MAX_RETRIES = 2


class ConversationState(TypedDict, total=False):
    """
    Represents the state of one answer-generation run.
    Nodes never mutate it; they return patches that the graph merges.
    """
    conversation_id: str
    source_ids: List[str]
    history: List[Dict[str, Any]]  # Message dicts, current user message last
    current_query: str
    retrieved_chunks: List[Dict[str, Any]]
    route_decision: Optional[str]
    response_quality: str
    retry_count: int

    # Run fields
    is_first_message: bool  # skips the quality check
    token_channel: Optional[TokenChannel]
    model_used: Optional[str]
    total_tokens: int
    started_at: float
    generation_error: Optional[str]


def create_initial_state(
    conversation_id: str,
    source_ids: Sequence[str],
    history: Sequence[Dict[str, Any]],
    current_query: str,
    is_first_message: bool = False,
    token_channel: Optional[TokenChannel] = None,
) -> ConversationState:
    return ConversationState(
        conversation_id=conversation_id,
        source_ids=list(source_ids),
        history=list(history),
        current_query=current_query,
        retrieved_chunks=[],
        route_decision=None,
        response_quality=QUALITY_PENDING,
        retry_count=0,
        is_first_message=is_first_message,
        token_channel=token_channel,
        model_used=None,
        total_tokens=0,
        started_at=time.time(),
        generation_error=None,
    )


def last_assistant_message(state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    history = state.get("history") or []
    if history and history[-1].get("role") == "assistant":
        return history[-1]
    return None
