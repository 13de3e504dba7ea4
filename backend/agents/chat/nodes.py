# backend/agents/chat/nodes.py

import asyncio
import re
from typing import Any, Dict, List, Optional, Sequence, cast

from backend.config import get_settings
from backend.core.token_channel import TokenChannel
from backend.ports.document_retriever import DocumentRetriever
from backend.ports.llm_gateway import LLMGateway
from backend.prompts.loader import render_prompt
from backend.schemas.chat import Message
from backend.utils.logger import get_logger
from .citations import (
    CitationFilter,
    build_message_sources,
    format_chunks_for_prompt,
    strip_invalid_citations,
)
from .state import (
    ConversationState,
    MAX_RETRIES,
    QUALITY_GOOD,
    QUALITY_POOR,
    ROUTE_CLARIFY,
    ROUTE_DECISIONS,
    ROUTE_DIRECT_ANSWER,
    ROUTE_IDENTITY_BLOCK,
    ROUTE_RETRIEVE,
    last_assistant_message,
)

logger = get_logger(__name__)

# --- Constants ---
ROUTER_HISTORY_WINDOW = 6
GENERATOR_HISTORY_WINDOW = 5
ROUTER_TEMPERATURE = 0.0
GENERATOR_TEMPERATURE = 0.7
QUALITY_TEMPERATURE = 0.0

IDENTITY_RESPONSE = (
    "I'm an AI assistant here to help you get answers from your documents. "
    "I can't share details about my model or identity. "
    "What would you like to know about your sources?"
)
GENERATION_ERROR_RESPONSE = (
    "I apologize, but I encountered an error generating a response. Please try again."
)

IDENTITY_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\b(which|what)\s+model\s+(are you|am i using|is this)\b",
        r"\bwhat\s+(model|ai|assistant)\s+are you\b",
        r"\bwho\s+are you\b",
        r"\b(are you|is this)\s+(gpt|chatgpt|claude|openai)\b",
        r"\b(model|ai)\s+identity\b",
        r"^\s*what\s+are\s+you\s*\??\s*$",
        r"\bname\s+of\s+(the\s+)?model\b",
    )
]
# Whole-message pleasantries with no content reference
SOCIAL_PATTERN = re.compile(
    r"^\s*(hi|hello|hey|yo|hiya|thanks|thank you|thx|ty|bye|goodbye|see you|"
    r"good (morning|afternoon|evening|night)|ok(ay)?|cool|great|nice)"
    r"(\s+(there|so much|a lot|again|all|everyone))?[\s!.,:)]*$",
    re.IGNORECASE,
)
UNDERSPECIFIED_PATTERN = re.compile(r"^\s*(\?+|what\??|huh\??|hm+\??|eh\??)\s*$", re.IGNORECASE)
# Deictic or document references that point at the attached sources
SOURCE_REFERENCE_PATTERN = re.compile(
    r"\b(here|this|these|that document|the (document|doc|file|pdf|material|materials|source|sources|text|article|paper|notes))\b"
    r"|\b(summari[sz]e|summary|key points|main points)\b",
    re.IGNORECASE,
)


# --- Global Components for the chat workflow ---
class ChatAgentComponents:
    """
    Collaborators shared by every chat run.
    Left as None until first use so importing the graph never touches the network;
    tests replace llm / retriever directly.
    """

    def __init__(self):
        self.settings = get_settings()
        self.llm: Optional[LLMGateway] = None
        self.retriever: Optional[DocumentRetriever] = None

    def get_llm(self) -> LLMGateway:
        if self.llm is None:
            from backend.dependencies import get_llm_gateway
            self.llm = get_llm_gateway()
        return self.llm

    def get_retriever(self) -> DocumentRetriever:
        if self.retriever is None:
            from backend.dependencies import get_document_retriever
            self.retriever = get_document_retriever()
        return self.retriever


CHAT_COMPONENTS = ChatAgentComponents()


# --- Helpers ---

def is_identity_query(query: str) -> bool:
    return any(pattern.search(query or "") for pattern in IDENTITY_PATTERNS)


def _format_history(messages: Sequence[Dict[str, Any]]) -> str:
    lines = [f"{message.get('role', 'user')}: {message.get('content', '')}" for message in messages]
    return "\n".join(lines) if lines else "No previous messages"


def _prior_history(state: Dict[str, Any]) -> List[Dict[str, Any]]:
    """History without the trailing user message that carries current_query."""
    history = list(state.get("history") or [])
    if history and history[-1].get("role") == "user" and history[-1].get("content") == state.get("current_query"):
        history = history[:-1]
    return history


def _parse_route(raw: str) -> Optional[str]:
    cleaned = re.sub(r"[^a-z_]", " ", (raw or "").lower()).split()
    for token in cleaned:
        if token in ROUTE_DECISIONS:
            return token
    return None


def _assistant_message(state: Dict[str, Any], content: str, chunks: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    message = Message(
        conversation_id=state.get("conversation_id", ""),
        role="assistant",
        content=content,
        sources=build_message_sources(chunks),
    )
    return message.model_dump()


def _build_generator_prompt(state: Dict[str, Any], route: str, chunks: Sequence[Dict[str, Any]]) -> str:
    history = _format_history(_prior_history(state)[-GENERATOR_HISTORY_WINDOW:])
    query = state.get("current_query", "")

    if route == ROUTE_RETRIEVE:
        context = format_chunks_for_prompt(chunks) if chunks else "(No relevant excerpts were found in the attached sources.)"
        return render_prompt(
            "chat",
            "rag_answer",
            {"context": context, "history": history, "query": query, "chunk_count": len(chunks)},
        )
    if route == ROUTE_CLARIFY:
        return render_prompt(
            "chat",
            "clarify",
            {"history": history, "query": query, "source_count": len(state.get("source_ids") or [])},
        )
    return render_prompt("chat", "direct_answer", {"history": history, "query": query})


# --- Node Functions ---

async def router_node(state: ConversationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    query = state_dict.get("current_query", "")
    source_ids = state_dict.get("source_ids") or []

    if is_identity_query(query):
        logger.info("Identity query detected -> %s", ROUTE_IDENTITY_BLOCK)
        return {"route_decision": ROUTE_IDENTITY_BLOCK}

    if SOCIAL_PATTERN.match(query):
        logger.info("Social message -> %s", ROUTE_DIRECT_ANSWER)
        return {"route_decision": ROUTE_DIRECT_ANSWER}

    if UNDERSPECIFIED_PATTERN.match(query):
        logger.info("Underspecified message -> %s", ROUTE_CLARIFY)
        return {"route_decision": ROUTE_CLARIFY}

    if source_ids and SOURCE_REFERENCE_PATTERN.search(query):
        logger.info("Query refers to attached sources -> %s", ROUTE_RETRIEVE)
        return {"route_decision": ROUTE_RETRIEVE}

    prompt = render_prompt(
        "chat",
        "router",
        {
            "sources_attached": "yes" if source_ids else "no",
            "source_count": len(source_ids),
            "recent_messages": _format_history(
                (state_dict.get("history") or [])[-ROUTER_HISTORY_WINDOW:]
            ),
            "query": query,
        },
    )

    try:
        response = await CHAT_COMPONENTS.get_llm().generate(prompt, temperature=ROUTER_TEMPERATURE)
        decision = _parse_route(response.content)
    except Exception as e:
        logger.warning("Router LLM call failed, defaulting to retrieve: %s", e)
        return {"route_decision": ROUTE_RETRIEVE}

    if decision is None:
        logger.warning("Router returned an unknown label %r, defaulting to retrieve", response.content[:50])
        decision = ROUTE_RETRIEVE

    logger.info("Router decision: %s (sources=%s)", decision, len(source_ids))
    return {"route_decision": decision}


async def identity_node(state: ConversationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    channel: Optional[TokenChannel] = state_dict.get("token_channel")
    if channel is not None:
        await channel.send_token(IDENTITY_RESPONSE)

    history = list(state_dict.get("history") or [])
    history.append(_assistant_message(state_dict, IDENTITY_RESPONSE, []))
    return {
        "history": history,
        "response_quality": QUALITY_GOOD,
        "model_used": "router (identity_block)",
    }


async def retrieval_node(state: ConversationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    query = state_dict.get("current_query", "")
    source_ids = state_dict.get("source_ids") or []

    if not source_ids:
        logger.info("No sources attached, skipping retrieval")
        return {"retrieved_chunks": []}

    try:
        retriever = CHAT_COMPONENTS.get_retriever()
        top_k = CHAT_COMPONENTS.settings.retrieval_top_k
        chunks = await asyncio.to_thread(retriever.search, query, source_ids, top_k)
    except Exception as e:
        logger.warning("Retrieval failed, continuing without chunks: %s", e)
        return {"retrieved_chunks": []}

    retrieved = [chunk.to_dict() for chunk in chunks[:top_k]]
    logger.info("Retrieved %s chunks from %s sources", len(retrieved), len(source_ids))
    return {"retrieved_chunks": retrieved}


async def generator_node(state: ConversationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    route = state_dict.get("route_decision") or ROUTE_RETRIEVE
    chunks = list(state_dict.get("retrieved_chunks") or []) if route == ROUTE_RETRIEVE else []
    channel: Optional[TokenChannel] = state_dict.get("token_channel")
    history = list(state_dict.get("history") or [])
    total_tokens = int(state_dict.get("total_tokens") or 0)

    prompt = _build_generator_prompt(state_dict, route, chunks)
    llm = CHAT_COMPONENTS.get_llm()

    try:
        if channel is not None:
            citation_filter = CitationFilter(len(chunks))
            streamed: List[str] = []

            async def _forward(delta: str) -> None:
                text = citation_filter.feed(delta)
                if text:
                    await channel.send_token(text)
                    streamed.append(text)

            response = await llm.generate_streaming(prompt, _forward, temperature=GENERATOR_TEMPERATURE)
            tail = citation_filter.flush()
            if tail:
                await channel.send_token(tail)
                streamed.append(tail)
            content = "".join(streamed)
        else:
            response = await llm.generate(prompt, temperature=GENERATOR_TEMPERATURE)
            content = strip_invalid_citations(response.content, len(chunks))
    except Exception as e:
        logger.warning("Generator failed (route=%s): %s", route, e)
        if channel is not None:
            await channel.send_token(GENERATION_ERROR_RESPONSE, replace=True)
        history.append(_assistant_message(state_dict, GENERATION_ERROR_RESPONSE, []))
        return {
            "history": history,
            "response_quality": QUALITY_POOR,
            "generation_error": str(e),
        }

    history.append(_assistant_message(state_dict, content, chunks))
    logger.info(
        "Generated response: route=%s, length=%s, citations=%s, tokens=%s",
        route, len(content), len(chunks), response.total_tokens,
    )
    return {
        "history": history,
        "model_used": response.model or llm.get_model_name(),
        "total_tokens": total_tokens + response.total_tokens,
        "generation_error": None,
    }


async def quality_node(state: ConversationState) -> Dict[str, Any]:
    state_dict = cast(Dict[str, Any], state)
    retry_count = int(state_dict.get("retry_count") or 0)
    message = last_assistant_message(state_dict)

    if state_dict.get("is_first_message"):
        return {"response_quality": QUALITY_GOOD}

    if message is None:
        logger.warning("No assistant message to evaluate")
        return {"response_quality": QUALITY_GOOD}

    if retry_count >= MAX_RETRIES:
        logger.info("Max retries reached (%s), accepting current response", retry_count)
        return {"response_quality": QUALITY_GOOD}

    if state_dict.get("generation_error"):
        verdict = QUALITY_POOR
    else:
        prompt = render_prompt(
            "chat",
            "quality",
            {
                "query": state_dict.get("current_query", ""),
                "response": message.get("content", ""),
                "context_used": "Yes" if state_dict.get("retrieved_chunks") else "No",
            },
        )
        try:
            response = await CHAT_COMPONENTS.get_llm().generate(prompt, temperature=QUALITY_TEMPERATURE)
        except Exception as e:
            logger.warning("Quality check failed, accepting response: %s", e)
            return {"response_quality": QUALITY_GOOD}
        verdict = QUALITY_POOR if "poor" in response.content.lower() else QUALITY_GOOD

    if verdict == QUALITY_GOOD:
        logger.info("Quality assessment: good")
        return {"response_quality": QUALITY_GOOD}

    logger.info("Poor quality detected, regenerating (retry %s/%s)", retry_count + 1, MAX_RETRIES)
    return {
        "response_quality": QUALITY_POOR,
        "retry_count": retry_count + 1,
        "history": list(state_dict.get("history") or [])[:-1],
    }
