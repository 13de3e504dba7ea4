"""
Ports (Interfaces)

Clean Architecture의 내부 레이어.
워크플로우가 외부 프레임워크에 의존하지 않도록 추상화 제공.
"""
from backend.ports.llm_gateway import LLMGateway, LLMResponse, LLMAPIError, LLMTimeoutError
from backend.ports.document_retriever import DocumentRetriever, RetrievedChunk, RetrievalError

__all__ = [
    "LLMGateway",
    "LLMResponse",
    "LLMAPIError",
    "LLMTimeoutError",
    "DocumentRetriever",
    "RetrievedChunk",
    "RetrievalError",
]
