"""
FastAPI Dependency Injection

게이트웨이, 저장소, 서비스 인스턴스를 FastAPI 엔드포인트에 주입.
테스트에서는 app.dependency_overrides로 교체한다.
"""
import logging
from functools import lru_cache
from fastapi import Depends

from backend.config import get_settings
from backend.ports import LLMGateway, DocumentRetriever
from backend.infrastructure import UpstageLLMGateway, ChromaDocumentRetriever
from backend.storage import RecordStore, create_record_store
from backend.services.chat_service import ChatService
from backend.services.chat_stream_service import ChatStreamService
from backend.services.quiz_service import QuizService
from backend.services.source_service import SourceService


logger = logging.getLogger(__name__)


@lru_cache()
def get_llm_gateway() -> LLMGateway:
    """
    LLM Gateway 싱글톤 인스턴스 반환

    Returns:
        LLMGateway: Upstage LLM Gateway
    """
    settings = get_settings()
    gateway = UpstageLLMGateway(
        api_key=settings.upstage_api_key,
        model=settings.chat_model,
        timeout=settings.llm_timeout
    )
    logger.info("LLM Gateway created")
    return gateway


@lru_cache()
def get_document_retriever() -> DocumentRetriever:
    """
    Document Retriever 싱글톤 인스턴스 반환

    Returns:
        DocumentRetriever: ChromaDB Document Retriever
    """
    settings = get_settings()
    retriever = ChromaDocumentRetriever(settings)
    logger.info("Document Retriever created")
    return retriever


@lru_cache()
def get_record_store() -> RecordStore:
    """Record Store 싱글톤 (Redis 또는 InMemory)"""
    return create_record_store()


def get_chat_service(store: RecordStore = Depends(get_record_store)) -> ChatService:
    return ChatService(store)


def get_chat_stream_service(chat_service: ChatService = Depends(get_chat_service)) -> ChatStreamService:
    return ChatStreamService(chat_service)


def get_source_service(
    store: RecordStore = Depends(get_record_store),
    retriever: DocumentRetriever = Depends(get_document_retriever)
) -> SourceService:
    return SourceService(store, retriever)


def get_quiz_service(
    store: RecordStore = Depends(get_record_store),
    retriever: DocumentRetriever = Depends(get_document_retriever)
) -> QuizService:
    """
    Quiz Service 의존성 주입 (FastAPI Depends 전용)

    퀴즈 생성 워크플로우의 LLM은 QUIZ_AGENT_COMPONENTS가 get_llm_gateway()로 가져온다.
    """
    return QuizService(store, retriever)
