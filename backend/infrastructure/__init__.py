"""
Infrastructure (Adapters)

Port 구현체: Upstage Solar 채팅 모델, ChromaDB 소스 청크 저장소.
채팅/퀴즈 워크플로우는 이 모듈을 직접 import하지 않고 dependencies.py를 통해 주입받는다.
"""
from backend.infrastructure.upstage_llm import UpstageLLMGateway
from backend.infrastructure.chroma_retriever import ChromaDocumentRetriever

__all__ = ["ChromaDocumentRetriever", "UpstageLLMGateway"]
