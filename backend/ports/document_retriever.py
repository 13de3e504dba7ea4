"""
Document Retriever Port (Interface)

소스 청크 검색을 추상화하여 워크플로우가 특정 Vector DB에 의존하지 않도록 함.
"""
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence


@dataclass
class RetrievedChunk:
    """
    검색된 소스 청크

    Attributes:
        chunk_id: 청크 ID
        source_id: 청크가 속한 소스 ID
        source_name: 소스 표시 이름 (파일명, 제목 등)
        file_type: 소스 파일 형식 (text, pdf, url ...)
        text: 청크 본문
        index: 소스 내 청크 순번 (0부터)
        similarity: 쿼리와의 코사인 유사도 (높을수록 유사)
    """
    chunk_id: str
    source_id: str
    source_name: str
    text: str
    index: int = 0
    file_type: str = "text"
    similarity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DocumentRetriever(ABC):
    """
    소스 청크 검색 추상화 인터페이스

    구현체:
        - ChromaDocumentRetriever: ChromaDB 기반 (brute-force 코사인 fallback 포함)
        - tests/fakes.py FakeDocumentRetriever: 테스트용

    Example:
        retriever = ChromaDocumentRetriever(get_settings())
        chunks = retriever.search("What is photosynthesis?", ["source-1"], top_k=5)
        for chunk in chunks:
            print(chunk.source_name, chunk.similarity)
    """

    @abstractmethod
    def search(self, query: str, source_ids: Sequence[str], top_k: int = 5) -> List[RetrievedChunk]:
        """
        유사도 기반 청크 검색

        Args:
            query: 검색 쿼리
            source_ids: 검색 대상 소스 ID (이 소스들의 청크만 반환)
            top_k: 반환할 청크 개수

        Returns:
            List[RetrievedChunk]: 유사도 내림차순 청크 리스트 (없으면 빈 리스트)

        Raises:
            RetrievalError: 기본 검색과 fallback 검색이 모두 실패한 경우
        """

    @abstractmethod
    def get_source_chunks(self, source_ids: Sequence[str], limit: int = 20) -> List[RetrievedChunk]:
        """
        소스 청크를 순서대로 반환 (퀴즈 생성용 컨텍스트)

        Raises:
            RetrievalError: 조회 실패 시
        """

    @abstractmethod
    def add_chunks(self, chunks: Sequence[RetrievedChunk]) -> int:
        """
        청크 임베딩 후 저장

        Returns:
            int: 저장된 청크 수

        Raises:
            RetrievalError: 저장 실패 시
        """


class RetrievalError(Exception):
    """문서 검색 실패"""
    pass
