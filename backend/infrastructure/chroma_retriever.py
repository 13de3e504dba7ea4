"""
ChromaDB Document Retriever Implementation

ChromaDB를 사용한 DocumentRetriever 구현체.
기본 경로는 Chroma 벡터 검색이고, 실패하면 소스 청크 전체에 대해
numpy 코사인 유사도를 직접 계산하는 brute-force 경로로 대체한다.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from backend.config import Settings
from backend.ports.document_retriever import (
    DocumentRetriever,
    RetrievedChunk,
    RetrievalError
)
from backend.rag.chroma_client import get_or_create_collection
from backend.rag.embedder import get_embedding, get_embeddings


logger = logging.getLogger(__name__)


def _source_filter(source_ids: Sequence[str]) -> Dict[str, Any]:
    ids = list(source_ids)
    if len(ids) == 1:
        return {"source_id": ids[0]}
    return {"source_id": {"$in": ids}}


def _to_chunk(chunk_id: str, text: str, metadata: Optional[Dict[str, Any]], similarity: float) -> RetrievedChunk:
    metadata = metadata or {}
    return RetrievedChunk(
        chunk_id=chunk_id,
        source_id=str(metadata.get("source_id", "")),
        source_name=str(metadata.get("source_name", "Unknown source")),
        file_type=str(metadata.get("file_type", "text")),
        index=int(metadata.get("chunk_index", 0) or 0),
        text=text or "",
        similarity=round(float(similarity), 4),
    )


def cosine_top_k(query_vector: Sequence[float], vectors: Sequence[Sequence[float]], top_k: int) -> List[tuple]:
    """
    Brute-force cosine similarity.

    Returns:
        List[(row_index, similarity)] sorted by similarity, highest first
    """
    if len(vectors) == 0 or top_k <= 0:
        return []

    matrix = np.asarray(vectors, dtype=np.float32)
    query = np.asarray(query_vector, dtype=np.float32)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = 1.0
    scores = matrix @ query / norms

    order = np.argsort(-scores, kind="stable")[:top_k]
    return [(int(i), float(scores[i])) for i in order]


class ChromaDocumentRetriever(DocumentRetriever):
    """
    ChromaDB를 사용한 소스 청크 검색

    Features:
        - source_id 메타데이터 필터링
        - 유사도 기반 검색 (cosine)
        - 기본 검색 실패 시 brute-force 코사인 fallback

    Example:
        retriever = ChromaDocumentRetriever(get_settings())
        chunks = retriever.search("What is osmosis?", ["source-1"], top_k=5)
    """

    def __init__(self, settings: Settings):
        """
        Args:
            settings: 애플리케이션 설정 (ChromaDB 경로, 컬렉션명, 임베딩 설정)
        """
        self._settings = settings

        try:
            self._collection = get_or_create_collection(settings)
            logger.info("ChromaDocumentRetriever initialized: %s chunks", self._collection.count())
        except Exception as e:
            logger.error("Failed to initialize ChromaDB: %s", e)
            raise RetrievalError(f"ChromaDB initialization failed: {e}") from e

    def search(self, query: str, source_ids: Sequence[str], top_k: int = 5) -> List[RetrievedChunk]:
        if not source_ids or not query.strip():
            return []

        query_embedding = get_embedding(query, for_query=True, settings=self._settings)

        try:
            return self._vector_search(query_embedding, source_ids, top_k)
        except Exception as e:
            logger.warning("Vector search failed, falling back to brute-force similarity: %s", e)

        try:
            return self._brute_force_search(query_embedding, source_ids, top_k)
        except Exception as e:
            logger.error("Brute-force search failed: %s", e)
            raise RetrievalError(f"Chunk search failed: {e}") from e

    def _vector_search(self, query_embedding: List[float], source_ids: Sequence[str], top_k: int) -> List[RetrievedChunk]:
        logger.debug("Vector search: top_k=%s, sources=%s", top_k, len(source_ids))
        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=top_k,
            where=_source_filter(source_ids),
            include=["documents", "metadatas", "distances"],
        )

        chunks: List[RetrievedChunk] = []
        ids = results.get("ids") or [[]]
        for i, chunk_id in enumerate(ids[0]):
            distance = results["distances"][0][i] if results.get("distances") else 1.0
            chunks.append(
                _to_chunk(
                    chunk_id,
                    results["documents"][0][i],
                    results["metadatas"][0][i] if results.get("metadatas") else {},
                    1.0 - float(distance),
                )
            )

        chunks.sort(key=lambda chunk: chunk.similarity, reverse=True)
        logger.info("Found %s chunks", len(chunks))
        return chunks

    def _brute_force_search(self, query_embedding: List[float], source_ids: Sequence[str], top_k: int) -> List[RetrievedChunk]:
        stored = self._collection.get(
            where=_source_filter(source_ids),
            include=["documents", "metadatas", "embeddings"],
        )
        embeddings = stored.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return []

        ranked = cosine_top_k(query_embedding, embeddings, top_k)
        chunks = [
            _to_chunk(
                stored["ids"][row],
                stored["documents"][row],
                stored["metadatas"][row] if stored.get("metadatas") else {},
                score,
            )
            for row, score in ranked
        ]
        logger.info("Brute-force search found %s chunks", len(chunks))
        return chunks

    def get_source_chunks(self, source_ids: Sequence[str], limit: int = 20) -> List[RetrievedChunk]:
        if not source_ids:
            return []
        try:
            stored = self._collection.get(
                where=_source_filter(source_ids),
                include=["documents", "metadatas"],
            )
        except Exception as e:
            logger.error("Failed to load source chunks: %s", e)
            raise RetrievalError(f"Chunk lookup failed: {e}") from e

        chunks = [
            _to_chunk(chunk_id, stored["documents"][i], stored["metadatas"][i] if stored.get("metadatas") else {}, 0.0)
            for i, chunk_id in enumerate(stored.get("ids") or [])
        ]
        order = {source_id: position for position, source_id in enumerate(source_ids)}
        chunks.sort(key=lambda chunk: (order.get(chunk.source_id, len(order)), chunk.index))
        return chunks[:limit]

    def add_chunks(self, chunks: Sequence[RetrievedChunk]) -> int:
        if not chunks:
            return 0
        try:
            self._collection.upsert(
                ids=[chunk.chunk_id for chunk in chunks],
                documents=[chunk.text for chunk in chunks],
                embeddings=get_embeddings([chunk.text for chunk in chunks], for_query=False, settings=self._settings),
                metadatas=[
                    {
                        "source_id": chunk.source_id,
                        "source_name": chunk.source_name,
                        "file_type": chunk.file_type,
                        "chunk_index": chunk.index,
                    }
                    for chunk in chunks
                ],
            )
        except Exception as e:
            logger.error("Failed to store chunks: %s", e)
            raise RetrievalError(f"Chunk upsert failed: {e}") from e

        logger.info("Stored %s chunks for source %s", len(chunks), chunks[0].source_id)
        return len(chunks)

    def __repr__(self) -> str:
        return f"<ChromaDocumentRetriever collection={self._settings.collection_name}>"
