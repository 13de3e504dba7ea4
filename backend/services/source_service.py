# backend/services/source_service.py

from typing import List, Optional

from backend.config import Settings, get_settings
from backend.ports.document_retriever import DocumentRetriever, RetrievedChunk
from backend.rag.chunker import split_text
from backend.schemas.source import Source
from backend.services.chat_service import source_key
from backend.services.errors import EmptySourceError, SourceNotFoundError
from backend.storage import RecordStore
from backend.utils.logger import get_logger

logger = get_logger(__name__)


class SourceService:
    """Text sources: chunked, embedded into the vector store, and recorded."""

    def __init__(self, store: RecordStore, retriever: DocumentRetriever, settings: Optional[Settings] = None):
        self.store = store
        self.retriever = retriever
        self.settings = settings or get_settings()

    def create_text_source(self, name: str, text: str, file_type: str = "text") -> Source:
        if not text or not text.strip():
            raise EmptySourceError()

        source = Source(name=name.strip(), file_type=file_type, char_count=len(text))
        pieces = split_text(text, self.settings.chunk_size, self.settings.chunk_overlap)
        chunks = [
            RetrievedChunk(
                chunk_id=f"{source.id}:{index}",
                source_id=source.id,
                source_name=source.name,
                text=piece,
                index=index,
                file_type=file_type,
            )
            for index, piece in enumerate(pieces)
        ]

        source.chunk_count = self.retriever.add_chunks(chunks)
        self.store.save(source_key(source.id), source.model_dump())
        logger.info("Source created: %s (%s chunks, %s chars)", source.id, source.chunk_count, source.char_count)
        return source

    def get_source(self, source_id: str) -> Source:
        record = self.store.get(source_key(source_id))
        if record is None:
            raise SourceNotFoundError(source_id)
        return Source(**record)

    def list_sources(self) -> List[Source]:
        sources = [Source(**record) for record in self.store.list_by_prefix("source:")]
        return sorted(sources, key=lambda s: s.created_at, reverse=True)
