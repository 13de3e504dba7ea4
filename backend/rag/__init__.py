# RAG Package Init
from .chunker import split_text
from .embedder import get_embedding, get_embeddings

__all__ = ["split_text", "get_embedding", "get_embeddings"]
