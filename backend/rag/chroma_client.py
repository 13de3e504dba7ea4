import os
from functools import lru_cache
from typing import Optional

import chromadb

from backend.config import Settings, get_settings
from backend.utils.logger import get_logger

logger = get_logger(__name__)


@lru_cache()
def get_chroma_client(path: str):
    """One PersistentClient per directory (chromadb keeps a per-path singleton anyway)."""
    os.makedirs(path, exist_ok=True)
    return chromadb.PersistentClient(path=path)


def get_or_create_collection(settings: Optional[Settings] = None):
    """
    Retrieves the source chunk collection or creates it if it doesn't exist.
    The collection uses cosine distance so similarity = 1 - distance.
    """
    settings = settings or get_settings()
    client = get_chroma_client(settings.vector_db_dir)
    logger.debug(
        "Attempting to get or create collection: %s in %s",
        settings.collection_name,
        settings.vector_db_dir,
    )
    return client.get_or_create_collection(
        name=settings.collection_name,
        metadata={"hnsw:space": "cosine"},
    )
