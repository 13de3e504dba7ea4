import hashlib
import re
import time
from typing import List, Optional, Sequence

import numpy as np
import requests

from backend.config import Settings, get_settings
from backend.utils.logger import get_logger

logger = get_logger(__name__)

# Upstage API interaction
UPSTAGE_API_URL = "https://api.upstage.ai/v1/embeddings"
QUERY_MODEL = "embedding-query"
PASSAGE_MODEL = "embedding-passage"
MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 2
MIN_LOCAL_DIM = 64


def _tokenize(text: str) -> List[str]:
    tokens = re.findall(r"\w+", text.lower())
    if tokens:
        return tokens
    stripped = text.strip().lower()
    return [stripped] if stripped else []


def local_hash_embedding(text: str, dim: int) -> List[float]:
    """
    Deterministic local embedding.
    Uses hashed token projection so retrieval still works in offline environments.
    """
    dim = max(MIN_LOCAL_DIM, int(dim))
    vector = np.zeros(dim, dtype=np.float32)

    for token in _tokenize(text):
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=16).digest()
        idx_a = int.from_bytes(digest[:4], "little") % dim
        idx_b = int.from_bytes(digest[4:8], "little") % dim
        weight = 1.0 + min(len(token), 24) / 24.0
        vector[idx_a] += weight
        vector[idx_b] -= weight * 0.5

    norm = float(np.linalg.norm(vector))
    if norm <= 0:
        return vector.tolist()
    return (vector / norm).tolist()


def _request_upstage_embedding(text: str, api_key: str, model: str, retries: int) -> Optional[List[float]]:
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = {"input": text, "model": model}

    for attempt in range(retries):
        try:
            response = requests.post(UPSTAGE_API_URL, headers=headers, json=payload, timeout=10)
            response.raise_for_status()
            data = response.json()
            if data and data.get("data") and "embedding" in data["data"][0]:
                return data["data"][0]["embedding"]
            logger.warning("Unexpected embedding API response format: %s", str(data)[:200])
            return None
        except requests.exceptions.HTTPError as error:
            status_code = error.response.status_code if error.response is not None else "unknown"
            logger.warning(
                "Embedding HTTP error (attempt %s/%s): status=%s, error=%s",
                attempt + 1, retries, status_code, error,
            )
            if status_code in {400, 401, 403}:
                return None
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as error:
            logger.warning("Embedding request failed (attempt %s/%s): %s", attempt + 1, retries, error)
        except requests.exceptions.RequestException as error:
            logger.warning("Unexpected embedding request error: %s", error)
            return None

        if attempt < retries - 1:
            time.sleep(RETRY_DELAY_SECONDS)

    logger.warning("Failed to get embedding after %s attempt(s).", retries)
    return None


def get_embedding(text: str, for_query: bool = True, settings: Optional[Settings] = None) -> List[float]:
    """
    Retrieve embedding for text.
    Priority:
    1) Upstage API (when configured and reachable)
    2) Local deterministic hash embedding
    """
    settings = settings or get_settings()
    provider = str(settings.embedding_provider or "local").strip().lower()
    if provider not in {"local", "upstage", "auto"}:
        provider = "local"

    api_key = str(settings.upstage_api_key or "").strip()
    if provider in {"upstage", "auto"} and text.strip():
        if api_key:
            retries = MAX_RETRIES if provider == "upstage" else 1
            model = QUERY_MODEL if for_query else PASSAGE_MODEL
            embedding = _request_upstage_embedding(text, api_key, model, retries)
            if embedding is not None:
                return embedding
            logger.warning("Upstage embedding failed. Falling back to local embedding.")
        else:
            logger.warning("UPSTAGE_API_KEY is empty. Falling back to local embedding.")

    return local_hash_embedding(text, settings.local_embedding_dim)


def get_embeddings(texts: Sequence[str], for_query: bool = False, settings: Optional[Settings] = None) -> List[List[float]]:
    return [get_embedding(text, for_query=for_query, settings=settings) for text in texts]
